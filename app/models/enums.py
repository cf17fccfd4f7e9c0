"""
Shared enumerations for connections, jobs, suggestions and errors.
"""

from enum import Enum


class SourceType(str, Enum):
    """Source platform type."""

    SLACK = "slack"
    GOOGLE_DRIVE = "google_drive"
    ZOOM = "zoom"
    GOOGLE_MEET = "google_meet"
    SIMULATED = "simulated"


class ConnectionState(str, Enum):
    """Live ingestion connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    IDLE = "idle"


class JobType(str, Enum):
    """Units of queued work."""

    EXTRACT = "extract"  # Run the extraction pipeline on a source event
    SYNC = "sync"  # Write an approved suggestion to the knowledge store
    RETRY_SYNC = "retry_sync"  # Operator-requested re-sync of a sync_failed suggestion


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class KnowledgeType(str, Enum):
    """Kind of knowledge a suggestion carries."""

    POLICY = "policy"
    SOP = "sop"
    DECISION = "decision"
    FACT = "fact"
    PROCESS = "process"
    ENGINEERING = "engineering"
    PRODUCT = "product"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"


class ErrorSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    JOB_FAILURE = "job_failure"
    CONNECTION = "connection"
    AI_ERROR = "ai_error"
    SYNC_ERROR = "sync_error"
    QUOTA = "quota"
    SYSTEM_ERROR = "system_error"
