# Shared data models
from app.models.enums import (
    ConnectionState,
    ErrorCategory,
    ErrorSeverity,
    JobState,
    JobType,
    KnowledgeType,
    SourceType,
    SuggestionStatus,
)
from app.models.events import SourceEvent
from app.models.knowledge import ExtractionResult, PageMatch, ValidationResult
from app.models.results import BulkFailure, BulkResult, JobOutcome, SyncResult

__all__ = [
    "ConnectionState",
    "ErrorCategory",
    "ErrorSeverity",
    "JobState",
    "JobType",
    "KnowledgeType",
    "SourceType",
    "SuggestionStatus",
    "SourceEvent",
    "ExtractionResult",
    "PageMatch",
    "ValidationResult",
    "BulkFailure",
    "BulkResult",
    "JobOutcome",
    "SyncResult",
]
