"""
API Response Models

Pydantic models for consistent API response structures.
"""

from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any

from app.models.enums import (
    ConnectionState,
    JobState,
    JobType,
    SourceType,
    SuggestionStatus,
)


class SuggestionResponse(BaseModel):
    """A suggestion as exposed to the dashboard."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    team_id: str
    source_type: str
    knowledge_type: str
    title: str
    proposed_content: str
    current_content: Optional[str] = None
    confidence: int = Field(..., description="Validator confidence (0-100)")
    status: SuggestionStatus
    ai_reasoning: Optional[str] = None
    source_link: Optional[str] = None
    destination_page_ref: Optional[str] = None
    sync_error: Optional[str] = None
    created_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    synced_at: Optional[datetime] = None


class BulkFailureResponse(BaseModel):
    id: str
    reason: str


class BulkActionResponse(BaseModel):
    """Per-item outcome of a bulk approve/reject."""

    succeeded: List[str] = Field(default_factory=list)
    failed: List[BulkFailureResponse] = Field(default_factory=list)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    team_id: str
    job_type: JobType
    state: JobState
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    run_at: datetime
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class JobStatsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class ConnectionStatusResponse(BaseModel):
    """Connection state for one (team, source) pair."""

    team_id: str
    source_type: SourceType
    state: ConnectionState
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    last_error: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    last_connected_at: Optional[datetime] = None
    consecutive_failures: int = 0
    needs_manual_reconnect: bool = Field(
        False, description="True once automatic reconnects are exhausted"
    )


class ErrorLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    team_id: Optional[str] = None
    severity: str
    category: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: datetime


class ErrorStatsResponse(BaseModel):
    total: int = 0
    critical: int = 0
    unresolved: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    disabled: bool
    suggestions_used: int
    suggestions_limit: int
    auto_approve_threshold: Optional[int] = None
    created_at: datetime
