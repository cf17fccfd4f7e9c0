"""SQLAlchemy ORM models."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.enums import (
    ConnectionState,
    ErrorSeverity,
    JobState,
    SuggestionStatus,
)
from app.utils.helpers import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class Team(Base):
    """
    Tenant boundary.

    Never deleted while jobs reference it; soft-disabled on churn.
    """

    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    suggestions_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    suggestions_limit: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    # Overrides the global auto-approve setting when set
    auto_approve_threshold: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class IntegrationConnection(Base):
    """One live ingestion connection per (team, source)."""

    __tablename__ = "integration_connections"
    __table_args__ = (
        UniqueConstraint("team_id", "source_type", name="uq_connection_team_source"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id"), nullable=False
    )
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    state: Mapped[str] = mapped_column(
        String(20), default=ConnectionState.DISCONNECTED.value, nullable=False
    )

    workspace_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    workspace_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    credentials: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    last_connected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    consecutive_failures: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    needs_manual_reconnect: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class Job(Base):
    """
    Background job for the ingestion-to-approval pipeline.

    Workers lease pending jobs; a lease that expires without completion
    returns the job to pending.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_state_run_at", "state", "run_at"),
        Index("idx_jobs_team", "team_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id"), nullable=False
    )

    job_type: Mapped[str] = mapped_column(String(30), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    state: Mapped[str] = mapped_column(
        String(20), default=JobState.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Idempotency key (event fingerprint or suggestion id)
    dedup_key: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )

    run_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    lease_owner: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Suggestion(Base):
    """Candidate knowledge edit awaiting a human decision."""

    __tablename__ = "suggestions"
    __table_args__ = (
        Index("idx_suggestions_team_status", "team_id", "status"),
        Index("idx_suggestions_fingerprint", "event_fingerprint"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id"), nullable=False
    )
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    knowledge_type: Mapped[str] = mapped_column(String(30), nullable=False)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    proposed_content: Mapped[str] = mapped_column(Text, nullable=False)
    current_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=SuggestionStatus.PENDING.value, nullable=False
    )
    ai_reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    source_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    destination_page_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    decided_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class ErrorLogEntry(Base):
    """Structured error event. Append-only except for resolution fields."""

    __tablename__ = "error_logs"
    __table_args__ = (
        Index("idx_error_logs_severity", "severity", "created_at"),
        Index("idx_error_logs_category", "category"),
        Index("idx_error_logs_team", "team_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("teams.id"), nullable=True
    )
    severity: Mapped[str] = mapped_column(
        String(20), default=ErrorSeverity.ERROR.value, nullable=False
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class EventFingerprint(Base):
    """Fingerprints of source events that already produced a job, per team."""

    __tablename__ = "event_fingerprints"

    team_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class ActivityLogEntry(Base):
    """Audit trail of suggestion lifecycle events."""

    __tablename__ = "activity_log"
    __table_args__ = (Index("idx_activity_team", "team_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(36), nullable=False)
    suggestion_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
