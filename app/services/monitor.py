"""
Health & Error Monitor

Structured error log plus aggregate health views. The monitor only records
and reports; it never changes connection, job or suggestion state.
"""

import logging
import traceback
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from app.db.models import ErrorLogEntry
from app.errors import NotFoundError
from app.models.enums import ErrorCategory, ErrorSeverity
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorMonitor:
    """Funnel for every error the pipeline surfaces to operators."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def log_error(
        self,
        category: ErrorCategory,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        team_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> ErrorLogEntry:
        context = dict(context or {})
        if error is not None:
            context.setdefault("error_type", type(error).__name__)
            if error.__traceback__ is not None:
                context.setdefault(
                    "stack", "".join(traceback.format_tb(error.__traceback__))
                )

        logger.log(
            _LOG_LEVELS[severity],
            f"[{severity.value.upper()}] [{category.value}] {message}",
        )

        with self.session_factory() as db:
            entry = ErrorLogEntry(
                team_id=team_id,
                severity=severity.value,
                category=category.value,
                message=message,
                context=context,
                resolved=False,
            )
            db.add(entry)
            db.commit()
            db.refresh(entry)
            return entry

    def log_job_failure(
        self, team_id: str, job_id: str, job_type: str, error: str
    ) -> ErrorLogEntry:
        return self.log_error(
            ErrorCategory.JOB_FAILURE,
            f"Job {job_type} failed permanently: {error}",
            team_id=team_id,
            context={"job_id": job_id, "job_type": job_type},
        )

    def log_connection_lost(
        self, team_id: str, source_type: str, reason: str
    ) -> ErrorLogEntry:
        return self.log_error(
            ErrorCategory.CONNECTION,
            f"{source_type} connection lost: {reason}",
            severity=ErrorSeverity.WARNING,
            team_id=team_id,
            context={"source_type": source_type, "reason": reason},
        )

    def log_connection_exhausted(
        self, team_id: str, source_type: str, attempts: int, reason: str
    ) -> ErrorLogEntry:
        return self.log_error(
            ErrorCategory.CONNECTION,
            f"{source_type} connection failed after {attempts} reconnect attempts: {reason}",
            severity=ErrorSeverity.CRITICAL,
            team_id=team_id,
            context={
                "source_type": source_type,
                "attempts": attempts,
                "reason": reason,
                "action_required": "start_listening",
            },
        )

    def log_auth_failure(
        self, team_id: str, source_type: str, reason: str
    ) -> ErrorLogEntry:
        return self.log_error(
            ErrorCategory.CONNECTION,
            f"{source_type} authorization failed: {reason}",
            team_id=team_id,
            context={"source_type": source_type, "reason": reason},
        )

    def log_ai_error(
        self, team_id: str, phase: str, error: BaseException
    ) -> ErrorLogEntry:
        return self.log_error(
            ErrorCategory.AI_ERROR,
            f"AI {phase} failed: {error}",
            team_id=team_id,
            context={"phase": phase},
            error=error,
        )

    def log_sync_failure(
        self, team_id: str, suggestion_id: str, error: str
    ) -> ErrorLogEntry:
        return self.log_error(
            ErrorCategory.SYNC_ERROR,
            f"Sync of suggestion {suggestion_id} failed: {error}",
            team_id=team_id,
            context={"suggestion_id": suggestion_id},
        )

    def log_quota_exhausted(
        self, team_id: str, used: int, limit: int
    ) -> Optional[ErrorLogEntry]:
        """
        Record that the team ran out of suggestions. Returns None while an
        unresolved quota entry for the team is still open.
        """
        with self.session_factory() as db:
            open_entry = (
                db.query(ErrorLogEntry.id)
                .filter(
                    ErrorLogEntry.team_id == team_id,
                    ErrorLogEntry.category == ErrorCategory.QUOTA.value,
                    ErrorLogEntry.resolved.is_(False),
                )
                .first()
            )
        if open_entry:
            logger.debug(f"Quota still exhausted for team {team_id} ({used}/{limit})")
            return None

        return self.log_error(
            ErrorCategory.QUOTA,
            f"Suggestion quota exhausted ({used}/{limit})",
            severity=ErrorSeverity.INFO,
            team_id=team_id,
            context={"used": used, "limit": limit},
        )

    def resolve_error(self, error_id: str, resolved_by: Optional[str] = None) -> ErrorLogEntry:
        """Mark an error resolved. Resolving twice keeps the first resolution."""
        with self.session_factory() as db:
            entry = db.get(ErrorLogEntry, error_id)
            if entry is None:
                raise NotFoundError("ErrorLogEntry", error_id)
            if not entry.resolved:
                entry.resolved = True
                entry.resolved_at = utcnow()
                entry.resolved_by = resolved_by
                db.commit()
                db.refresh(entry)
            return entry

    def recent_errors(
        self,
        team_id: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        resolved: Optional[bool] = None,
        limit: int = 50,
    ) -> List[ErrorLogEntry]:
        with self.session_factory() as db:
            query = db.query(ErrorLogEntry)
            if team_id:
                query = query.filter(ErrorLogEntry.team_id == team_id)
            if severity:
                query = query.filter(ErrorLogEntry.severity == severity.value)
            if category:
                query = query.filter(ErrorLogEntry.category == category.value)
            if resolved is not None:
                query = query.filter(ErrorLogEntry.resolved == resolved)
            return query.order_by(ErrorLogEntry.created_at.desc()).limit(limit).all()

    def stats(self, team_id: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate counts: total, critical, unresolved, by_category."""
        with self.session_factory() as db:
            base = db.query(ErrorLogEntry)
            if team_id:
                base = base.filter(ErrorLogEntry.team_id == team_id)

            total = base.count()
            critical = base.filter(
                ErrorLogEntry.severity == ErrorSeverity.CRITICAL.value
            ).count()
            unresolved = base.filter(ErrorLogEntry.resolved.is_(False)).count()

            grouped = db.query(ErrorLogEntry.category, func.count(ErrorLogEntry.id))
            if team_id:
                grouped = grouped.filter(ErrorLogEntry.team_id == team_id)
            by_category = dict(grouped.group_by(ErrorLogEntry.category).all())

        return {
            "total": total,
            "critical": critical,
            "unresolved": unresolved,
            "by_category": by_category,
        }


class HealthMonitor:
    """
    Read-only aggregation of connection states, job-queue counts and error stats.
    """

    def __init__(
        self,
        error_monitor: ErrorMonitor,
        job_queue,
        connection_statuses: Callable[[str], List[Dict[str, Any]]],
        connection_stats: Callable[[], Dict[str, int]],
        worker_stats: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self.error_monitor = error_monitor
        self.job_queue = job_queue
        self.connection_statuses = connection_statuses
        self.connection_stats = connection_stats
        self.worker_stats = worker_stats

    def team_health(self, team_id: str) -> Dict[str, Any]:
        return {
            "team_id": team_id,
            "connections": self.connection_statuses(team_id),
            "jobs": self.job_queue.stats(team_id),
            "errors": self.error_monitor.stats(team_id),
        }

    def system_health(self) -> Dict[str, Any]:
        health = {
            "connections": self.connection_stats(),
            "jobs": self.job_queue.global_stats(),
            "errors": self.error_monitor.stats(),
        }
        if self.worker_stats is not None:
            health["workers"] = self.worker_stats()
        return health
