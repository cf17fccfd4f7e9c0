"""
Suggestion Store & Approval Workflow

State machine:
    pending --approve--> approved --sync ok--> synced
    approved --sync fails--> sync_failed --sync ok--> synced
    pending --reject--> rejected

Every decision is a guarded UPDATE ... WHERE status = 'pending', so two
concurrent approvals of the same suggestion cannot both succeed.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import ActivityLogEntry, Job, Suggestion, Team
from app.errors import AlreadyDecidedError, InvalidStateError, NotFoundError
from app.models.enums import JobState, JobType, SuggestionStatus
from app.models.results import BulkFailure, BulkResult
from app.services.job_queue import JobQueue
from app.services.notifications import NotificationBus
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

AUTO_APPROVE_ACTOR = "system:auto-approve"

_SYNCABLE = (SuggestionStatus.APPROVED.value, SuggestionStatus.SYNC_FAILED.value)


class SuggestionStore:
    """Owns suggestion records and every transition they go through."""

    def __init__(
        self,
        session_factory: sessionmaker,
        job_queue: JobQueue,
        bus: Optional[NotificationBus] = None,
        auto_approve_threshold: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.job_queue = job_queue
        self.bus = bus
        self.auto_approve_threshold = auto_approve_threshold

    # ------------------------------------------------------------------
    # Creation (extraction pipeline only)
    # ------------------------------------------------------------------

    def create(self, db: Session, **fields: Any) -> Suggestion:
        """
        Insert a pending suggestion inside the caller's transaction.

        The pipeline calls this together with the quota increment and commits both.
        """
        suggestion = Suggestion(status=SuggestionStatus.PENDING.value, **fields)
        db.add(suggestion)
        db.flush()
        self._record_activity(db, suggestion, "detected", actor_id=None)
        return suggestion

    def publish_created(self, suggestion: Suggestion) -> None:
        """Announce a committed suggestion to subscribers."""
        self._publish("suggestion_created", suggestion)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, suggestion_id: str, team_id: Optional[str] = None) -> Suggestion:
        with self.session_factory() as db:
            return self._load(db, suggestion_id, team_id)

    def list(
        self,
        team_id: str,
        status: Optional[SuggestionStatus] = None,
        source_type: Optional[str] = None,
        knowledge_type: Optional[str] = None,
        min_confidence: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Suggestion]:
        """Filtered read. Never changes state."""
        with self.session_factory() as db:
            query = db.query(Suggestion).filter(Suggestion.team_id == team_id)
            if status:
                query = query.filter(Suggestion.status == status.value)
            if source_type:
                query = query.filter(Suggestion.source_type == source_type)
            if knowledge_type:
                query = query.filter(Suggestion.knowledge_type == knowledge_type)
            if min_confidence is not None:
                query = query.filter(Suggestion.confidence >= min_confidence)
            return (
                query.order_by(Suggestion.created_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

    def activity(self, team_id: str, limit: int = 50) -> List[ActivityLogEntry]:
        with self.session_factory() as db:
            return (
                db.query(ActivityLogEntry)
                .filter(ActivityLogEntry.team_id == team_id)
                .order_by(ActivityLogEntry.created_at.desc())
                .limit(limit)
                .all()
            )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def approve(
        self, suggestion_id: str, actor_id: str, team_id: Optional[str] = None
    ) -> Suggestion:
        """
        Approve a pending suggestion and enqueue its sync job.

        Raises:
            NotFoundError: Unknown id (or belongs to another team)
            AlreadyDecidedError: Suggestion is not pending; nothing changes
        """
        with self.session_factory() as db:
            suggestion = self._decide(
                db, suggestion_id, team_id, SuggestionStatus.APPROVED, actor_id
            )
            job_id = self.job_queue.enqueue(
                team_id=suggestion.team_id,
                job_type=JobType.SYNC,
                payload={"suggestion_id": suggestion.id},
                dedup_key=f"sync:{suggestion.id}",
                db=db,
            )
            db.commit()

        logger.info(f"Suggestion {suggestion_id} approved by {actor_id}, sync job {job_id}")
        self._publish("suggestion_approved", suggestion)
        return suggestion

    def reject(
        self, suggestion_id: str, actor_id: str, team_id: Optional[str] = None
    ) -> Suggestion:
        """Reject a pending suggestion. Terminal; no sync job."""
        with self.session_factory() as db:
            suggestion = self._decide(
                db, suggestion_id, team_id, SuggestionStatus.REJECTED, actor_id
            )
            db.commit()

        logger.info(f"Suggestion {suggestion_id} rejected by {actor_id}")
        self._publish("suggestion_rejected", suggestion)
        return suggestion

    def bulk_approve(
        self, suggestion_ids: Iterable[str], actor_id: str, team_id: Optional[str] = None
    ) -> BulkResult:
        """Approve each id independently; one bad id never blocks the others."""
        return self._bulk(self.approve, suggestion_ids, actor_id, team_id)

    def bulk_reject(
        self, suggestion_ids: Iterable[str], actor_id: str, team_id: Optional[str] = None
    ) -> BulkResult:
        return self._bulk(self.reject, suggestion_ids, actor_id, team_id)

    def _bulk(self, action, suggestion_ids, actor_id, team_id) -> BulkResult:
        result = BulkResult()
        for suggestion_id in dict.fromkeys(suggestion_ids):  # de-duplicate, keep order
            try:
                action(suggestion_id, actor_id, team_id=team_id)
                result.succeeded.append(suggestion_id)
            except NotFoundError:
                result.failed.append(BulkFailure(id=suggestion_id, reason="not_found"))
            except AlreadyDecidedError as e:
                result.failed.append(
                    BulkFailure(id=suggestion_id, reason=f"already_decided:{e.status}")
                )
            except Exception as e:
                logger.error(
                    f"Bulk {action.__name__} failed for {suggestion_id}: {e}", exc_info=True
                )
                result.failed.append(
                    BulkFailure(id=suggestion_id, reason=f"error:{type(e).__name__}")
                )
        logger.info(
            f"Bulk {action.__name__}: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed"
        )
        return result

    def _decide(
        self,
        db: Session,
        suggestion_id: str,
        team_id: Optional[str],
        new_status: SuggestionStatus,
        actor_id: str,
    ) -> Suggestion:
        suggestion = self._load(db, suggestion_id, team_id)
        now = utcnow()
        result = db.execute(
            update(Suggestion)
            .where(
                Suggestion.id == suggestion_id,
                Suggestion.status == SuggestionStatus.PENDING.value,
            )
            .values(status=new_status.value, decided_at=now, decided_by=actor_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            current = db.get(Suggestion, suggestion_id)
            raise AlreadyDecidedError(suggestion_id, current.status if current else None)

        db.refresh(suggestion)
        self._record_activity(db, suggestion, new_status.value, actor_id)
        return suggestion

    # ------------------------------------------------------------------
    # Auto-approval
    # ------------------------------------------------------------------

    def auto_approve_threshold_for(self, team: Team) -> Optional[int]:
        if team.auto_approve_threshold is not None:
            return team.auto_approve_threshold
        return self.auto_approve_threshold

    def maybe_auto_approve(self, suggestion: Suggestion, team: Team) -> bool:
        """Approve through the normal path when confidence meets the configured threshold."""
        threshold = self.auto_approve_threshold_for(team)
        if threshold is None or suggestion.confidence < threshold:
            return False
        try:
            self.approve(suggestion.id, AUTO_APPROVE_ACTOR, team_id=team.id)
        except AlreadyDecidedError:
            return False
        logger.info(
            f"Auto-approved suggestion {suggestion.id} "
            f"(confidence {suggestion.confidence} >= {threshold})"
        )
        return True

    # ------------------------------------------------------------------
    # Sync bookkeeping (sync applier only)
    # ------------------------------------------------------------------

    def mark_synced(self, suggestion_id: str, page_ref: str) -> Suggestion:
        with self.session_factory() as db:
            suggestion = self._load(db, suggestion_id)
            if suggestion.status == SuggestionStatus.SYNCED.value:
                return suggestion
            now = utcnow()
            result = db.execute(
                update(Suggestion)
                .where(Suggestion.id == suggestion_id, Suggestion.status.in_(_SYNCABLE))
                .values(
                    status=SuggestionStatus.SYNCED.value,
                    destination_page_ref=page_ref,
                    sync_error=None,
                    synced_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise InvalidStateError(
                    f"Suggestion {suggestion_id} cannot be synced "
                    f"from status {suggestion.status}"
                )
            db.refresh(suggestion)
            self._record_activity(db, suggestion, "synced", actor_id=None)
            db.commit()

        self._publish("suggestion_synced", suggestion)
        return suggestion

    def mark_sync_failed(self, suggestion_id: str, error: str) -> Suggestion:
        with self.session_factory() as db:
            suggestion = self._load(db, suggestion_id)
            result = db.execute(
                update(Suggestion)
                .where(Suggestion.id == suggestion_id, Suggestion.status.in_(_SYNCABLE))
                .values(status=SuggestionStatus.SYNC_FAILED.value, sync_error=error)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise InvalidStateError(
                    f"Suggestion {suggestion_id} cannot fail sync "
                    f"from status {suggestion.status}"
                )
            db.refresh(suggestion)
            self._record_activity(db, suggestion, "sync_failed", actor_id=None)
            db.commit()

        self._publish("suggestion_sync_failed", suggestion)
        return suggestion

    def retry_sync(
        self, suggestion_id: str, actor_id: str, team_id: Optional[str] = None
    ) -> str:
        """
        Re-queue the sync of an approved suggestion whose sync job gave up.

        Returns the id of the job that will perform the sync. If a sync job is
        already pending or running, that job's id is returned and nothing is added.
        """
        with self.session_factory() as db:
            suggestion = self._load(db, suggestion_id, team_id)
            if suggestion.status not in _SYNCABLE:
                raise InvalidStateError(
                    f"Suggestion {suggestion_id} is {suggestion.status}; only approved "
                    f"or sync_failed suggestions can be re-synced"
                )

            latest = (
                db.query(Job)
                .filter(
                    or_(
                        Job.dedup_key == f"sync:{suggestion_id}",
                        Job.dedup_key.like(f"retry_sync:{suggestion_id}:%"),
                    )
                )
                .order_by(Job.created_at.desc())
                .first()
            )
            if latest is not None and latest.state in (
                JobState.PENDING.value,
                JobState.PROCESSING.value,
            ):
                return latest.id

            job_id = self.job_queue.enqueue(
                team_id=suggestion.team_id,
                job_type=JobType.RETRY_SYNC,
                payload={"suggestion_id": suggestion_id, "requested_by": actor_id},
                dedup_key=f"retry_sync:{suggestion_id}:{latest.id if latest else 'none'}",
                db=db,
            )
            db.commit()

        logger.info(f"Sync retry {job_id} queued for suggestion {suggestion_id} by {actor_id}")
        return job_id

    def update_destination(
        self,
        suggestion_id: str,
        page_ref: str,
        current_content: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> Suggestion:
        """Point a pending suggestion at a different destination page."""
        with self.session_factory() as db:
            suggestion = self._load(db, suggestion_id, team_id)
            result = db.execute(
                update(Suggestion)
                .where(
                    Suggestion.id == suggestion_id,
                    Suggestion.status == SuggestionStatus.PENDING.value,
                )
                .values(destination_page_ref=page_ref, current_content=current_content)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise AlreadyDecidedError(suggestion_id, suggestion.status)
            db.commit()
            db.refresh(suggestion)
            return suggestion

    # ------------------------------------------------------------------

    def _load(
        self, db: Session, suggestion_id: str, team_id: Optional[str] = None
    ) -> Suggestion:
        suggestion = db.get(Suggestion, suggestion_id)
        if suggestion is None or (team_id is not None and suggestion.team_id != team_id):
            raise NotFoundError("Suggestion", suggestion_id)
        return suggestion

    def _record_activity(
        self, db: Session, suggestion: Suggestion, status: str, actor_id: Optional[str]
    ) -> None:
        db.add(
            ActivityLogEntry(
                team_id=suggestion.team_id,
                suggestion_id=suggestion.id,
                status=status,
                title=suggestion.title,
                source_type=suggestion.source_type,
                actor_id=actor_id,
            )
        )

    def _publish(self, event_type: str, suggestion: Suggestion) -> None:
        if self.bus is None:
            return
        data: Dict[str, Any] = {
            "id": suggestion.id,
            "team_id": suggestion.team_id,
            "status": suggestion.status,
            "confidence": suggestion.confidence,
        }
        self.bus.publish(event_type, data)
