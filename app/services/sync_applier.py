"""
Sync Applier

Writes approved suggestions to the destination knowledge store and records
the result on the suggestion. Only approved (or previously failed) suggestions
are ever written; replaying a sync for a synced suggestion is a no-op.
"""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.db.models import Job, Suggestion
from app.models.enums import SuggestionStatus
from app.models.results import JobOutcome, SyncResult
from app.services.knowledge_store import KnowledgeStore
from app.services.monitor import ErrorMonitor
from app.services.suggestions import SuggestionStore
from app.utils.helpers import truncate

logger = logging.getLogger(__name__)


class SyncApplier:
    def __init__(
        self,
        session_factory: sessionmaker,
        suggestion_store: SuggestionStore,
        knowledge_store: KnowledgeStore,
        error_monitor: Optional[ErrorMonitor] = None,
    ):
        self.session_factory = session_factory
        self.suggestion_store = suggestion_store
        self.knowledge_store = knowledge_store
        self.error_monitor = error_monitor

    async def apply(self, suggestion_id: str) -> SyncResult:
        """
        Write one suggestion to the knowledge store.

        Returns:
            SyncResult with the page reference on success. A failed write leaves
            the suggestion in sync_failed and returns a retryable result; a
            suggestion that was never approved returns a terminal result.
        """
        with self.session_factory() as db:
            suggestion = db.get(Suggestion, suggestion_id)

        if suggestion is None:
            return SyncResult(
                ok=False, error=f"Suggestion {suggestion_id} not found", retryable=False
            )

        if suggestion.status == SuggestionStatus.SYNCED.value:
            logger.info(
                f"Suggestion {suggestion_id} already synced to "
                f"{suggestion.destination_page_ref}"
            )
            return SyncResult(ok=True, page_ref=suggestion.destination_page_ref)

        if suggestion.status not in (
            SuggestionStatus.APPROVED.value,
            SuggestionStatus.SYNC_FAILED.value,
        ):
            return SyncResult(
                ok=False,
                error=f"Suggestion {suggestion_id} is {suggestion.status}, not approved",
                retryable=False,
            )

        try:
            page_ref = await self.knowledge_store.write_page(
                suggestion.destination_page_ref,
                suggestion.title,
                suggestion.proposed_content,
                knowledge_type=suggestion.knowledge_type,
            )
        except Exception as e:
            error = truncate(str(e) or type(e).__name__, 1000)
            logger.warning(f"Sync of suggestion {suggestion_id} failed: {error}")
            self.suggestion_store.mark_sync_failed(suggestion_id, error)
            if self.error_monitor:
                self.error_monitor.log_sync_failure(suggestion.team_id, suggestion_id, error)
            return SyncResult(ok=False, error=error, retryable=True)

        self.suggestion_store.mark_synced(suggestion_id, page_ref)
        logger.info(f"Suggestion {suggestion_id} synced to {page_ref}")
        return SyncResult(ok=True, page_ref=page_ref)

    async def handle_job(self, job: Job) -> JobOutcome:
        """Job handler for sync and retry_sync jobs."""
        suggestion_id = (job.payload or {}).get("suggestion_id")
        if not suggestion_id:
            return JobOutcome.terminal("Sync job payload has no suggestion_id")

        result = await self.apply(suggestion_id)
        if result.ok:
            return JobOutcome.success(detail="synced")
        if result.retryable:
            return JobOutcome.retry(result.error or "sync failed")
        return JobOutcome.terminal(result.error or "sync refused")
