"""
Extraction Pipeline

Source event -> Extractor -> (destination lookup) -> Validator -> pending Suggestion

Every run ends in a JobOutcome so the job queue decides about retries:
- nothing worth documenting, or the validator says no: success, no suggestion
- transient provider failure: retryable failure
- malformed or refused provider output: terminal failure, logged at error
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from app.ai_core.base import Extractor, Validator
from app.db.models import Job, Suggestion, Team
from app.errors import ContentRejectionError, TransientProviderError
from app.models.enums import KnowledgeType
from app.models.events import SourceEvent
from app.models.knowledge import ExtractionResult, PageMatch
from app.models.results import JobOutcome
from app.services.knowledge_store import KnowledgeStore
from app.services.monitor import ErrorMonitor
from app.services.suggestions import SuggestionStore
from app.services.teams import consume_quota, has_quota

logger = logging.getLogger(__name__)


class ExtractionPipeline:
    """
    Turns one source event into zero or one pending suggestion.

    Pipeline steps:
    1. Quota pre-check (no AI spend for exhausted teams)
    2. Extract
    3. Look up the destination page the knowledge belongs to
    4. Validate against the original text and current page content
    5. Create the suggestion and take one unit of quota in one transaction
    6. Auto-approve when the team's threshold allows it
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        extractor: Extractor,
        validator: Validator,
        suggestion_store: SuggestionStore,
        error_monitor: ErrorMonitor,
        knowledge_store: Optional[KnowledgeStore] = None,
        min_event_length: int = 20,
    ):
        self.session_factory = session_factory
        self.extractor = extractor
        self.validator = validator
        self.suggestion_store = suggestion_store
        self.error_monitor = error_monitor
        self.knowledge_store = knowledge_store
        self.min_event_length = min_event_length

    async def handle_job(self, job: Job) -> JobOutcome:
        """Job handler for extract jobs."""
        return await self.process(job.team_id, (job.payload or {}).get("event"))

    async def process(
        self, team_id: str, event_payload: Optional[Dict[str, Any]]
    ) -> JobOutcome:
        try:
            event = SourceEvent.model_validate(event_payload or {})
        except ValidationError as e:
            return JobOutcome.terminal(f"Invalid event payload: {e}")

        with self.session_factory() as db:
            team = db.get(Team, team_id)
            if team is None:
                return JobOutcome.terminal(f"Team {team_id} not found")

            # A retried job whose suggestion was already committed
            if (
                db.query(Suggestion.id)
                .filter(
                    Suggestion.team_id == team_id,
                    Suggestion.event_fingerprint == event.fingerprint,
                )
                .first()
            ):
                logger.info(f"Event {event.external_id} already produced a suggestion")
                return JobOutcome.success(detail="already_processed")

        if not has_quota(team):
            self.error_monitor.log_quota_exhausted(
                team_id, team.suggestions_used, team.suggestions_limit
            )
            return JobOutcome.success(detail="quota_exhausted")

        if len(event.content.strip()) < self.min_event_length:
            logger.debug(f"Event {event.external_id} too short to extract from")
            return JobOutcome.success(detail="too_short")

        # Stage 1
        try:
            extraction = await self.extractor.extract(event)
        except TransientProviderError as e:
            return JobOutcome.retry(f"Extractor: {e}")
        except ContentRejectionError as e:
            self.error_monitor.log_ai_error(team_id, "extraction", e)
            return JobOutcome.terminal(f"Extractor: {e}")

        if not extraction.found:
            logger.info(f"No knowledge in event {event.external_id}: {extraction.rationale}")
            return JobOutcome.success(detail="not_knowledge")

        page = await self._find_destination(extraction)
        current_content = page.content if page else None

        # Stage 2
        try:
            validation = await self.validator.validate(
                extraction, current_content=current_content, original_text=event.content
            )
        except TransientProviderError as e:
            return JobOutcome.retry(f"Validator: {e}")
        except ContentRejectionError as e:
            self.error_monitor.log_ai_error(team_id, "validation", e)
            return JobOutcome.terminal(f"Validator: {e}")

        if not validation.approved_for_suggestion:
            logger.info(
                f"Validator rejected '{extraction.title}' "
                f"(confidence: {validation.confidence}): {validation.reasoning}"
            )
            return JobOutcome.success(detail="validator_rejected")

        with self.session_factory() as db:
            if not consume_quota(db, team_id):
                db.rollback()
                team = db.get(Team, team_id)
                self.error_monitor.log_quota_exhausted(
                    team_id, team.suggestions_used, team.suggestions_limit
                )
                return JobOutcome.success(detail="quota_exhausted")

            suggestion = self.suggestion_store.create(
                db,
                team_id=team_id,
                source_type=event.source_type.value,
                knowledge_type=(extraction.knowledge_type or KnowledgeType.FACT).value,
                title=extraction.title,
                proposed_content=extraction.proposed_content,
                current_content=current_content,
                confidence=validation.confidence,
                ai_reasoning=(
                    f"Extraction: {extraction.rationale}\n\nValidation: {validation.reasoning}"
                ),
                source_link=event.raw_payload.get("permalink"),
                destination_page_ref=page.page_ref if page else None,
                event_fingerprint=event.fingerprint,
                details={
                    "external_id": event.external_id,
                    "channel": event.channel,
                    "extraction_confidence": extraction.confidence,
                },
            )
            db.commit()
            db.refresh(suggestion)
            team = db.get(Team, team_id)

        logger.info(
            f"Created suggestion {suggestion.id} '{suggestion.title}' "
            f"(confidence: {suggestion.confidence})"
        )
        self.suggestion_store.publish_created(suggestion)
        self.suggestion_store.maybe_auto_approve(suggestion, team)
        return JobOutcome.success(detail="suggestion_created")

    async def _find_destination(self, extraction: ExtractionResult) -> Optional[PageMatch]:
        if self.knowledge_store is None:
            return None
        try:
            return await self.knowledge_store.find_page(extraction.title)
        except Exception as e:
            # Lookup only enriches the suggestion
            logger.warning(f"Destination lookup for '{extraction.title}' failed: {e}")
            return None
