"""
In-process fakes and builders shared by the test suite.
"""

from typing import List, Optional

from app.ai_core.base import Extractor, Validator
from app.errors import SyncError
from app.models.enums import KnowledgeType, SourceType
from app.models.events import SourceEvent
from app.models.knowledge import ExtractionResult, ValidationResult
from app.services.knowledge_store import InMemoryKnowledgeStore


class FakeExtractor(Extractor):
    """Returns queued results (or raises queued exceptions) in order."""

    def __init__(self, results: Optional[List] = None):
        self.results = list(results or [])
        self.calls: List[SourceEvent] = []

    async def extract(self, event: SourceEvent) -> ExtractionResult:
        self.calls.append(event)
        result = self.results.pop(0) if self.results else knowledge()
        if isinstance(result, Exception):
            raise result
        return result


class FakeValidator(Validator):
    def __init__(self, results: Optional[List] = None):
        self.results = list(results or [])
        self.calls: List[dict] = []

    async def validate(self, extraction, current_content=None, original_text=""):
        self.calls.append(
            {
                "extraction": extraction,
                "current_content": current_content,
                "original_text": original_text,
            }
        )
        result = self.results.pop(0) if self.results else verdict()
        if isinstance(result, Exception):
            raise result
        return result


class FlakyKnowledgeStore(InMemoryKnowledgeStore):
    """In-memory store whose first `failures` writes raise SyncError."""

    def __init__(self, failures: int = 0):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def write_page(self, page_ref, title, content, knowledge_type=None):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise SyncError(f"destination unavailable (attempt {self.attempts})")
        return await super().write_page(page_ref, title, content, knowledge_type)


def knowledge(
    title: str = "Staging URL moved",
    content: str = "The staging environment now lives at staging.internal.example.com.",
    knowledge_type: KnowledgeType = KnowledgeType.FACT,
    confidence: int = 80,
) -> ExtractionResult:
    return ExtractionResult(
        found=True,
        title=title,
        proposed_content=content,
        knowledge_type=knowledge_type,
        rationale="Announces a durable change to shared infrastructure",
        confidence=confidence,
    )


def nothing() -> ExtractionResult:
    return ExtractionResult(found=False, rationale="Small talk")


def verdict(approved: bool = True, confidence: int = 85) -> ValidationResult:
    return ValidationResult(
        confidence=confidence,
        approved_for_suggestion=approved,
        reasoning="Matches the original message" if approved else "Speculative",
    )


def make_event(
    team_id: str,
    external_id: str = "C123:1700000000.000100",
    content: str = "Heads up: the staging URL changed to staging.internal.example.com",
    **extra,
) -> SourceEvent:
    return SourceEvent.build(
        team_id=team_id,
        source_type=SourceType.SLACK,
        external_id=external_id,
        content=content,
        channel="C123",
        **extra,
    )


def create_suggestion(session_factory, suggestion_store, team_id, **overrides):
    """Insert a pending suggestion the way the pipeline does."""
    fields = dict(
        team_id=team_id,
        source_type="slack",
        knowledge_type="fact",
        title="Staging URL moved",
        proposed_content="Staging lives at staging.internal.example.com.",
        confidence=80,
    )
    fields.update(overrides)
    with session_factory() as db:
        suggestion = suggestion_store.create(db, **fields)
        db.commit()
        db.refresh(suggestion)
    return suggestion
