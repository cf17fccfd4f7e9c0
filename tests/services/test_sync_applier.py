"""
Tests for writing approved suggestions to the knowledge store.
"""

import pytest

from app.db.models import ErrorLogEntry
from app.models.enums import ErrorCategory, JobState, SuggestionStatus
from tests.fakes import FlakyKnowledgeStore, create_suggestion


@pytest.fixture
def knowledge_store():
    return FlakyKnowledgeStore(failures=3)


@pytest.fixture
def approved(services, session_factory, team):
    suggestion = create_suggestion(session_factory, services.suggestions, team.id)
    services.suggestions.approve(suggestion.id, "U_ALICE")
    return suggestion


class TestSyncApplier:
    @pytest.mark.asyncio
    async def test_sync_fails_three_times_then_succeeds(
        self, services, approved, knowledge_store, session_factory
    ):
        job = services.job_queue.find_by_dedup_key(f"sync:{approved.id}")

        for attempt in range(1, 4):
            await services.workers.run_once("test-worker")
            assert services.job_queue.get(job.id).state == JobState.PENDING.value
            assert services.job_queue.get(job.id).attempts == attempt
            status = services.suggestions.get(approved.id).status
            assert status == SuggestionStatus.SYNC_FAILED.value

        await services.workers.run_once("test-worker")

        assert services.job_queue.get(job.id).state == JobState.COMPLETED.value
        suggestion = services.suggestions.get(approved.id)
        assert suggestion.status == SuggestionStatus.SYNCED.value
        assert suggestion.destination_page_ref == "fact/staging-url-moved.md"
        assert knowledge_store.attempts == 4
        assert knowledge_store.revisions == {"fact/staging-url-moved.md": 1}

        with session_factory() as db:
            categories = [e.category for e in db.query(ErrorLogEntry)]
        assert categories == [ErrorCategory.SYNC_ERROR.value] * 3

    @pytest.mark.asyncio
    async def test_pending_suggestion_is_never_written(
        self, services, session_factory, team, knowledge_store
    ):
        suggestion = create_suggestion(session_factory, services.suggestions, team.id)

        result = await services.sync_applier.apply(suggestion.id)

        assert result.ok is False
        assert result.retryable is False
        assert knowledge_store.attempts == 0

    @pytest.mark.asyncio
    async def test_synced_suggestion_is_a_no_op(self, services, approved, knowledge_store):
        knowledge_store.failures = 0
        first = await services.sync_applier.apply(approved.id)
        second = await services.sync_applier.apply(approved.id)

        assert first.ok and second.ok
        assert second.page_ref == first.page_ref
        assert knowledge_store.attempts == 1

    @pytest.mark.asyncio
    async def test_missing_suggestion(self, services):
        result = await services.sync_applier.apply("missing")

        assert result.ok is False
        assert result.retryable is False
