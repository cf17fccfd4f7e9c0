"""
End-to-end scenarios for the extraction pipeline, driven through intake
and the worker pool with fake AI capabilities.
"""

import pytest

from app.db.models import ErrorLogEntry, Suggestion
from app.errors import ContentRejectionError, TransientProviderError
from app.models.enums import ErrorCategory, JobState, SuggestionStatus
from tests.fakes import knowledge, make_event, nothing, verdict


def _suggestions(session_factory):
    with session_factory() as db:
        return db.query(Suggestion).all()


def _errors(session_factory):
    with session_factory() as db:
        return db.query(ErrorLogEntry).all()


async def _submit_and_run(services, event):
    receipt = services.intake.submit(event)
    await services.workers.run_once("test-worker")
    return services.job_queue.get(receipt.job_id)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_event_becomes_pending_suggestion(self, services, team, session_factory):
        job = await _submit_and_run(
            services, make_event(team.id, permalink="https://acme.slack.com/archives/C123/p1")
        )

        assert job.state == JobState.COMPLETED.value
        [suggestion] = _suggestions(session_factory)
        assert suggestion.status == SuggestionStatus.PENDING.value
        assert suggestion.title == "Staging URL moved"
        assert suggestion.knowledge_type == "fact"
        assert suggestion.confidence == 85
        assert suggestion.source_link == "https://acme.slack.com/archives/C123/p1"
        assert "Extraction:" in suggestion.ai_reasoning
        assert "Validation:" in suggestion.ai_reasoning
        assert services.teams.get(team.id).suggestions_used == 1

    @pytest.mark.asyncio
    async def test_existing_page_is_passed_to_validator(
        self, services, team, knowledge_store, validator, session_factory
    ):
        await knowledge_store.write_page(
            "fact/staging.md", "Staging URL moved", "Staging lives at old.example.com"
        )

        await _submit_and_run(services, make_event(team.id))

        assert validator.calls[0]["current_content"] == "Staging lives at old.example.com"
        [suggestion] = _suggestions(session_factory)
        assert suggestion.destination_page_ref == "fact/staging.md"
        assert suggestion.current_content == "Staging lives at old.example.com"


class TestNoSuggestion:
    @pytest.mark.asyncio
    async def test_validator_rejection_is_not_an_error(
        self, services, team, validator, session_factory
    ):
        validator.results = [verdict(approved=False, confidence=30)]

        job = await _submit_and_run(services, make_event(team.id))

        assert job.state == JobState.COMPLETED.value
        assert _suggestions(session_factory) == []
        assert _errors(session_factory) == []
        assert services.teams.get(team.id).suggestions_used == 0

    @pytest.mark.asyncio
    async def test_small_talk(self, services, team, extractor, validator, session_factory):
        extractor.results = [nothing()]

        job = await _submit_and_run(services, make_event(team.id))

        assert job.state == JobState.COMPLETED.value
        assert validator.calls == []
        assert _suggestions(session_factory) == []

    @pytest.mark.asyncio
    async def test_short_messages_skip_the_extractor(self, services, team, extractor):
        job = await _submit_and_run(services, make_event(team.id, content="ok thx"))

        assert job.state == JobState.COMPLETED.value
        assert extractor.calls == []

    @pytest.mark.asyncio
    async def test_exhausted_quota_skips_ai_calls(
        self, services, teams, extractor, session_factory
    ):
        team = teams.create("Free tier", suggestions_limit=0)

        job = await _submit_and_run(services, make_event(team.id))

        assert job.state == JobState.COMPLETED.value
        assert extractor.calls == []
        [entry] = _errors(session_factory)
        assert entry.category == ErrorCategory.QUOTA.value
        assert entry.severity == "info"

    @pytest.mark.asyncio
    async def test_exhausted_quota_is_reported_once(
        self, services, teams, extractor, session_factory
    ):
        team = teams.create("Free tier", suggestions_limit=0)

        for i in range(3):
            await _submit_and_run(services, make_event(team.id, external_id=f"C123:{i}"))

        assert extractor.calls == []
        assert [e.category for e in _errors(session_factory)] == [ErrorCategory.QUOTA.value]


class TestDeliverySemantics:
    @pytest.mark.asyncio
    async def test_duplicate_delivery_produces_one_suggestion(
        self, services, team, extractor, session_factory
    ):
        first = services.intake.submit(make_event(team.id))
        second = services.intake.submit(make_event(team.id))
        await services.workers.run_once("test-worker")
        await services.workers.run_once("test-worker")

        assert second.job_id == first.job_id
        assert len(extractor.calls) == 1
        assert len(_suggestions(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_replayed_job_does_not_duplicate_suggestion(
        self, services, team, extractor, session_factory
    ):
        payload = make_event(team.id).model_dump(mode="json")

        first = await services.pipeline.process(team.id, payload)
        second = await services.pipeline.process(team.id, payload)

        assert first.detail == "suggestion_created"
        assert second.ok and second.detail == "already_processed"
        assert len(extractor.calls) == 1
        assert len(_suggestions(session_factory)) == 1


class TestProviderFailures:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, services, team, extractor, session_factory
    ):
        extractor.results = [TransientProviderError("429 rate limited"), knowledge()]

        job = await _submit_and_run(services, make_event(team.id))
        assert job.state == JobState.PENDING.value
        assert job.attempts == 1

        await services.workers.run_once("test-worker")
        job = services.job_queue.get(job.id)
        assert job.state == JobState.COMPLETED.value
        assert len(_suggestions(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_content_rejection_is_terminal_and_logged(
        self, services, team, extractor, session_factory
    ):
        extractor.results = [ContentRejectionError("malformed output")]

        job = await _submit_and_run(services, make_event(team.id))

        assert job.state == JobState.FAILED.value
        assert job.attempts == 1
        assert _suggestions(session_factory) == []
        categories = sorted(e.category for e in _errors(session_factory))
        assert categories == [ErrorCategory.AI_ERROR.value, ErrorCategory.JOB_FAILURE.value]

    @pytest.mark.asyncio
    async def test_validator_outage_is_retried(self, services, team, validator):
        validator.results = [TransientProviderError("validator timed out")]

        job = await _submit_and_run(services, make_event(team.id))

        assert job.state == JobState.PENDING.value
        assert "Validator" in job.last_error


class TestAutoApproval:
    @pytest.mark.asyncio
    async def test_confident_suggestion_is_approved_and_queued_for_sync(
        self, services, teams, team, session_factory
    ):
        teams.set_auto_approve_threshold(team.id, 80)

        await _submit_and_run(services, make_event(team.id))

        [suggestion] = _suggestions(session_factory)
        assert suggestion.status == SuggestionStatus.APPROVED.value
        assert services.job_queue.find_by_dedup_key(f"sync:{suggestion.id}") is not None
