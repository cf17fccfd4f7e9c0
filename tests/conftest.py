"""
Shared fixtures: in-memory database and services wired with fakes.
"""

import pytest

from app.config import Settings
from app.db import create_session_factory, init_db
from app.integrations.transport import MemoryTransport
from app.services.container import build_services
from app.services.job_queue import JobQueue
from app.services.monitor import ErrorMonitor
from app.services.suggestions import SuggestionStore
from app.services.teams import TeamService
from tests.fakes import FakeExtractor, FakeValidator, FlakyKnowledgeStore


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        dry_run=True,
        retry_base_seconds=0.0,
        worker_count=1,
        job_timeout_seconds=5.0,
        lease_seconds=60,
    )


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite:///:memory:")
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def error_monitor(session_factory):
    return ErrorMonitor(session_factory)


@pytest.fixture
def job_queue(session_factory):
    return JobQueue(session_factory, max_attempts=5, retry_base_seconds=0.0)


@pytest.fixture
def teams(session_factory):
    return TeamService(session_factory, default_suggestions_limit=20)


@pytest.fixture
def team(teams):
    return teams.create("Platform")


@pytest.fixture
def suggestion_store(session_factory, job_queue):
    return SuggestionStore(session_factory, job_queue)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def validator():
    return FakeValidator()


@pytest.fixture
def knowledge_store():
    return FlakyKnowledgeStore()


@pytest.fixture
def services(settings, session_factory, extractor, validator, knowledge_store):
    transports = {}

    def transport_factory(source_type, credentials):
        transport = MemoryTransport(
            source_type=source_type,
            auth_error=credentials.get("auth_error"),
        )
        transports[source_type] = transport
        return transport

    services = build_services(
        settings,
        session_factory=session_factory,
        extractor=extractor,
        validator=validator,
        knowledge_store=knowledge_store,
        transport_factory=transport_factory,
    )
    services.transports = transports
    return services
