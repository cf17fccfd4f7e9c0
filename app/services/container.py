"""
Service wiring

Builds every long-lived service once and connects them. The FastAPI
lifespan stores the result on app.state; tests build it with fakes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.ai_core.base import Extractor, Validator
from app.config import Settings
from app.db import create_session_factory, init_db
from app.models.enums import JobType
from app.services.connection_manager import ConnectionManager, TransportFactory
from app.services.intake import EventIntake
from app.services.job_queue import JobQueue
from app.services.knowledge_store import InMemoryKnowledgeStore, KnowledgeStore
from app.services.monitor import ErrorMonitor, HealthMonitor
from app.services.notifications import NotificationBus
from app.services.pipeline import ExtractionPipeline
from app.services.suggestions import SuggestionStore
from app.services.sync_applier import SyncApplier
from app.services.teams import TeamService
from app.services.worker import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    session_factory: sessionmaker
    bus: NotificationBus
    error_monitor: ErrorMonitor
    job_queue: JobQueue
    teams: TeamService
    intake: EventIntake
    suggestions: SuggestionStore
    knowledge_store: KnowledgeStore
    sync_applier: SyncApplier
    pipeline: ExtractionPipeline
    connections: ConnectionManager
    workers: WorkerPool
    health: HealthMonitor


def _default_knowledge_store(settings: Settings) -> KnowledgeStore:
    if settings.dry_run or not (
        settings.github_token and settings.github_repo_owner and settings.github_repo_name
    ):
        logger.warning("Dry run or no GitHub repository configured: using in-memory store")
        return InMemoryKnowledgeStore()

    from app.integrations.github.store import GitHubKnowledgeStore

    return GitHubKnowledgeStore(settings)


def _default_transport_factory(settings: Settings) -> TransportFactory:
    from app.integrations.registry import build_transport

    def factory(source_type, credentials):
        return build_transport(source_type, credentials, settings=settings)

    return factory


def build_services(
    settings: Settings,
    session_factory: Optional[sessionmaker] = None,
    extractor: Optional[Extractor] = None,
    validator: Optional[Validator] = None,
    knowledge_store: Optional[KnowledgeStore] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> Services:
    """
    Build and wire all services.

    Anything not passed in is built from settings: SQL database at
    settings.database_url, LLM capabilities behind the gen_ai_hub proxy,
    GitHub knowledge store (in-memory when dry_run) and real transports.
    """
    if session_factory is None:
        session_factory = create_session_factory(settings.database_url)
    init_db(session_factory)

    if extractor is None or validator is None:
        from app.ai_core.extraction.knowledge_extractor import LLMExtractor
        from app.ai_core.validation.knowledge_validator import LLMValidator

        extractor = extractor or LLMExtractor(settings)
        validator = validator or LLMValidator(settings)

    knowledge_store = knowledge_store or _default_knowledge_store(settings)
    transport_factory = transport_factory or _default_transport_factory(settings)

    bus = NotificationBus()
    error_monitor = ErrorMonitor(session_factory)
    job_queue = JobQueue(
        session_factory,
        max_attempts=settings.max_attempts,
        lease_seconds=settings.lease_seconds,
        retry_base_seconds=settings.retry_base_seconds,
        retry_cap_seconds=settings.retry_cap_seconds,
        max_jobs_per_team=settings.max_jobs_per_team,
        bus=bus,
    )
    teams = TeamService(session_factory, settings.default_suggestions_limit)
    intake = EventIntake(session_factory, job_queue, settings.dedup_window_hours)
    suggestions = SuggestionStore(
        session_factory,
        job_queue,
        bus=bus,
        auto_approve_threshold=settings.auto_approve_threshold,
    )
    sync_applier = SyncApplier(session_factory, suggestions, knowledge_store, error_monitor)
    pipeline = ExtractionPipeline(
        session_factory,
        extractor,
        validator,
        suggestions,
        error_monitor,
        knowledge_store=knowledge_store,
        min_event_length=settings.min_event_length,
    )
    connections = ConnectionManager(
        session_factory,
        intake,
        error_monitor,
        transport_factory,
        bus=bus,
        reconnect_base_seconds=settings.reconnect_base_seconds,
        reconnect_cap_seconds=settings.reconnect_cap_seconds,
        max_reconnect_attempts=settings.max_reconnect_attempts,
        idle_after_seconds=settings.idle_after_seconds,
        staged_startup_batch=settings.staged_startup_batch,
        staged_startup_delay_seconds=settings.staged_startup_delay_seconds,
    )
    workers = WorkerPool(
        job_queue,
        error_monitor,
        worker_count=settings.worker_count,
        lease_batch_size=settings.lease_batch_size,
        job_timeout_seconds=settings.job_timeout_seconds,
        poll_interval_seconds=settings.poll_interval_seconds,
        intake=intake,
        completed_job_retention_days=settings.completed_job_retention_days,
        housekeeping_interval_seconds=settings.housekeeping_interval_seconds,
    )
    workers.register(JobType.EXTRACT, pipeline.handle_job)
    workers.register(JobType.SYNC, sync_applier.handle_job)
    workers.register(JobType.RETRY_SYNC, sync_applier.handle_job)

    health = HealthMonitor(
        error_monitor,
        job_queue,
        connection_statuses=connections.status,
        connection_stats=connections.stats,
        worker_stats=workers.stats,
    )

    return Services(
        settings=settings,
        session_factory=session_factory,
        bus=bus,
        error_monitor=error_monitor,
        job_queue=job_queue,
        teams=teams,
        intake=intake,
        suggestions=suggestions,
        knowledge_store=knowledge_store,
        sync_applier=sync_applier,
        pipeline=pipeline,
        connections=connections,
        workers=workers,
        health=health,
    )
