"""
Event Intake & Fingerprint Store

Receives normalized SourceEvents from the Connection Manager (or the simulate
endpoint), drops redeliveries by fingerprint and enqueues one extract job per
distinct event.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.db.models import EventFingerprint, Team
from app.errors import NotFoundError, TeamDisabledError
from app.models.enums import JobType
from app.models.events import SourceEvent
from app.services.job_queue import JobQueue
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IntakeReceipt:
    """Acknowledgement handed back to the connection before it acks the provider."""

    job_id: str
    duplicate: bool


class EventIntake:
    """Dedup-then-enqueue entry point for every source event."""

    def __init__(
        self,
        session_factory: sessionmaker,
        job_queue: JobQueue,
        dedup_window_hours: int = 72,
    ):
        self.session_factory = session_factory
        self.job_queue = job_queue
        self.dedup_window = timedelta(hours=dedup_window_hours)

    def submit(self, event: SourceEvent) -> IntakeReceipt:
        """
        Record the event and enqueue its extract job.

        A fingerprint seen within the dedup window returns the job it already
        produced. The fingerprint row and the job are written in one transaction.

        Raises:
            NotFoundError: Unknown team
            TeamDisabledError: Team is soft-disabled
        """
        with self.session_factory() as db:
            team = db.get(Team, event.team_id)
            if team is None:
                raise NotFoundError("Team", event.team_id)
            if team.disabled:
                raise TeamDisabledError(f"Team {event.team_id} is disabled")

            seen = db.get(EventFingerprint, (event.team_id, event.fingerprint))
            if seen is not None and seen.created_at >= utcnow() - self.dedup_window:
                logger.info(
                    f"Duplicate {event.source_type.value} event {event.external_id} "
                    f"(fingerprint {event.fingerprint[:12]}), job {seen.job_id}"
                )
                return IntakeReceipt(job_id=seen.job_id, duplicate=True)

            job_id = self.job_queue.enqueue(
                team_id=event.team_id,
                job_type=JobType.EXTRACT,
                payload={"event": event.model_dump(mode="json")},
                dedup_key=f"extract:{event.team_id}:{event.fingerprint}",
                db=db,
            )

            if seen is not None:
                # Expired fingerprint seen again: start a new dedup window
                seen.job_id = job_id
                seen.created_at = utcnow()
            else:
                db.add(
                    EventFingerprint(
                        fingerprint=event.fingerprint,
                        team_id=event.team_id,
                        job_id=job_id,
                    )
                )

            try:
                db.commit()
            except IntegrityError:
                # Concurrent delivery of the same event won the insert
                db.rollback()
                existing = db.get(EventFingerprint, (event.team_id, event.fingerprint))
                if existing is None:
                    raise
                return IntakeReceipt(job_id=existing.job_id, duplicate=True)

        return IntakeReceipt(job_id=job_id, duplicate=False)

    def has_seen(self, team_id: str, fingerprint: str) -> Optional[str]:
        """Job id this team's event with the fingerprint produced, if any."""
        with self.session_factory() as db:
            seen = db.get(EventFingerprint, (team_id, fingerprint))
            return seen.job_id if seen else None

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - self.dedup_window
        with self.session_factory() as db:
            result = db.execute(
                delete(EventFingerprint)
                .where(EventFingerprint.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired event fingerprints")
        return result.rowcount
