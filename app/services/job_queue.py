"""
Persistent Job Queue

Durable, multi-tenant queue backing the ingestion-to-approval pipeline.

- FIFO within a team, round-robin across teams (no global ordering)
- Idempotent enqueue on a dedup key
- Leases: a worker owns a job only while its lease is valid; every
  transition is a conditional UPDATE so a stale worker can never complete
  or fail a job it no longer owns
- Explicit retry policy with exponential delay and a terminal `failed` state
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, event, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Job
from app.models.enums import JobState, JobType
from app.services.notifications import NotificationBus
from app.utils.helpers import exponential_delay, truncate, utcnow

logger = logging.getLogger(__name__)

# Session.info key holding notifications that wait for the commit
_PENDING_NOTIFICATIONS = "job_queue.pending_notifications"


class JobQueue:
    """Multi-tenant job queue stored in the application database."""

    def __init__(
        self,
        session_factory: sessionmaker,
        max_attempts: int = 5,
        lease_seconds: int = 300,
        retry_base_seconds: float = 1.0,
        retry_cap_seconds: float = 300.0,
        max_jobs_per_team: int = 2,
        bus: Optional[NotificationBus] = None,
    ):
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.lease_seconds = lease_seconds
        self.retry_base_seconds = retry_base_seconds
        self.retry_cap_seconds = retry_cap_seconds
        self.max_jobs_per_team = max_jobs_per_team
        self.bus = bus
        self._last_team: Optional[str] = None  # Round-robin cursor

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        team_id: str,
        job_type: JobType,
        payload: Dict[str, Any],
        dedup_key: Optional[str] = None,
        run_at: Optional[datetime] = None,
        db: Optional[Session] = None,
    ) -> str:
        """
        Add a job and return its id.

        If a job with the same dedup_key already exists, nothing is inserted and
        the existing job id is returned. When `db` is given the job joins the
        caller's transaction and the caller commits.
        """
        if db is not None:
            return self._enqueue(db, team_id, job_type, payload, dedup_key, run_at)

        with self.session_factory() as db:
            try:
                job_id = self._enqueue(db, team_id, job_type, payload, dedup_key, run_at)
                db.commit()
                return job_id
            except IntegrityError:
                # Lost an insert race on the same dedup key
                db.rollback()
                existing = self._find_by_dedup_key(db, dedup_key)
                if existing is None:
                    raise
                return existing

    def _enqueue(
        self,
        db: Session,
        team_id: str,
        job_type: JobType,
        payload: Dict[str, Any],
        dedup_key: Optional[str],
        run_at: Optional[datetime],
    ) -> str:
        if dedup_key:
            existing = self._find_by_dedup_key(db, dedup_key)
            if existing:
                logger.debug(f"Job with dedup key {dedup_key} already exists: {existing}")
                return existing

        job = Job(
            team_id=team_id,
            job_type=job_type.value,
            payload=payload,
            state=JobState.PENDING.value,
            attempts=0,
            max_attempts=self.max_attempts,
            dedup_key=dedup_key,
            run_at=run_at or utcnow(),
        )
        db.add(job)
        db.flush()

        logger.info(f"Enqueued job {job.id} ({job_type.value}) for team {team_id}")
        self._publish_on_commit(db, "job_enqueued", job)
        return job.id

    def _find_by_dedup_key(self, db: Session, dedup_key: Optional[str]) -> Optional[str]:
        if not dedup_key:
            return None
        return db.query(Job.id).filter(Job.dedup_key == dedup_key).scalar()

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def lease(self, worker_id: str, max_batch: int = 1) -> List[Job]:
        """
        Claim up to max_batch due pending jobs for worker_id.

        Expired leases are reclaimed first. Teams with due work are served
        round-robin starting after the last team served, oldest job first
        within each team, and no team exceeds max_jobs_per_team in flight.
        """
        now = utcnow()
        leased_ids: List[str] = []

        with self.session_factory() as db:
            self._reclaim_expired(db, now)

            team_ids = sorted(
                row[0]
                for row in db.query(Job.team_id)
                .filter(Job.state == JobState.PENDING.value, Job.run_at <= now)
                .distinct()
                .all()
            )
            if not team_ids:
                db.commit()
                return []

            in_flight = dict(
                db.query(Job.team_id, func.count(Job.id))
                .filter(Job.state == JobState.PROCESSING.value)
                .group_by(Job.team_id)
                .all()
            )

            active = self._round_robin_order(team_ids)
            while active and len(leased_ids) < max_batch:
                for team_id in list(active):
                    if len(leased_ids) >= max_batch:
                        break
                    if in_flight.get(team_id, 0) >= self.max_jobs_per_team:
                        active.remove(team_id)
                        continue

                    job_id = self._claim_next_for_team(db, team_id, worker_id, now)
                    if job_id is None:
                        active.remove(team_id)
                        continue

                    in_flight[team_id] = in_flight.get(team_id, 0) + 1
                    leased_ids.append(job_id)
                    self._last_team = team_id

            db.commit()

            if not leased_ids:
                return []
            jobs = {job.id: job for job in db.query(Job).filter(Job.id.in_(leased_ids))}

        leased = [jobs[job_id] for job_id in leased_ids]
        for job in leased:
            logger.debug(f"Worker {worker_id} leased job {job.id} ({job.job_type})")
            self._publish("job_processing", job)
        return leased

    def _round_robin_order(self, team_ids: List[str]) -> List[str]:
        if self._last_team is None:
            return list(team_ids)
        after = [t for t in team_ids if t > self._last_team]
        before = [t for t in team_ids if t <= self._last_team]
        return after + before

    def _claim_next_for_team(
        self, db: Session, team_id: str, worker_id: str, now: datetime
    ) -> Optional[str]:
        candidates = (
            db.query(Job.id)
            .filter(
                Job.team_id == team_id,
                Job.state == JobState.PENDING.value,
                Job.run_at <= now,
            )
            .order_by(Job.created_at, Job.id)
            .limit(5)
            .all()
        )
        for (job_id,) in candidates:
            if self.claim(db, job_id, worker_id, now):
                return job_id
        return None

    def claim(self, db: Session, job_id: str, worker_id: str, now: datetime) -> bool:
        """
        Conditionally move one job from pending to processing.

        Returns False if another worker claimed it first.
        """
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.state == JobState.PENDING.value)
            .values(
                state=JobState.PROCESSING.value,
                lease_owner=worker_id,
                lease_expires_at=now + timedelta(seconds=self.lease_seconds),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _reclaim_expired(self, db: Session, now: datetime) -> int:
        result = db.execute(
            update(Job)
            .where(
                Job.state == JobState.PROCESSING.value,
                Job.lease_expires_at < now,
            )
            .values(
                state=JobState.PENDING.value,
                lease_owner=None,
                lease_expires_at=None,
                last_error="Lease expired before completion",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.warning(f"Reclaimed {result.rowcount} jobs with expired leases")
        return result.rowcount

    def reclaim_expired(self) -> int:
        with self.session_factory() as db:
            count = self._reclaim_expired(db, utcnow())
            db.commit()
            return count

    # ------------------------------------------------------------------
    # Completion / failure
    # ------------------------------------------------------------------

    def complete(self, job_id: str, worker_id: str) -> bool:
        """Mark a leased job completed. Returns False if the lease was lost."""
        now = utcnow()
        with self.session_factory() as db:
            result = db.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.state == JobState.PROCESSING.value,
                    Job.lease_owner == worker_id,
                )
                .values(
                    state=JobState.COMPLETED.value,
                    completed_at=now,
                    lease_owner=None,
                    lease_expires_at=None,
                    last_error=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            job = db.get(Job, job_id)

        if result.rowcount != 1:
            logger.warning(
                f"Worker {worker_id} lost lease on job {job_id}; completion ignored"
            )
            return False

        logger.info(f"Job {job_id} completed")
        self._publish("job_completed", job)
        return True

    def fail(
        self, job_id: str, worker_id: str, error: str, retryable: bool = True
    ) -> Optional[JobState]:
        """
        Record a failed attempt.

        attempts is incremented; a retryable failure with attempts < max_attempts
        goes back to pending after min(2**attempts * base, cap) seconds, anything
        else becomes terminal `failed`. Returns the new state, or None if the
        worker no longer holds the lease.
        """
        now = utcnow()
        with self.session_factory() as db:
            job = (
                db.query(Job)
                .filter(
                    Job.id == job_id,
                    Job.state == JobState.PROCESSING.value,
                    Job.lease_owner == worker_id,
                )
                .first()
            )
            if job is None:
                logger.warning(
                    f"Worker {worker_id} lost lease on job {job_id}; failure ignored"
                )
                return None

            attempts = job.attempts + 1
            if retryable and attempts < job.max_attempts:
                new_state = JobState.PENDING
                delay = exponential_delay(
                    attempts, self.retry_base_seconds, self.retry_cap_seconds
                )
                run_at = now + timedelta(seconds=delay)
            else:
                new_state = JobState.FAILED
                delay = None
                run_at = job.run_at

            result = db.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.state == JobState.PROCESSING.value,
                    Job.lease_owner == worker_id,
                )
                .values(
                    state=new_state.value,
                    attempts=attempts,
                    last_error=truncate(error, 2000),
                    run_at=run_at,
                    lease_owner=None,
                    lease_expires_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                return None
            db.refresh(job)

        if new_state == JobState.PENDING:
            logger.warning(
                f"Job {job_id} failed (attempt {attempts}/{job.max_attempts}), "
                f"retrying in {delay:.1f}s: {truncate(error, 200)}"
            )
            self._publish("job_retry_scheduled", job)
        else:
            logger.error(
                f"Job {job_id} failed permanently after {attempts} attempts: "
                f"{truncate(error, 200)}"
            )
            self._publish("job_failed", job)
        return new_state

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def retry_all(self, team_id: str) -> int:
        """Move every failed job of a team back to pending with attempts reset."""
        now = utcnow()
        with self.session_factory() as db:
            result = db.execute(
                update(Job)
                .where(Job.team_id == team_id, Job.state == JobState.FAILED.value)
                .values(
                    state=JobState.PENDING.value,
                    attempts=0,
                    run_at=now,
                    lease_owner=None,
                    lease_expires_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()

        logger.info(f"Re-queued {result.rowcount} failed jobs for team {team_id}")
        if self.bus and result.rowcount:
            self.bus.publish("jobs_retried", {"team_id": team_id, "count": result.rowcount})
        return result.rowcount

    def clear_failed(self, team_id: str) -> int:
        """Delete terminal failed jobs of a team. Pending/processing jobs are untouched."""
        with self.session_factory() as db:
            result = db.execute(
                delete(Job)
                .where(Job.team_id == team_id, Job.state == JobState.FAILED.value)
                .execution_options(synchronize_session=False)
            )
            db.commit()

        logger.info(f"Cleared {result.rowcount} failed jobs for team {team_id}")
        if self.bus and result.rowcount:
            self.bus.publish("jobs_cleared", {"team_id": team_id, "count": result.rowcount})
        return result.rowcount

    def cleanup(self, older_than: datetime) -> int:
        """Delete completed jobs finished before older_than."""
        with self.session_factory() as db:
            result = db.execute(
                delete(Job)
                .where(
                    Job.state == JobState.COMPLETED.value,
                    Job.completed_at < older_than,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount:
            logger.info(f"Cleaned up {result.rowcount} old completed jobs")
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[Job]:
        with self.session_factory() as db:
            return db.get(Job, job_id)

    def find_by_dedup_key(self, dedup_key: str) -> Optional[Job]:
        with self.session_factory() as db:
            return db.query(Job).filter(Job.dedup_key == dedup_key).first()

    def stats(self, team_id: str) -> Dict[str, int]:
        with self.session_factory() as db:
            rows = (
                db.query(Job.state, func.count(Job.id))
                .filter(Job.team_id == team_id)
                .group_by(Job.state)
                .all()
            )
        counts = {state.value: 0 for state in JobState}
        counts.update(dict(rows))
        return counts

    def global_stats(self) -> Dict[str, int]:
        with self.session_factory() as db:
            rows = db.query(Job.state, func.count(Job.id)).group_by(Job.state).all()
            teams_with_pending = (
                db.query(func.count(func.distinct(Job.team_id)))
                .filter(Job.state == JobState.PENDING.value)
                .scalar()
            )
        counts = {state.value: 0 for state in JobState}
        counts.update(dict(rows))
        counts["teams_with_pending_jobs"] = teams_with_pending or 0
        return counts

    def failed_jobs(self, team_id: str, limit: int = 100) -> List[Job]:
        with self.session_factory() as db:
            return (
                db.query(Job)
                .filter(Job.team_id == team_id, Job.state == JobState.FAILED.value)
                .order_by(Job.updated_at.desc())
                .limit(limit)
                .all()
            )

    def recent_jobs(self, team_id: str, limit: int = 50) -> List[Job]:
        with self.session_factory() as db:
            return (
                db.query(Job)
                .filter(Job.team_id == team_id)
                .order_by(Job.created_at.desc())
                .limit(limit)
                .all()
            )

    def _publish(self, event_type: str, job: Job) -> None:
        if self.bus is None:
            return
        self.bus.publish(event_type, self._message(job))

    def _publish_on_commit(self, db: Session, event_type: str, job: Job) -> None:
        """
        Publish once the session commits; drop it if the session rolls back.

        A job inserted into a caller's transaction does not exist for anyone
        else until that transaction commits.
        """
        if self.bus is None:
            return
        pending = db.info.get(_PENDING_NOTIFICATIONS)
        if pending is None:
            pending = db.info[_PENDING_NOTIFICATIONS] = []
            event.listen(db, "after_commit", self._flush_pending)
            event.listen(db, "after_rollback", self._discard_pending)
        pending.append((event_type, self._message(job)))

    def _flush_pending(self, db: Session) -> None:
        pending = db.info.get(_PENDING_NOTIFICATIONS) or []
        messages, pending[:] = list(pending), []
        for event_type, data in messages:
            self.bus.publish(event_type, data)

    def _discard_pending(self, db: Session) -> None:
        pending = db.info.get(_PENDING_NOTIFICATIONS)
        if pending:
            logger.debug(f"Dropping {len(pending)} job notifications after rollback")
            pending.clear()

    @staticmethod
    def _message(job: Job) -> Dict[str, Any]:
        return {
            "job_id": job.id,
            "team_id": job.team_id,
            "job_type": job.job_type,
            "state": job.state,
            "attempts": job.attempts,
        }
