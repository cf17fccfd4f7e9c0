"""
Worker Pool

A fixed number of asyncio workers, each looping:
    lease -> run handler (bounded by a timeout) -> complete / fail

Handlers are registered per job type and return a JobOutcome. An exception
escaping a handler is treated as a retryable failure. The handler timeout
must stay below the lease duration so a slow handler is abandoned before
its job can be reclaimed by another worker.
"""

import asyncio
import logging
import socket
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.db.models import Job
from app.models.enums import JobState, JobType
from app.models.results import JobOutcome
from app.services.intake import EventIntake
from app.services.job_queue import JobQueue
from app.services.monitor import ErrorMonitor
from app.utils.helpers import truncate, utcnow

logger = logging.getLogger(__name__)

Handler = Callable[[Job], Awaitable[JobOutcome]]


class WorkerPool:
    def __init__(
        self,
        job_queue: JobQueue,
        error_monitor: ErrorMonitor,
        worker_count: int = 5,
        lease_batch_size: int = 1,
        job_timeout_seconds: float = 240.0,
        poll_interval_seconds: float = 1.0,
        intake: Optional[EventIntake] = None,
        completed_job_retention_days: int = 7,
        housekeeping_interval_seconds: float = 3600.0,
    ):
        if job_timeout_seconds >= job_queue.lease_seconds:
            raise ValueError("job_timeout_seconds must be shorter than the job lease")

        self.job_queue = job_queue
        self.error_monitor = error_monitor
        self.worker_count = worker_count
        self.lease_batch_size = lease_batch_size
        self.job_timeout_seconds = job_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.intake = intake
        self.completed_job_retention = timedelta(days=completed_job_retention_days)
        self.housekeeping_interval_seconds = housekeeping_interval_seconds

        self.handlers: Dict[str, Handler] = {}
        self._tasks: List["asyncio.Task[None]"] = []
        self._running = False
        self._prefix = f"{socket.gethostname()}-{id(self):x}"
        self._counters = {
            "processed": 0,
            "succeeded": 0,
            "retried": 0,
            "failed": 0,
            "lost_leases": 0,
        }
        self._in_flight = 0

    def register(self, job_type: JobType, handler: Handler) -> None:
        self.handlers[job_type.value] = handler
        logger.debug(f"Registered handler for {job_type.value} jobs")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for i in range(self.worker_count):
            worker_id = f"{self._prefix}-w{i}"
            self._tasks.append(
                asyncio.create_task(self._worker_loop(worker_id), name=f"worker:{worker_id}")
            )
        self._tasks.append(
            asyncio.create_task(self._housekeeping_loop(), name="worker:housekeeping")
        )
        logger.info(f"Worker pool started with {self.worker_count} workers")

    async def stop(self) -> None:
        """Cancel all workers. Jobs they held come back when their lease expires."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def _worker_loop(self, worker_id: str) -> None:
        while self._running:
            try:
                processed = await self.run_once(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {worker_id} loop error: {e}", exc_info=True)
                processed = 0
            if processed == 0:
                await asyncio.sleep(self.poll_interval_seconds)

    async def _housekeeping_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.housekeeping_interval_seconds)
            try:
                self.run_housekeeping()
            except Exception as e:
                logger.error(f"Housekeeping failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_once(self, worker_id: str) -> int:
        """
        Lease one batch and run it. Returns the number of jobs handled.

        The jobs of a batch share one lease expiry, so they run concurrently:
        each one then finishes (or times out) before its lease runs out.
        """
        jobs = self.job_queue.lease(worker_id, max_batch=self.lease_batch_size)
        await asyncio.gather(*(self.execute(worker_id, job) for job in jobs))
        return len(jobs)

    async def execute(self, worker_id: str, job: Job) -> JobOutcome:
        logger.info(
            f"Processing job {job.id} (type={job.job_type}, attempt={job.attempts + 1})"
        )
        self._in_flight += 1
        try:
            outcome = await self._run_handler(job)
        finally:
            self._in_flight -= 1

        self._counters["processed"] += 1
        if outcome.ok:
            if self.job_queue.complete(job.id, worker_id):
                self._counters["succeeded"] += 1
            else:
                self._counters["lost_leases"] += 1
            return outcome

        state = self.job_queue.fail(
            job.id, worker_id, outcome.error or "unknown error", retryable=outcome.retryable
        )
        if state is None:
            self._counters["lost_leases"] += 1
        elif state == JobState.PENDING:
            self._counters["retried"] += 1
        else:
            self._counters["failed"] += 1
            self.error_monitor.log_job_failure(
                job.team_id, job.id, job.job_type, truncate(outcome.error, 500)
            )
        return outcome

    async def _run_handler(self, job: Job) -> JobOutcome:
        handler = self.handlers.get(job.job_type)
        if handler is None:
            return JobOutcome.terminal(f"No handler registered for {job.job_type} jobs")

        try:
            return await asyncio.wait_for(handler(job), timeout=self.job_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Job {job.id} timed out after {self.job_timeout_seconds}s")
            return JobOutcome.retry(f"Timed out after {self.job_timeout_seconds}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Handler for job {job.id} raised: {e}", exc_info=True)
            return JobOutcome.retry(f"{type(e).__name__}: {e}")

    # ------------------------------------------------------------------

    def run_housekeeping(self) -> Dict[str, int]:
        """Delete old completed jobs and expired event fingerprints."""
        result = {
            "jobs_deleted": self.job_queue.cleanup(utcnow() - self.completed_job_retention),
            "fingerprints_purged": 0,
        }
        if self.intake is not None:
            result["fingerprints_purged"] = self.intake.purge_expired()
        return result

    def stats(self) -> Dict[str, Any]:
        return {
            "workers": self.worker_count,
            "running": self._running,
            "in_flight": self._in_flight,
            "handlers": sorted(self.handlers),
            **self._counters,
        }
