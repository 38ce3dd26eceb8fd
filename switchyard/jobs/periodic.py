"""
Periodic job scheduler.

Every application instance runs the scheduler; a distributed lease per
schedule and interval makes sure only one of them enqueues each run.
"""

import asyncio
from typing import Any

from pydantic import BaseModel, Field

from switchyard.config.logging import get_logger
from switchyard.config.settings import PeriodicSchedule
from switchyard.core import cancellation
from switchyard.core.cancellation import CancellationToken
from switchyard.infra.locks import DistributedLock
from switchyard.jobs.schemas import EnqueueOptions
from switchyard.jobs.service import JobQueue

logger = get_logger(__name__)


class PeriodicJob(BaseModel):
    """A job enqueued on a fixed interval."""

    name: str = Field(..., min_length=1, description="Schedule name; also the lease name")
    job_type: str = Field(..., min_length=1)
    interval_s: int = Field(..., ge=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    options: EnqueueOptions | None = None

    @property
    def lock_key(self) -> str:
        return f"periodic:{self.name}"

    @classmethod
    def from_schedule(cls, name: str, schedule: PeriodicSchedule) -> "PeriodicJob":
        """Build a PeriodicJob from a JOB_PERIODIC_SCHEDULE entry."""
        return cls(
            name=name,
            job_type=schedule.job_type or name,
            interval_s=schedule.interval_s,
            payload=schedule.payload,
            options=EnqueueOptions(
                priority=schedule.priority,
                max_attempts=schedule.max_attempts,
                timeout_ms=schedule.timeout_ms,
                tags=schedule.tags,
            ),
        )


class PeriodicScheduler:
    """Enqueues each registered PeriodicJob once per interval across all instances."""

    def __init__(
        self,
        queue: JobQueue,
        lock: DistributedLock,
        jobs: list[PeriodicJob] | None = None,
    ):
        self.queue = queue
        self.lock = lock
        self.jobs: dict[str, PeriodicJob] = {}
        self.running = False
        self._stop = CancellationToken()
        self._tasks: list[asyncio.Task] = []
        for job in jobs or []:
            self.add(job)

    def add(self, job: PeriodicJob) -> None:
        """Register a schedule; its job type and payload are validated up front."""
        if self.running:
            raise RuntimeError("Cannot add schedules while the scheduler is running")
        if job.name in self.jobs:
            raise ValueError(f"Periodic job already registered: {job.name}")
        self.queue.validate_job(job.job_type, job.payload)
        self.jobs[job.name] = job

    async def tick(self, job: PeriodicJob) -> int | None:
        """
        Enqueue one run of `job` unless another instance already did.

        The lease is left to expire, even across a restart, so that it covers
        the whole interval.
        Returns the new job id, or None when the lease was held elsewhere.
        """
        if not await self.lock.acquire(
            job.lock_key, ttl_seconds=job.interval_s, keep_until_expiry=True
        ):
            logger.debug("Periodic job skipped; lease held elsewhere", schedule=job.name)
            return None

        try:
            job_id = await self.queue.enqueue_job(job.job_type, dict(job.payload), job.options)
        except Exception:
            # Let the next tick, here or elsewhere, try again
            await self.lock.release(job.lock_key)
            raise
        logger.info("Periodic job enqueued", schedule=job.name, job_id=job_id)
        return job_id

    async def start(self) -> None:
        if self.running:
            raise RuntimeError("Scheduler is already running")
        self.running = True
        self._stop = CancellationToken()
        self._tasks = [
            asyncio.create_task(self._schedule_loop(job), name=f"periodic-{job.name}")
            for job in self.jobs.values()
        ]
        if self._tasks:
            logger.info("Periodic scheduler started", schedules=list(self.jobs))

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._stop.cancel(cancellation.SHUTDOWN)
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _schedule_loop(self, job: PeriodicJob) -> None:
        # First tick on start; a lease still live from before a restart skips it
        while True:
            try:
                await self.tick(job)
            except Exception:
                logger.exception("Error enqueueing periodic job", schedule=job.name)
            if await self._stop.wait(job.interval_s):
                return
