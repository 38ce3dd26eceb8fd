"""
Job worker: a cooperative poll task feeding a bounded pool of consumers.
"""

import asyncio
import os
import random
import socket
from datetime import datetime, timedelta

from switchyard.config.logging import bind_worker_context, get_logger
from switchyard.config.settings import Settings
from switchyard.core import cancellation
from switchyard.core.cancellation import CancellationToken
from switchyard.core.exceptions import (
    HandlerError,
    HandlerMissingError,
    HandlerTimeoutError,
    JobCancelledError,
)
from switchyard.core.registries import HandlerRegistry, JobHandler
from switchyard.jobs.models import JobStatus
from switchyard.jobs.schemas import JobRecord, JobUpdate
from switchyard.jobs.store import JobStore, utcnow

logger = get_logger(__name__)

# Sentinel telling a consumer to exit
_STOP = None


class JobWorker:
    """
    Store-backed job worker.

    Features:
    - Atomic claiming through the store (FOR UPDATE SKIP LOCKED on SQL)
    - Bounded concurrency: one poll task, N consumers over an asyncio.Queue
    - Cooperative cancellation tokens, signalled on operator cancel,
      timeout and shutdown
    - Guarded result writes, so cancelled or reclaimed jobs are not overwritten
    - Optional exponential backoff with jitter for retries
    - Periodic stuck job recovery
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        settings: Settings,
        job_types: list[str] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.job_types = job_types
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: dict[int, CancellationToken] = {}

        self._in_flight = 0
        self._queue: asyncio.Queue[JobRecord | None] | None = None
        self._shutdown = CancellationToken()
        self._poll_task: asyncio.Task | None = None
        self._consumers: list[asyncio.Task] = []
        self._maintenance: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self.running

    async def run_once(self) -> int:
        """Claim one batch and process it to completion. Returns the batch size."""
        await self.store.fail_exhausted_jobs()
        jobs = await self.store.claim_jobs(
            self.settings.job_batch_size, self.worker_id, self.job_types
        )
        if jobs:
            self._log_claimed(jobs)
            await asyncio.gather(*(self.process_job(job) for job in jobs))
        return len(jobs)

    async def start(self) -> None:
        """Reclaim abandoned jobs, then spawn the poll, consumer and maintenance tasks."""
        if self.running:
            raise RuntimeError("Worker is already running")

        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            store=self.store.backend_name,
        )

        await self._startup_reclaim()

        self.running = True
        self._shutdown = CancellationToken()
        self._queue = asyncio.Queue(maxsize=self.settings.job_concurrency)
        self._consumers = [
            asyncio.create_task(self._consumer_loop(), name=f"job-consumer-{n}")
            for n in range(self.settings.job_concurrency)
        ]
        self._poll_task = asyncio.create_task(self._poll_loop(), name="job-poll")
        self._maintenance = [
            asyncio.create_task(self._stuck_job_recovery_loop(), name="job-reclaim"),
            asyncio.create_task(self._cancellation_watch_loop(), name="job-cancel-watch"),
        ]

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop the worker gracefully.

        Polling stops first and claimed jobs that never started go back to
        pending. Running jobs get `timeout` seconds to finish; after that their
        tokens are signalled with reason `shutdown`, and handlers still running
        after the grace period are cancelled and their claims released.
        """
        if not self.running:
            return

        timeout = self.settings.job_shutdown_timeout_s if timeout is None else timeout
        logger.info("Stopping job worker", active_jobs=len(self.active_jobs))
        self.running = False
        self._shutdown.cancel(cancellation.SHUTDOWN)

        if self._poll_task is not None:
            await asyncio.gather(self._poll_task, return_exceptions=True)
        await self._release_queued()

        for _ in self._consumers:
            self._queue.put_nowait(_STOP)

        _, still_running = await asyncio.wait(self._consumers, timeout=timeout)
        if still_running:
            logger.warning(
                "Signalling shutdown to running jobs",
                active_jobs=len(self.active_jobs),
            )
            for token in self.active_jobs.values():
                token.cancel(cancellation.SHUTDOWN)
            _, still_running = await asyncio.wait(
                still_running, timeout=self.settings.job_timeout_grace_s
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

        for task in self._maintenance:
            task.cancel()
        await asyncio.gather(*self._maintenance, return_exceptions=True)

        if self.active_jobs:
            logger.warning("Worker stopped with active jobs", active_jobs=len(self.active_jobs))
        else:
            logger.info("Job worker stopped")

        self._poll_task = None
        self._consumers = []
        self._maintenance = []

    async def process_job(self, job: JobRecord) -> None:
        """
        Run one claimed job and record its outcome.

        Never raises for handler or store errors; they are logged so that one
        bad job cannot halt the worker.
        """
        job_logger = logger.bind(job_id=job.id, job_type=job.job_type, attempt=job.attempts)
        token = CancellationToken()
        self.active_jobs[job.id] = token

        try:
            try:
                handler = self.registry.get(job.job_type)
            except HandlerMissingError as e:
                # Configuration error: fail without counting the attempt
                job_logger.error("No handler registered for job type")
                await self._write_result(
                    job,
                    JobUpdate(
                        status=JobStatus.FAILED,
                        attempts=job.attempts - 1,
                        error=e.message,
                        failed_at=utcnow(),
                        locked_at=None,
                        locked_by=None,
                    ),
                    job_logger,
                )
                return

            job_logger.info("Processing job started")
            try:
                await self._run_handler(job, handler, token)
            except HandlerTimeoutError as e:
                if token.reason == cancellation.SHUTDOWN:
                    await self._record_cancellation(job, token.reason, job_logger)
                else:
                    job_logger.warning("Job timed out", timeout_ms=e.timeout_ms)
                    await self._record_failure(job, e.message, job_logger)
            except JobCancelledError as e:
                if token.cancelled:
                    await self._record_cancellation(job, token.reason, job_logger)
                else:
                    job_logger.warning("Job processing failed", error=e.message)
                    await self._record_failure(job, e.message, job_logger)
            except HandlerError as e:
                if token.cancelled:
                    await self._record_cancellation(job, token.reason, job_logger)
                else:
                    job_logger.warning("Job processing failed", error=e.message)
                    await self._record_failure(job, e.message, job_logger)
            else:
                if token.cancelled:
                    # Returned early after its token was signalled
                    await self._record_cancellation(job, token.reason, job_logger)
                    return
                await self._write_result(
                    job,
                    JobUpdate(
                        status=JobStatus.COMPLETED,
                        completed_at=utcnow(),
                        locked_at=None,
                        locked_by=None,
                    ),
                    job_logger,
                )
                job_logger.info("Processing job completed successfully")

        except asyncio.CancelledError:
            job_logger.warning("Job interrupted by worker shutdown")
            await self._release_claim(job)
            raise
        except Exception:
            job_logger.exception("Unexpected error while processing job")
        finally:
            self.active_jobs.pop(job.id, None)

    async def _run_handler(
        self, job: JobRecord, handler: JobHandler, token: CancellationToken
    ) -> None:
        """
        Await the handler, enforcing the job's timeout.

        Raises HandlerError, HandlerTimeoutError or JobCancelledError.
        """
        timeout_ms = job.timeout_ms if self.settings.job_enforce_timeouts else None
        task = asyncio.create_task(handler.handle(job.payload, token))

        try:
            done, _ = await asyncio.wait(
                {task}, timeout=timeout_ms / 1000 if timeout_ms else None
            )
            if task not in done:
                token.cancel(cancellation.TIMEOUT)
                done, _ = await asyncio.wait({task}, timeout=self.settings.job_timeout_grace_s)
                if task not in done:
                    task.cancel()
                # However the handler ended, the deadline was missed
                await asyncio.gather(task, return_exceptions=True)
                raise HandlerTimeoutError(job.job_type, timeout_ms)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        if task.cancelled():
            raise JobCancelledError(token.reason or cancellation.CANCELLED)
        error = task.exception()
        if isinstance(error, JobCancelledError):
            raise error
        if error is not None:
            raise HandlerError(job.job_type, error) from error

    async def _record_failure(self, job: JobRecord, error: str, job_logger) -> None:
        if job.attempts >= job.max_attempts:
            changes = JobUpdate(
                status=JobStatus.FAILED,
                error=error,
                failed_at=utcnow(),
                locked_at=None,
                locked_by=None,
            )
            job_logger.error("Job failed permanently", max_attempts=job.max_attempts)
        else:
            values = {
                "status": JobStatus.PENDING,
                "error": error,
                "locked_at": None,
                "locked_by": None,
            }
            next_run_at = self._calculate_retry_time(job.attempts)
            if next_run_at is not None:
                values["run_at"] = next_run_at
            changes = JobUpdate(**values)
            job_logger.info(
                "Job scheduled for retry",
                next_run_at=next_run_at.isoformat() if next_run_at else None,
            )
        await self._write_result(job, changes, job_logger)

    async def _record_cancellation(self, job: JobRecord, reason: str | None, job_logger) -> None:
        if reason == cancellation.SHUTDOWN:
            job_logger.info("Job released on shutdown")
            await self._release_claim(job)
        else:
            # Cancelled or reclaimed elsewhere; the store already holds the new state
            job_logger.info("Job stopped after cancellation", reason=reason)

    async def _write_result(self, job: JobRecord, changes: JobUpdate, job_logger) -> bool:
        applied = await self.store.update_job(
            job.id, changes, expected_status=JobStatus.PROCESSING
        )
        if not applied:
            job_logger.warning(
                "Job left processing before its result was recorded",
                intended_status=changes.status.value if changes.status else None,
            )
        return applied

    async def _release_claim(self, job: JobRecord) -> bool:
        """Put a claimed job back to pending without counting the attempt."""
        return await self.store.update_job(
            job.id,
            JobUpdate(
                status=JobStatus.PENDING,
                attempts=max(0, job.attempts - 1),
                locked_at=None,
                locked_by=None,
            ),
            expected_status=JobStatus.PROCESSING,
        )

    def _calculate_retry_time(self, attempt: int) -> datetime | None:
        """Calculate next retry time with exponential backoff and jitter."""
        base_delay = self.settings.job_retry_backoff_base_ms / 1000
        if base_delay <= 0:
            return None
        max_delay = self.settings.job_max_backoff_s

        # Exponential backoff: base * 2^(attempt - 1)
        delay = min(max_delay, base_delay * (2 ** (attempt - 1)))

        # Add jitter (±25% random variation)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        final_delay = max(base_delay, delay + jitter)

        return utcnow() + timedelta(seconds=final_delay)

    def _log_claimed(self, jobs: list[JobRecord]) -> None:
        logger.info(
            "Claimed jobs",
            job_count=len(jobs),
            job_ids=[job.id for job in jobs],
        )

    async def _poll_loop(self) -> None:
        """Claim up to the free capacity on every tick and hand jobs to consumers."""
        bind_worker_context(self.worker_id)
        poll_interval = self.settings.job_poll_interval_ms / 1000

        while self.running:
            try:
                free = self.settings.job_concurrency - self._in_flight
                limit = min(free, self.settings.job_batch_size)
                jobs: list[JobRecord] = []

                if limit > 0:
                    await self.store.fail_exhausted_jobs()
                    jobs = await self.store.claim_jobs(limit, self.worker_id, self.job_types)
                    if jobs:
                        self._log_claimed(jobs)
                    for job in jobs:
                        self._in_flight += 1
                        await self._queue.put(job)

                # A full batch means more work is probably waiting
                if limit == 0 or len(jobs) < limit:
                    await self._shutdown.wait(poll_interval)

            except Exception:
                logger.exception("Error in worker loop")
                await self._shutdown.wait(5)  # Back off on errors

    async def _consumer_loop(self) -> None:
        bind_worker_context(self.worker_id)
        while True:
            job = await self._queue.get()
            if job is _STOP:
                self._queue.task_done()
                return
            try:
                await self.process_job(job)
            finally:
                self._in_flight -= 1
                self._queue.task_done()

    async def _release_queued(self) -> None:
        released = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            self._queue.task_done()
            if job is _STOP:
                continue
            self._in_flight -= 1
            try:
                if await self._release_claim(job):
                    released += 1
            except Exception:
                logger.exception("Failed to release claimed job", job_id=job.id)
        if released:
            logger.info("Released unstarted jobs", released_count=released)

    async def _startup_reclaim(self) -> None:
        minutes = self.settings.job_startup_reclaim_minutes
        try:
            reclaimed = await self.store.reclaim_stuck_jobs(minutes)
        except Exception:
            logger.exception("Error reclaiming jobs at startup")
            return
        if reclaimed:
            logger.warning(
                "Reclaimed stale jobs at startup",
                reclaimed_count=reclaimed,
                stuck_after_minutes=minutes,
            )

    async def _stuck_job_recovery_loop(self) -> None:
        """Recover jobs that are stuck due to worker crashes."""
        bind_worker_context(self.worker_id)
        interval = self.settings.job_reclaim_interval_s
        minutes = self.settings.job_stuck_after_minutes

        while self.running:
            if await self._shutdown.wait(interval):
                return
            try:
                reclaimed = await self.store.reclaim_stuck_jobs(minutes)
                if reclaimed:
                    logger.warning(
                        "Recovered stuck jobs",
                        stuck_job_count=reclaimed,
                        stuck_after_minutes=minutes,
                    )
                    await self.store.fail_exhausted_jobs()
            except Exception:
                logger.exception("Error in stuck job recovery")

    async def _cancellation_watch_loop(self) -> None:
        """Signal the token of any active job whose stored claim is gone."""
        bind_worker_context(self.worker_id)
        interval = self.settings.job_cancel_check_interval_ms / 1000

        while self.running:
            if await self._shutdown.wait(interval):
                return
            try:
                for job_id, token in list(self.active_jobs.items()):
                    if token.cancelled:
                        continue
                    job = await self.store.get_job_by_id(job_id)
                    if job is not None and job.status == JobStatus.PROCESSING and (
                        job.locked_by == self.worker_id
                    ):
                        continue
                    if job is not None and job.status == JobStatus.CANCELLED:
                        reason = cancellation.CANCELLED
                    else:
                        reason = cancellation.RECLAIMED
                    logger.info("Signalling job cancellation", job_id=job_id, reason=reason)
                    token.cancel(reason)
            except Exception:
                logger.exception("Error checking for cancelled jobs")
