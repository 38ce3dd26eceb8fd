"""
In-process job store for development and tests. Nothing survives a restart.
"""

import asyncio
import copy
import itertools

from switchyard.config.logging import get_logger
from switchyard.core.exceptions import InvalidStateTransitionError, NotFoundError
from switchyard.jobs.models import RETRYABLE_STATUSES, JobStatus
from switchyard.jobs.schemas import JobRecord, JobUpdate, NewJob, TagMatch
from switchyard.jobs.store import (
    DEFAULT_PAGE_SIZE,
    EXHAUSTED_ERROR,
    JobStore,
    days_ago,
    minutes_ago,
    utcnow,
)

logger = get_logger(__name__)


def _page(jobs: list[JobRecord], limit: int, offset: int) -> list[JobRecord]:
    return [job.model_copy(deep=True) for job in jobs[offset : offset + limit]]


class MemoryJobStore(JobStore):
    """Dict-backed store; a single asyncio lock makes each mutation atomic."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._jobs: dict[int, JobRecord] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info("Running in-memory job store (development)")

    async def add_job(self, job: NewJob) -> int:
        async with self._lock:
            job_id = next(self._ids)
            self._jobs[job_id] = JobRecord(
                id=job_id,
                job_type=job.job_type,
                payload=copy.deepcopy(job.payload),
                status=JobStatus.PENDING,
                attempts=0,
                max_attempts=job.max_attempts,
                priority=job.priority,
                timeout_ms=job.timeout_ms,
                created_at=utcnow(),
                run_at=job.run_at,
                tags=list(dict.fromkeys(job.tags)),
            )
        return job_id

    async def get_job_by_id(self, job_id: int) -> JobRecord | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def get_jobs_by_status(
        self, status: JobStatus, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        jobs = [job for job in self._jobs.values() if job.status == status]
        return _page(jobs, limit, offset)

    async def get_jobs_by_type(
        self, job_type: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        jobs = [job for job in reversed(self._jobs.values()) if job.job_type == job_type]
        return _page(jobs, limit, offset)

    async def get_all_jobs(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        return _page(list(reversed(self._jobs.values())), limit, offset)

    async def get_jobs_by_tags(
        self,
        tags: list[str],
        mode: TagMatch = TagMatch.ALL,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[JobRecord]:
        wanted = set(tags)
        if TagMatch(mode) is TagMatch.ALL:
            jobs = [job for job in self._jobs.values() if wanted <= set(job.tags)]
        else:
            jobs = [job for job in self._jobs.values() if wanted & set(job.tags)]
        return _page(jobs, limit, offset)

    async def update_job(
        self,
        job_id: int,
        changes: JobUpdate,
        expected_status: JobStatus | None = None,
    ) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if expected_status is not None and job.status != expected_status:
                return False
            self._jobs[job_id] = job.model_copy(update=changes.changes())
        return True

    async def retry_job(self, job_id: int) -> JobRecord:
        async with self._lock:
            job = self._get_or_raise(job_id)
            if job.status not in RETRYABLE_STATUSES:
                raise InvalidStateTransitionError(
                    "Can only retry failed or cancelled jobs",
                    current_status=job.status.value,
                    details={"job_id": job_id},
                )
            job = job.model_copy(
                update={
                    "status": JobStatus.PENDING,
                    "attempts": 0,
                    "error": None,
                    "failed_at": None,
                    "locked_at": None,
                    "locked_by": None,
                }
            )
            self._jobs[job_id] = job
            return job.model_copy(deep=True)

    async def cancel_job(self, job_id: int) -> JobRecord:
        async with self._lock:
            job = self._get_or_raise(job_id)
            if job.status == JobStatus.COMPLETED:
                raise InvalidStateTransitionError(
                    "Cannot cancel completed job",
                    current_status=job.status.value,
                    details={"job_id": job_id},
                )
            job = job.model_copy(
                update={"status": JobStatus.CANCELLED, "locked_at": None, "locked_by": None}
            )
            self._jobs[job_id] = job
            return job.model_copy(deep=True)

    async def delete_old_jobs(self, older_than_days: int) -> int:
        cutoff = days_ago(older_than_days)
        async with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.completed_at is not None and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return len(expired)

    async def reclaim_stuck_jobs(self, max_processing_minutes: int) -> int:
        cutoff = minutes_ago(max_processing_minutes)
        count = 0
        async with self._lock:
            for job_id, job in self._jobs.items():
                if (
                    job.status == JobStatus.PROCESSING
                    and job.locked_at is not None
                    and job.locked_at < cutoff
                ):
                    self._jobs[job_id] = job.model_copy(
                        update={"status": JobStatus.PENDING, "locked_at": None, "locked_by": None}
                    )
                    count += 1
        return count

    async def claim_jobs(
        self,
        limit: int,
        worker_id: str,
        job_types: list[str] | None = None,
    ) -> list[JobRecord]:
        now = utcnow()
        async with self._lock:
            eligible = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.PENDING
                and (job.run_at is None or job.run_at <= now)
                and job.attempts < job.max_attempts
                and (job_types is None or job.job_type in job_types)
            ]
            eligible.sort(key=lambda job: (-job.priority, job.id))

            claimed = []
            for job in eligible[:limit]:
                job = job.model_copy(
                    update={
                        "status": JobStatus.PROCESSING,
                        "locked_at": now,
                        "locked_by": worker_id,
                        "attempts": job.attempts + 1,
                    }
                )
                self._jobs[job.id] = job
                claimed.append(job.model_copy(deep=True))
        return claimed

    async def fail_exhausted_jobs(self) -> int:
        now = utcnow()
        count = 0
        async with self._lock:
            for job_id, job in self._jobs.items():
                if job.status == JobStatus.PENDING and job.attempts >= job.max_attempts:
                    self._jobs[job_id] = job.model_copy(
                        update={
                            "status": JobStatus.FAILED,
                            "failed_at": now,
                            "error": job.error or EXHAUSTED_ERROR,
                        }
                    )
                    count += 1
        return count

    async def count_by_status(self) -> dict[JobStatus, int]:
        counts = dict.fromkeys(JobStatus, 0)
        for job in self._jobs.values():
            counts[job.status] += 1
        return counts

    async def count_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for job in self._jobs.values():
            counts[job.job_type] = counts.get(job.job_type, 0) + 1
        return counts

    async def close(self) -> None:
        self._jobs.clear()

    def _get_or_raise(self, job_id: int) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found", {"job_id": job_id})
        return job
