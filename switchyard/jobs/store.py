"""
Job store contract.

A store is pure data access: it persists jobs and applies atomic per-job
state changes. Scheduling policy lives in the worker and the queue façade.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

from switchyard.config.logging import get_logger
from switchyard.config.settings import Settings
from switchyard.jobs.models import JobStatus
from switchyard.jobs.schemas import JobRecord, JobUpdate, NewJob, TagMatch

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50

EXHAUSTED_ERROR = "Exceeded max attempts after a reclaimed attempt"


def utcnow() -> datetime:
    return datetime.now(UTC)


def days_ago(days: int) -> datetime:
    return utcnow() - timedelta(days=days)


def minutes_ago(minutes: int) -> datetime:
    return utcnow() - timedelta(minutes=minutes)


class JobStore(ABC):
    """Abstract backend for job persistence."""

    backend_name: str = "abstract"

    async def initialize(self) -> None:
        """Prepare the backend. Called once before first use."""

    @abstractmethod
    async def add_job(self, job: NewJob) -> int:
        """Persist a new pending job and return its id."""

    @abstractmethod
    async def get_job_by_id(self, job_id: int) -> JobRecord | None:
        """Fetch a single job."""

    @abstractmethod
    async def get_jobs_by_status(
        self, status: JobStatus, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        """List jobs with the given status in insertion order."""

    @abstractmethod
    async def get_jobs_by_type(
        self, job_type: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        """List jobs of one type, newest first."""

    @abstractmethod
    async def get_all_jobs(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        """List all jobs, newest first."""

    @abstractmethod
    async def get_jobs_by_tags(
        self,
        tags: list[str],
        mode: TagMatch = TagMatch.ALL,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[JobRecord]:
        """List jobs whose tags contain all (or any) of `tags`, in insertion order."""

    @abstractmethod
    async def update_job(
        self,
        job_id: int,
        changes: JobUpdate,
        expected_status: JobStatus | None = None,
    ) -> bool:
        """
        Apply a partial update atomically.

        With `expected_status` the write only happens if the job currently
        has that status. Returns False if the job is missing or the guard fails.
        """

    @abstractmethod
    async def retry_job(self, job_id: int) -> JobRecord:
        """Move a failed or cancelled job back to pending with attempts reset."""

    @abstractmethod
    async def cancel_job(self, job_id: int) -> JobRecord:
        """Cancel any job that has not completed."""

    @abstractmethod
    async def delete_old_jobs(self, older_than_days: int) -> int:
        """Delete jobs whose completed_at predates the cutoff."""

    async def cleanup_old_jobs(self, older_than_days: int) -> int:
        return await self.delete_old_jobs(older_than_days)

    @abstractmethod
    async def reclaim_stuck_jobs(self, max_processing_minutes: int) -> int:
        """Return processing jobs claimed longer ago than the threshold to pending."""

    @abstractmethod
    async def claim_jobs(
        self,
        limit: int,
        worker_id: str,
        job_types: list[str] | None = None,
    ) -> list[JobRecord]:
        """
        Atomically claim up to `limit` eligible pending jobs.

        Eligible means run_at is unset or due and attempts < max_attempts.
        Claimed jobs become processing with locked_at/locked_by set and
        attempts incremented. Order: priority descending, then id.
        """

    @abstractmethod
    async def fail_exhausted_jobs(self) -> int:
        """Fail pending jobs that have no attempts left."""

    @abstractmethod
    async def count_by_status(self) -> dict[JobStatus, int]:
        """Count jobs per status; every status is present."""

    @abstractmethod
    async def count_by_type(self) -> dict[str, int]:
        """Count jobs per job type."""

    async def close(self) -> None:
        """Release backend resources."""


async def create_job_store(settings: Settings) -> JobStore:
    """
    Build and initialize the job store selected by configuration.

    A configured database URL selects the durable SQL store; otherwise the
    in-process store is used.
    """
    store: JobStore
    if settings.database_url:
        from switchyard.jobs.sql_store import SqlJobStore

        store = SqlJobStore.from_settings(settings)
    else:
        from switchyard.jobs.memory_store import MemoryJobStore

        store = MemoryJobStore()

    await store.initialize()
    logger.info("Job store ready", backend=store.backend_name)
    return store
