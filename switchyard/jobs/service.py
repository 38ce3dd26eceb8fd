"""
Job queue façade for enqueueing and managing background jobs.
"""

from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from switchyard.config.logging import get_logger
from switchyard.config.settings import Settings
from switchyard.core.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from switchyard.core.registries import HandlerRegistry
from switchyard.jobs.models import JobStatus
from switchyard.jobs.payloads import JobType, is_known_job_type, validate_payload
from switchyard.jobs.schemas import (
    EnqueueOptions,
    JobRecord,
    JobStats,
    NewJob,
    TagMatch,
)
from switchyard.jobs.store import DEFAULT_PAGE_SIZE, JobStore

logger = get_logger(__name__)

SCHEDULED_TAG = "scheduled"


class JobQueue:
    """
    Application-facing queue operations over a job store.

    Applies enqueue defaults, validates job types and payloads, and exposes
    the administrative query surface. All state changes are delegated to
    the store, whose errors propagate unchanged.
    """

    def __init__(
        self,
        store: JobStore,
        settings: Settings,
        registry: HandlerRegistry | None = None,
    ):
        self.store = store
        self.settings = settings
        self.registry = registry

    async def enqueue_job(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        options: EnqueueOptions | None = None,
    ) -> int:
        """
        Enqueue a new job.

        Args:
            job_type: A JobType, or a custom type with a registered handler
            payload: Job parameters, stored unchanged
            options: Overrides for priority, run_at, max_attempts, timeout_ms, tags

        Returns:
            The new job's id
        """
        job_type = str(getattr(job_type, "value", job_type))
        payload = payload if payload is not None else {}
        options = options or EnqueueOptions()

        self.validate_job(job_type, payload)

        new_job = NewJob(
            job_type=job_type,
            payload=payload,
            priority=(
                options.priority
                if options.priority is not None
                else self.settings.job_default_priority
            ),
            run_at=options.run_at,
            max_attempts=options.max_attempts or self.settings.job_default_max_attempts,
            timeout_ms=options.timeout_ms or self.settings.job_default_timeout_ms,
            tags=options.tags if options.tags is not None else [job_type],
        )
        job_id = await self.store.add_job(new_job)

        logger.info(
            "Job enqueued",
            job_id=job_id,
            job_type=job_type,
            priority=new_job.priority,
            run_at=new_job.run_at.isoformat() if new_job.run_at else None,
        )
        return job_id

    async def schedule_job(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None,
        run_at: datetime,
        options: EnqueueOptions | None = None,
    ) -> int:
        """Enqueue a job that becomes eligible at `run_at`, tagged `scheduled`."""
        options = options or EnqueueOptions()
        job_type_value = str(getattr(job_type, "value", job_type))
        tags = list(options.tags if options.tags is not None else [job_type_value])
        if SCHEDULED_TAG not in tags:
            tags.append(SCHEDULED_TAG)
        return await self.enqueue_job(
            job_type,
            payload,
            options.model_copy(update={"run_at": run_at, "tags": tags}),
        )

    async def get_job(self, job_id: int) -> JobRecord | None:
        return await self.store.get_job_by_id(job_id)

    async def require_job(self, job_id: int) -> JobRecord:
        job = await self.store.get_job_by_id(job_id)
        if job is None:
            raise NotFoundError("Job not found", {"job_id": job_id})
        return job

    async def get_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        tags: list[str] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[JobRecord]:
        """
        List jobs by a single filter.

        Only one filter applies, in order of precedence: status, tags (any),
        job type. Without filters every job is listed, newest first.
        """
        if status is not None:
            return await self.store.get_jobs_by_status(status, limit, offset)
        if tags:
            return await self.store.get_jobs_by_tags(tags, TagMatch.ANY, limit, offset)
        if job_type:
            return await self.store.get_jobs_by_type(job_type, limit, offset)
        return await self.store.get_all_jobs(limit, offset)

    async def get_jobs_by_tags(
        self,
        tags: list[str],
        mode: TagMatch = TagMatch.ALL,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[JobRecord]:
        return await self.store.get_jobs_by_tags(tags, mode, limit, offset)

    async def get_failed_jobs(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        return await self.store.get_jobs_by_status(JobStatus.FAILED, limit, offset)

    async def get_pending_jobs(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        return await self.store.get_jobs_by_status(JobStatus.PENDING, limit, offset)

    async def get_completed_jobs(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        return await self.store.get_jobs_by_status(JobStatus.COMPLETED, limit, offset)

    async def retry_job(self, job_id: int) -> JobRecord:
        return await self.store.retry_job(job_id)

    async def retry_all_failed_jobs(self) -> int:
        """Retry every failed job; returns how many were moved back to pending."""
        # Snapshot first so jobs failing again meanwhile are not retried twice
        job_ids: list[int] = []
        offset = 0
        while True:
            page = await self.store.get_jobs_by_status(
                JobStatus.FAILED, DEFAULT_PAGE_SIZE, offset
            )
            job_ids.extend(job.id for job in page)
            if len(page) < DEFAULT_PAGE_SIZE:
                break
            offset += DEFAULT_PAGE_SIZE

        retried = 0
        for job_id in job_ids:
            try:
                await self.store.retry_job(job_id)
            except (NotFoundError, InvalidStateTransitionError):
                # Deleted or already retried by someone else
                continue
            retried += 1

        if retried:
            logger.info("Retried failed jobs", retried_count=retried)
        return retried

    async def cancel_job(self, job_id: int) -> JobRecord:
        return await self.store.cancel_job(job_id)

    async def cleanup_old_jobs(self, older_than_days: int | None = None) -> int:
        days = (
            older_than_days
            if older_than_days is not None
            else self.settings.job_cleanup_after_days
        )
        return await self.store.cleanup_old_jobs(days)

    async def reclaim_stuck_jobs(self, max_processing_minutes: int | None = None) -> int:
        minutes = (
            max_processing_minutes
            if max_processing_minutes is not None
            else self.settings.job_stuck_after_minutes
        )
        reclaimed = await self.store.reclaim_stuck_jobs(minutes)
        if reclaimed:
            logger.warning(
                "Reclaimed stuck jobs",
                reclaimed_count=reclaimed,
                stuck_after_minutes=minutes,
            )
        return reclaimed

    async def get_job_stats(self) -> JobStats:
        """Aggregate counts per status and type, plus the success rate."""
        counts = await self.store.count_by_status()
        by_type = await self.store.count_by_type()

        completed = counts[JobStatus.COMPLETED]
        failed = counts[JobStatus.FAILED]
        finished = completed + failed
        success_rate = round(completed / finished * 100, 2) if finished else 100.0

        return JobStats(
            pending=counts[JobStatus.PENDING],
            processing=counts[JobStatus.PROCESSING],
            completed=completed,
            failed=failed,
            cancelled=counts[JobStatus.CANCELLED],
            success_rate=success_rate,
            by_type=by_type,
        )

    def validate_job(self, job_type: str, payload: dict[str, Any]) -> None:
        """Raise ValidationError for an unknown job type or an invalid payload."""
        if not job_type:
            raise ValidationError("Job type is required")

        if not is_known_job_type(job_type):
            if self.registry is None or job_type not in self.registry:
                raise ValidationError(
                    f"Unknown job type: {job_type}",
                    {"job_type": job_type},
                )
            # Custom job types carry opaque payloads
            return

        try:
            validate_payload(JobType(job_type), payload)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid payload for job type: {job_type}",
                {"job_type": job_type, "errors": e.errors(include_url=False)},
            ) from e
