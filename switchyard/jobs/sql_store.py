"""
Durable job store on SQLAlchemy (PostgreSQL in production, SQLite in tests).
"""

from collections.abc import Sequence

from sqlalchemy import and_, delete, distinct, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from switchyard.config.logging import get_logger
from switchyard.config.settings import Settings
from switchyard.core.exceptions import InvalidStateTransitionError, NotFoundError
from switchyard.infra.database import Database
from switchyard.jobs.models import RETRYABLE_STATUSES, Job, JobStatus, JobTag
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


def _to_records(rows: Sequence[Job]) -> list[JobRecord]:
    return [JobRecord.model_validate(row) for row in rows]


class SqlJobStore(JobStore):
    """
    SQL-backed job store.

    Every state change is a single conditional UPDATE keyed by job id, so
    concurrent workers and operators never overwrite each other's transitions.
    Claiming uses SELECT FOR UPDATE SKIP LOCKED where the dialect supports it.
    """

    backend_name = "sql"

    def __init__(self, database: Database, create_schema: bool = False):
        self.database = database
        self.create_schema = create_schema

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlJobStore":
        return cls(Database(settings), create_schema=settings.db_create_schema)

    async def initialize(self) -> None:
        if self.create_schema:
            await self.database.create_all()
        logger.info(
            "Running database job store",
            dialect=self.database.dialect_name,
            create_schema=self.create_schema,
        )

    async def add_job(self, job: NewJob) -> int:
        row = Job(
            job_type=job.job_type,
            payload=job.payload,
            status=JobStatus.PENDING.value,
            priority=job.priority,
            attempts=0,
            max_attempts=job.max_attempts,
            timeout_ms=job.timeout_ms,
            run_at=job.run_at,
            created_at=utcnow(),
            tag_rows=[
                JobTag(tag=tag, position=position)
                for position, tag in enumerate(dict.fromkeys(job.tags))
            ],
        )
        async with self.database.session() as session:
            session.add(row)
            await session.commit()
            return row.id

    async def get_job_by_id(self, job_id: int) -> JobRecord | None:
        async with self.database.session() as session:
            row = await session.get(Job, job_id)
            return JobRecord.model_validate(row) if row else None

    async def get_jobs_by_status(
        self, status: JobStatus, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        query = (
            select(Job)
            .where(Job.status == JobStatus(status).value)
            .order_by(Job.id)
            .offset(offset)
            .limit(limit)
        )
        return await self._fetch(query)

    async def get_jobs_by_type(
        self, job_type: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        query = (
            select(Job)
            .where(Job.job_type == job_type)
            .order_by(Job.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return await self._fetch(query)

    async def get_all_jobs(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[JobRecord]:
        query = select(Job).order_by(Job.id.desc()).offset(offset).limit(limit)
        return await self._fetch(query)

    async def get_jobs_by_tags(
        self,
        tags: list[str],
        mode: TagMatch = TagMatch.ALL,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[JobRecord]:
        wanted = list(dict.fromkeys(tags))
        query = select(Job)

        if TagMatch(mode) is TagMatch.ALL:
            # Empty filter: every job is a superset
            if wanted:
                matching_ids = (
                    select(JobTag.job_id)
                    .where(JobTag.tag.in_(wanted))
                    .group_by(JobTag.job_id)
                    .having(func.count(distinct(JobTag.tag)) == len(wanted))
                )
                query = query.where(Job.id.in_(matching_ids))
        else:
            if not wanted:
                return []
            matching_ids = select(JobTag.job_id).where(JobTag.tag.in_(wanted))
            query = query.where(Job.id.in_(matching_ids))

        return await self._fetch(query.order_by(Job.id).offset(offset).limit(limit))

    async def update_job(
        self,
        job_id: int,
        changes: JobUpdate,
        expected_status: JobStatus | None = None,
    ) -> bool:
        values = changes.changes()
        if "status" in values:
            values["status"] = JobStatus(values["status"]).value
        if not values:
            return await self.get_job_by_id(job_id) is not None

        conditions = [Job.id == job_id]
        if expected_status is not None:
            conditions.append(Job.status == JobStatus(expected_status).value)

        async with self.database.session() as session:
            result = await session.execute(
                update(Job)
                .where(and_(*conditions))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def retry_job(self, job_id: int) -> JobRecord:
        async with self.database.session() as session:
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id == job_id,
                        Job.status.in_([status.value for status in RETRYABLE_STATUSES]),
                    )
                )
                .values(
                    status=JobStatus.PENDING.value,
                    attempts=0,
                    error=None,
                    failed_at=None,
                    locked_at=None,
                    locked_by=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount == 0:
                current = await self._current_status(session, job_id)
                raise InvalidStateTransitionError(
                    "Can only retry failed or cancelled jobs",
                    current_status=current,
                    details={"job_id": job_id},
                )

        logger.info("Job retried", job_id=job_id)
        return await self._get_or_raise(job_id)

    async def cancel_job(self, job_id: int) -> JobRecord:
        async with self.database.session() as session:
            result = await session.execute(
                update(Job)
                .where(and_(Job.id == job_id, Job.status != JobStatus.COMPLETED.value))
                .values(
                    status=JobStatus.CANCELLED.value,
                    locked_at=None,
                    locked_by=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount == 0:
                current = await self._current_status(session, job_id)
                raise InvalidStateTransitionError(
                    "Cannot cancel completed job",
                    current_status=current,
                    details={"job_id": job_id},
                )

        logger.info("Job cancelled", job_id=job_id)
        return await self._get_or_raise(job_id)

    async def delete_old_jobs(self, older_than_days: int) -> int:
        cutoff = days_ago(older_than_days)
        expired = and_(Job.completed_at.is_not(None), Job.completed_at < cutoff)

        async with self.database.session() as session:
            await session.execute(
                delete(JobTag)
                .where(JobTag.job_id.in_(select(Job.id).where(expired)))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(Job).where(expired).execution_options(synchronize_session=False)
            )
            await session.commit()
            deleted_count = result.rowcount

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                deleted_count=deleted_count,
                retention_days=older_than_days,
            )
        return deleted_count

    async def reclaim_stuck_jobs(self, max_processing_minutes: int) -> int:
        cutoff = minutes_ago(max_processing_minutes)

        async with self.database.session() as session:
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.status == JobStatus.PROCESSING.value,
                        Job.locked_at.is_not(None),
                        Job.locked_at < cutoff,
                    )
                )
                .values(status=JobStatus.PENDING.value, locked_at=None, locked_by=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def claim_jobs(
        self,
        limit: int,
        worker_id: str,
        job_types: list[str] | None = None,
    ) -> list[JobRecord]:
        if limit <= 0:
            return []
        now = utcnow()

        claim_query = select(Job.id).where(
            and_(
                Job.status == JobStatus.PENDING.value,
                or_(Job.run_at.is_(None), Job.run_at <= now),
                Job.attempts < Job.max_attempts,
            )
        )
        if job_types is not None:
            claim_query = claim_query.where(Job.job_type.in_(job_types))
        claim_query = (
            claim_query.order_by(Job.priority.desc(), Job.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )

        async with self.database.session() as session:
            job_ids = list((await session.scalars(claim_query)).all())
            if not job_ids:
                await session.rollback()
                return []

            # Status re-checked in case the dialect ignored FOR UPDATE
            await session.execute(
                update(Job)
                .where(and_(Job.id.in_(job_ids), Job.status == JobStatus.PENDING.value))
                .values(
                    status=JobStatus.PROCESSING.value,
                    locked_at=now,
                    locked_by=worker_id,
                    attempts=Job.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            claimed = await session.scalars(
                select(Job)
                .where(
                    and_(
                        Job.id.in_(job_ids),
                        Job.status == JobStatus.PROCESSING.value,
                        Job.locked_by == worker_id,
                    )
                )
                .order_by(Job.priority.desc(), Job.id)
                .execution_options(populate_existing=True)
            )
            return _to_records(claimed.all())

    async def fail_exhausted_jobs(self) -> int:
        async with self.database.session() as session:
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.status == JobStatus.PENDING.value,
                        Job.attempts >= Job.max_attempts,
                    )
                )
                .values(
                    status=JobStatus.FAILED.value,
                    failed_at=utcnow(),
                    error=func.coalesce(Job.error, EXHAUSTED_ERROR),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def count_by_status(self) -> dict[JobStatus, int]:
        counts = dict.fromkeys(JobStatus, 0)
        async with self.database.session() as session:
            result = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            for status, count in result.all():
                counts[JobStatus(status)] = count
        return counts

    async def count_by_type(self) -> dict[str, int]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Job.job_type, func.count(Job.id)).group_by(Job.job_type)
            )
            return dict(result.all())

    async def close(self) -> None:
        await self.database.close()

    async def _fetch(self, query) -> list[JobRecord]:
        async with self.database.session() as session:
            rows = await session.scalars(query)
            return _to_records(rows.all())

    async def _get_or_raise(self, job_id: int) -> JobRecord:
        job = await self.get_job_by_id(job_id)
        if job is None:
            raise NotFoundError("Job not found", {"job_id": job_id})
        return job

    async def _current_status(self, session: AsyncSession, job_id: int) -> str:
        status = await session.scalar(select(Job.status).where(Job.id == job_id))
        if status is None:
            raise NotFoundError("Job not found", {"job_id": job_id})
        return status
