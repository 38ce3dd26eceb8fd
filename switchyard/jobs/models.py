"""
Job queue models: lifecycle statuses and the SQL tables behind the durable store.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from switchyard.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# retry_job is only legal from these
RETRYABLE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.CANCELLED})


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite stores timestamps without an offset, so values read back are naive.
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# SQLite only autoincrements INTEGER PRIMARY KEY
JobId = BigInteger().with_variant(Integer, "sqlite")


class Job(Base):
    """
    Persisted unit of asynchronous work.

    Worker coordination uses locked_at/locked_by; locked_at is set exactly
    while the job is processing.
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[int] = mapped_column(JobId, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Job-specific parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|processing|completed|failed|cancelled",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher is dispatched first"
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of attempts made"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Attempts allowed before failing"
    )
    timeout_ms: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Handler time budget"
    )
    run_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Earliest time to run job"
    )

    # Worker coordination
    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When job was claimed by a worker"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that claimed the job"
    )

    # Outcome
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    tag_rows: Mapped[list["JobTag"]] = relationship(
        back_populates="job",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="JobTag.position",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
        Index("ix_jobs_claim", "status", "priority", "id"),
        Index("ix_jobs_locked_at", "locked_at"),
        Index("ix_jobs_completed_at", "completed_at"),
        Index("ix_jobs_job_type", "job_type"),
    )

    @property
    def tags(self) -> list[str]:
        return [row.tag for row in self.tag_rows]

    def is_active(self) -> bool:
        """Check if job is in an active state (pending, processing)."""
        return self.status in (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class JobTag(Base):
    """One label attached to a job."""

    __tablename__ = "job_tags"

    job_id: Mapped[int] = mapped_column(
        JobId, ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True
    )
    tag: Mapped[str] = mapped_column(Text, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    job: Mapped[Job] = relationship(back_populates="tag_rows")

    __table_args__ = (Index("ix_job_tags_tag", "tag", "job_id"),)
