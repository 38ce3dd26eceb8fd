"""
Pydantic schemas shared by every job store backend.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from switchyard.jobs.models import JobStatus


class TagMatch(str, Enum):
    """How a tag filter combines its tags."""

    ALL = "all"
    ANY = "any"


class JobRecord(BaseModel):
    """A job as returned by the store, independent of the backend."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_type: str
    payload: dict[str, Any]
    status: JobStatus
    attempts: int
    max_attempts: int
    priority: int
    timeout_ms: int | None = None
    created_at: datetime
    run_at: datetime | None = None

    # Worker coordination
    locked_at: datetime | None = None
    locked_by: str | None = None

    # Outcome
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None

    tags: list[str] = Field(default_factory=list)

    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class NewJob(BaseModel):
    """A fully-defaulted job ready to be persisted."""

    job_type: str = Field(..., min_length=1, description="Job type identifier")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    priority: int = Field(default=0, description="Higher is dispatched first")
    run_at: datetime | None = Field(default=None, description="Earliest time to run job")
    max_attempts: int = Field(default=3, ge=1)
    timeout_ms: int | None = Field(default=None, ge=1)
    tags: list[str] = Field(default_factory=list)


class JobUpdate(BaseModel):
    """Partial update of a job; only explicitly set fields are written."""

    status: JobStatus | None = None
    attempts: int | None = Field(default=None, ge=0)
    run_at: datetime | None = None
    locked_at: datetime | None = None
    locked_by: str | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None

    def changes(self) -> dict[str, Any]:
        """Return the explicitly set fields, including ones set to None."""
        return self.model_dump(exclude_unset=True)


class EnqueueOptions(BaseModel):
    """Caller-supplied enqueue options; unset values take queue defaults."""

    priority: int | None = Field(default=None, description="Higher is dispatched first")
    run_at: datetime | None = Field(default=None, description="Scheduled run time")
    max_attempts: int | None = Field(default=None, ge=1)
    timeout_ms: int | None = Field(default=None, ge=1)
    tags: list[str] | None = Field(default=None, description="Labels; defaults to [job_type]")


class JobStats(BaseModel):
    """Aggregate counts for the administrative surface."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    success_rate: float = 100.0
    by_type: dict[str, int] = Field(default_factory=dict)

    @property
    def queue_depth(self) -> int:
        return self.pending + self.processing
