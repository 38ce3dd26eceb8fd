from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest

from switchyard.config.settings import Settings
from switchyard.core.registries import HandlerRegistry
from switchyard.infra.database import Database
from switchyard.jobs.memory_store import MemoryJobStore
from switchyard.jobs.models import JobStatus
from switchyard.jobs.schemas import JobUpdate, NewJob
from switchyard.jobs.service import JobQueue
from switchyard.jobs.sql_store import SqlJobStore
from switchyard.jobs.store import JobStore, utcnow


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's .env, tuned for fast tests."""
    values = {
        "environment": "test",
        "debug": False,
        "log_level": "WARNING",
        "database_url": None,
        "redis_url": None,
        "job_poll_interval_ms": 10,
        "job_cancel_check_interval_ms": 10,
        "job_timeout_grace_s": 0.1,
        "job_shutdown_timeout_s": 1.0,
        "job_concurrency": 2,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture(params=["memory", "sql"])
async def store(request, settings, sqlite_url) -> AsyncGenerator[JobStore, None]:
    """Every store contract test runs against both backends."""
    if request.param == "memory":
        job_store: JobStore = MemoryJobStore()
    else:
        job_store = SqlJobStore(Database(settings, sqlite_url), create_schema=True)

    await job_store.initialize()
    yield job_store
    await job_store.close()


@pytest.fixture
async def memory_store() -> AsyncGenerator[MemoryJobStore, None]:
    job_store = MemoryJobStore()
    await job_store.initialize()
    yield job_store
    await job_store.close()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def queue(store, settings, registry) -> JobQueue:
    return JobQueue(store, settings, registry)


async def add_job(store: JobStore, job_type: str = "email_send", **fields) -> int:
    """Insert a job directly through the store."""
    return await store.add_job(NewJob(job_type=job_type, **fields))


async def force_state(store: JobStore, job_id: int, **changes) -> None:
    """Put a job into an arbitrary state for a test."""
    assert await store.update_job(job_id, JobUpdate(**changes))


async def complete_days_ago(store: JobStore, job_id: int, days: int) -> None:
    await force_state(
        store,
        job_id,
        status=JobStatus.COMPLETED,
        completed_at=utcnow() - timedelta(days=days),
    )
