"""Tests for building the job system from settings"""

import asyncio

import pytest

from switchyard.app import create_job_system
from switchyard.core.exceptions import ValidationError
from switchyard.core.registries import HandlerRegistry
from switchyard.infra.locks import MemoryLockBackend
from switchyard.jobs.handlers import LoggingHandler
from switchyard.jobs.models import JobStatus
from switchyard.jobs.payloads import JobType
from conftest import make_settings


async def test_defaults_cover_every_job_type():
    system = await create_job_system(make_settings())
    try:
        assert system.store.backend_name == "memory"
        assert isinstance(system.lock.backend, MemoryLockBackend)
        assert system.registry.missing(JobType) == []
        assert isinstance(system.registry.get("did_release"), LoggingHandler)
        # Frozen outside development
        assert system.registry.is_frozen()
    finally:
        await system.close()


async def test_development_registry_stays_open():
    system = await create_job_system(make_settings(environment="development"))
    try:
        assert not system.registry.is_frozen()
    finally:
        await system.close()


async def test_enqueued_job_is_processed(sqlite_url):
    """End to end on the SQL store: enqueue, process, complete."""
    done = asyncio.Event()
    registry = HandlerRegistry()

    async def send_email(payload, token):
        done.set()

    registry.register_function("email_send", send_email)
    system = await create_job_system(
        make_settings(database_url=sqlite_url, db_create_schema=True), registry
    )
    try:
        assert system.store.backend_name == "sql"
        await system.start()
        job_id = await system.queue.enqueue_job(
            JobType.EMAIL_SEND,
            {"to": "noc@example.com", "subject": "Route down", "template": "alert"},
        )
        await asyncio.wait_for(done.wait(), 3)

        for _ in range(300):
            job = await system.queue.get_job(job_id)
            if job.status == JobStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        assert job.status == JobStatus.COMPLETED
    finally:
        await system.close()


async def test_periodic_schedule_from_settings():
    system = await create_job_system(
        make_settings(job_periodic_schedule={"fx_rate_update": 3600})
    )
    try:
        assert list(system.scheduler.jobs) == ["fx_rate_update"]
        assert system.scheduler.jobs["fx_rate_update"].interval_s == 3600
    finally:
        await system.close()


async def test_periodic_schedule_with_payload_enqueues_on_start():
    system = await create_job_system(
        make_settings(
            job_periodic_schedule={
                "audit_cleanup": {"interval_s": 86400, "payload": {"olderThanDays": 90}},
                "month-end": {
                    "job_type": "billing_reconcile",
                    "interval_s": 86400,
                    "payload": {"period": "2026-09"},
                },
            }
        )
    )
    try:
        await system.scheduler.start()
        for _ in range(100):
            if len(await system.queue.get_jobs()) == 2:
                break
            await asyncio.sleep(0.01)
        await system.scheduler.stop()

        jobs = await system.queue.get_jobs()
        assert sorted(job.job_type for job in jobs) == ["audit_cleanup", "billing_reconcile"]
    finally:
        await system.close()


@pytest.mark.parametrize(
    "schedule, message",
    [
        ({"audit_cleanup": 3600}, "Invalid payload for job type: audit_cleanup"),
        ({"nightly_magic": 3600}, "Unknown job type: nightly_magic"),
    ],
)
async def test_invalid_periodic_schedule_fails_startup(schedule, message):
    with pytest.raises(ValidationError, match=message):
        await create_job_system(make_settings(job_periodic_schedule=schedule))
