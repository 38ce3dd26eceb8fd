"""Tests for the job worker"""

import asyncio
from datetime import timedelta

import pytest
import structlog

from switchyard.core import cancellation
from switchyard.jobs.models import JobStatus
from switchyard.jobs.schemas import JobUpdate
from switchyard.jobs.store import utcnow
from switchyard.jobs.worker import JobWorker
from conftest import add_job, force_state, make_settings


async def wait_for_status(store, job_id, status, timeout=3.0):
    """Poll until a job reaches `status`; fail the test otherwise."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        job = await store.get_job_by_id(job_id)
        if job is not None and job.status == status:
            return job
        await asyncio.sleep(0.01)
    job = await store.get_job_by_id(job_id)
    pytest.fail(f"Job {job_id} is {job.status if job else 'missing'}, expected {status}")


@pytest.fixture
def make_worker(registry, settings):
    def _make(store, **overrides):
        worker_settings = make_settings(**overrides) if overrides else settings
        return JobWorker(store, registry, worker_settings)

    return _make


@pytest.fixture
async def running_worker(memory_store, make_worker):
    workers = []

    async def _start(**overrides):
        worker = make_worker(memory_store, **overrides)
        await worker.start()
        workers.append(worker)
        return worker

    yield _start
    for worker in workers:
        await worker.stop(timeout=1)


class TestProcessJob:
    async def test_successful_job_completes(self, store, registry, make_worker):
        """A handler that returns completes the job in one attempt."""
        received = []

        async def handle(payload, token):
            received.append(payload)

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", payload={"value": 1})

        assert await make_worker(store).run_once() == 1

        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert job.completed_at is not None
        assert job.locked_at is None
        assert job.locked_by is None
        assert received == [{"value": 1}]

    async def test_failing_job_retries_then_fails(self, store, registry, make_worker):
        """Each failed attempt goes back to pending until attempts run out."""

        async def handle(payload, token):
            raise ValueError("boom")

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", max_attempts=3)
        worker = make_worker(store)

        await worker.run_once()
        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert job.error == "boom"
        assert job.locked_by is None

        await worker.run_once()
        await worker.run_once()

        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.error == "boom"
        assert job.failed_at is not None
        assert await worker.run_once() == 0

    async def test_error_without_message_uses_exception_name(
        self, store, registry, make_worker
    ):
        async def handle(payload, token):
            raise KeyError

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", max_attempts=1)

        await make_worker(store).run_once()

        assert (await store.get_job_by_id(job_id)).error == "KeyError"

    async def test_missing_handler_fails_without_counting_attempt(self, store, make_worker):
        job_id = await add_job(store, "unhandled_job", max_attempts=3)

        await make_worker(store).run_once()

        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 0
        assert job.error == "No handler for job type: unhandled_job"

    async def test_claims_in_priority_order(self, store, registry, make_worker):
        order = []

        async def handle(payload, token):
            order.append(payload["name"])

        registry.register_function("test_job", handle)
        await add_job(store, "test_job", payload={"name": "low"}, priority=1)
        await add_job(store, "test_job", payload={"name": "high"}, priority=10)
        await add_job(store, "test_job", payload={"name": "low-later"}, priority=1)
        worker = make_worker(store, job_batch_size=1)

        while await worker.run_once():
            pass

        assert order == ["high", "low", "low-later"]

    async def test_scheduled_job_waits_for_run_at(self, store, registry, make_worker):
        async def handle(payload, token):
            pass

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", run_at=utcnow() + timedelta(hours=1))
        worker = make_worker(store)

        assert await worker.run_once() == 0

        await force_state(store, job_id, run_at=utcnow() - timedelta(seconds=1))
        assert await worker.run_once() == 1
        assert (await store.get_job_by_id(job_id)).status == JobStatus.COMPLETED


class TestTimeouts:
    async def test_handler_ignoring_token_is_timed_out(self, store, registry, make_worker):
        async def handle(payload, token):
            await asyncio.sleep(10)

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", max_attempts=1, timeout_ms=50)

        await make_worker(store).run_once()

        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Job timed out after 50ms"

    async def test_handler_observes_timeout_signal(self, store, registry, make_worker):
        reasons = []

        async def handle(payload, token):
            await token.wait(10)
            reasons.append(token.reason)
            token.raise_if_cancelled()

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", max_attempts=2, timeout_ms=50)

        await make_worker(store).run_once()

        job = await store.get_job_by_id(job_id)
        assert reasons == [cancellation.TIMEOUT]
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert job.error == "Job timed out after 50ms"

    async def test_handler_returning_on_timeout_signal_fails(
        self, store, registry, make_worker
    ):
        """Returning normally after the deadline still counts as a timed out attempt."""

        async def handle(payload, token):
            while not token.cancelled:
                await asyncio.sleep(0.01)

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", max_attempts=1, timeout_ms=50)

        await make_worker(store).run_once()

        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Job timed out after 50ms"
        assert job.completed_at is None

    async def test_timeouts_can_be_disabled(self, store, registry, make_worker):
        async def handle(payload, token):
            await asyncio.sleep(0.1)

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", timeout_ms=10)

        await make_worker(store, job_enforce_timeouts=False).run_once()

        assert (await store.get_job_by_id(job_id)).status == JobStatus.COMPLETED


class TestBackoff:
    async def test_retry_is_delayed(self, store, registry, make_worker):
        async def handle(payload, token):
            raise RuntimeError("carrier API unavailable")

        registry.register_function("test_job", handle)
        job_id = await add_job(store, "test_job", max_attempts=3)
        worker = make_worker(store, job_retry_backoff_base_ms=2000)

        await worker.run_once()

        job = await store.get_job_by_id(job_id)
        assert job.status == JobStatus.PENDING
        assert job.run_at >= utcnow() + timedelta(seconds=1)
        assert await worker.run_once() == 0

    async def test_backoff_grows_and_is_capped(self, memory_store, make_worker):
        worker = make_worker(
            memory_store, job_retry_backoff_base_ms=1000, job_max_backoff_s=5
        )

        first = (worker._calculate_retry_time(1) - utcnow()).total_seconds()
        third = (worker._calculate_retry_time(3) - utcnow()).total_seconds()
        tenth = (worker._calculate_retry_time(10) - utcnow()).total_seconds()

        assert 0.9 <= first <= 1.3
        assert 2.9 <= third <= 5.1
        assert tenth <= 6.3

    async def test_no_backoff_by_default(self, memory_store, make_worker):
        assert make_worker(memory_store)._calculate_retry_time(2) is None


class TestGuardedResults:
    async def test_cancelled_during_run_stays_cancelled(self, store, registry, make_worker):
        """A job cancelled while its handler runs is not marked completed."""
        holder = {}

        async def handle(payload, token):
            await store.cancel_job(holder["job_id"])

        registry.register_function("test_job", handle)
        holder["job_id"] = await add_job(store, "test_job")

        await make_worker(store).run_once()

        job = await store.get_job_by_id(holder["job_id"])
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at is None

    async def test_reclaimed_during_run_is_not_overwritten(self, store, registry, make_worker):
        holder = {}

        async def handle(payload, token):
            await store.update_job(
                holder["job_id"],
                JobUpdate(status=JobStatus.PENDING, locked_at=None, locked_by=None),
            )
            raise RuntimeError("late failure")

        registry.register_function("test_job", handle)
        holder["job_id"] = await add_job(store, "test_job")

        await make_worker(store).run_once()

        job = await store.get_job_by_id(holder["job_id"])
        assert job.status == JobStatus.PENDING
        assert job.error is None


class TestRunningWorker:
    async def test_processes_enqueued_jobs(self, memory_store, registry, running_worker):
        async def handle(payload, token):
            pass

        registry.register_function("test_job", handle)
        worker = await running_worker()
        assert worker.is_running

        job_ids = [await add_job(memory_store, "test_job") for _ in range(5)]

        for job_id in job_ids:
            await wait_for_status(memory_store, job_id, JobStatus.COMPLETED)

    async def test_start_twice_raises(self, running_worker):
        worker = await running_worker()

        with pytest.raises(RuntimeError, match="already running"):
            await worker.start()

    async def test_start_keeps_caller_log_context(self, running_worker):
        structlog.contextvars.bind_contextvars(request_id="req-1")
        try:
            await running_worker()

            context = structlog.contextvars.get_contextvars()
            assert context["request_id"] == "req-1"
            assert "worker_id" not in context
        finally:
            structlog.contextvars.clear_contextvars()

    async def test_concurrency_limit(self, memory_store, registry, running_worker):
        release = asyncio.Event()
        active = []
        peak = []

        async def handle(payload, token):
            active.append(payload)
            peak.append(len(active))
            await release.wait()
            active.remove(payload)

        registry.register_function("test_job", handle)
        await running_worker(job_concurrency=2)
        job_ids = [await add_job(memory_store, "test_job", payload={"n": n}) for n in range(4)]

        await wait_for_status(memory_store, job_ids[1], JobStatus.PROCESSING)
        await asyncio.sleep(0.1)
        counts = await memory_store.count_by_status()
        assert counts[JobStatus.PROCESSING] == 2
        assert counts[JobStatus.PENDING] == 2

        release.set()
        for job_id in job_ids:
            await wait_for_status(memory_store, job_id, JobStatus.COMPLETED)
        assert max(peak) == 2

    async def test_operator_cancel_signals_running_handler(
        self, memory_store, registry, running_worker
    ):
        """Cancelling a processing job reaches the handler through its token."""
        started = asyncio.Event()
        reasons = []

        async def handle(payload, token):
            started.set()
            await token.wait(5)
            reasons.append(token.reason)
            token.raise_if_cancelled()

        registry.register_function("test_job", handle)
        worker = await running_worker()
        job_id = await add_job(memory_store, "test_job")

        await asyncio.wait_for(started.wait(), 2)
        await memory_store.cancel_job(job_id)

        for _ in range(300):
            if reasons and not worker.active_jobs:
                break
            await asyncio.sleep(0.01)

        assert reasons == [cancellation.CANCELLED]
        job = await memory_store.get_job_by_id(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.attempts == 1

    async def test_startup_reclaims_abandoned_jobs(
        self, memory_store, registry, running_worker
    ):
        async def handle(payload, token):
            pass

        registry.register_function("test_job", handle)
        job_id = await add_job(memory_store, "test_job")
        await force_state(
            memory_store,
            job_id,
            status=JobStatus.PROCESSING,
            attempts=1,
            locked_at=utcnow() - timedelta(minutes=6),
            locked_by="crashed-worker",
        )

        await running_worker()

        job = await wait_for_status(memory_store, job_id, JobStatus.COMPLETED)
        assert job.attempts == 2


class TestShutdown:
    async def test_stop_releases_job_that_honours_token(
        self, memory_store, registry, make_worker
    ):
        started = asyncio.Event()
        reasons = []

        async def handle(payload, token):
            started.set()
            await token.wait(10)
            reasons.append(token.reason)
            token.raise_if_cancelled()

        registry.register_function("test_job", handle)
        worker = make_worker(memory_store)
        await worker.start()
        job_id = await add_job(memory_store, "test_job")
        await asyncio.wait_for(started.wait(), 2)

        await worker.stop(timeout=0.05)

        assert reasons == [cancellation.SHUTDOWN]
        assert not worker.is_running
        job = await memory_store.get_job_by_id(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.locked_by is None

    async def test_stop_releases_job_that_returns_on_token(
        self, memory_store, registry, make_worker
    ):
        started = asyncio.Event()

        async def handle(payload, token):
            started.set()
            while not token.cancelled:
                await asyncio.sleep(0.01)

        registry.register_function("test_job", handle)
        worker = make_worker(memory_store)
        await worker.start()
        job_id = await add_job(memory_store, "test_job")
        await asyncio.wait_for(started.wait(), 2)

        await worker.stop(timeout=0.05)

        job = await memory_store.get_job_by_id(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.completed_at is None
        assert job.locked_by is None

    async def test_stop_cancels_handler_ignoring_token(
        self, memory_store, registry, make_worker
    ):
        started = asyncio.Event()

        async def handle(payload, token):
            started.set()
            await asyncio.sleep(30)

        registry.register_function("test_job", handle)
        worker = make_worker(memory_store)
        await worker.start()
        job_id = await add_job(memory_store, "test_job")
        await asyncio.wait_for(started.wait(), 2)

        await worker.stop(timeout=0.05)

        job = await memory_store.get_job_by_id(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert worker.active_jobs == {}

    async def test_stop_waits_for_running_jobs(self, memory_store, registry, make_worker):
        started = asyncio.Event()

        async def handle(payload, token):
            started.set()
            await asyncio.sleep(0.05)

        registry.register_function("test_job", handle)
        worker = make_worker(memory_store)
        await worker.start()
        job_id = await add_job(memory_store, "test_job")
        await asyncio.wait_for(started.wait(), 2)

        await worker.stop(timeout=2)

        assert (await memory_store.get_job_by_id(job_id)).status == JobStatus.COMPLETED

    async def test_stop_when_not_running(self, memory_store, make_worker):
        await make_worker(memory_store).stop()
