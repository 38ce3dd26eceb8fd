"""
Application bootstrap: builds a ready-to-use job system from settings.
"""

from switchyard.config.logging import get_logger, setup_logging
from switchyard.config.settings import Settings
from switchyard.core.registries import HandlerRegistry
from switchyard.infra.locks import DistributedLock, create_lock
from switchyard.jobs.periodic import PeriodicJob, PeriodicScheduler
from switchyard.jobs.registry_init import check_handler_coverage, register_default_handlers
from switchyard.jobs.service import JobQueue
from switchyard.jobs.store import JobStore, create_job_store
from switchyard.jobs.worker import JobWorker

logger = get_logger(__name__)


class JobSystem:
    """Handle to an initialized job system; pass it to whatever needs the queue."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        registry: HandlerRegistry,
        queue: JobQueue,
        worker: JobWorker,
        lock: DistributedLock,
        scheduler: PeriodicScheduler,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.queue = queue
        self.worker = worker
        self.lock = lock
        self.scheduler = scheduler

    async def start(self) -> None:
        """Start the worker and the periodic scheduler."""
        await self.worker.start()
        await self.scheduler.start()

    async def stop(self, timeout: float | None = None) -> None:
        await self.scheduler.stop()
        await self.worker.stop(timeout)

    async def close(self) -> None:
        """Stop everything and release store and lock connections."""
        await self.stop()
        await self.lock.close()
        await self.store.close()


async def create_job_system(
    settings: Settings,
    registry: HandlerRegistry | None = None,
    register_defaults: bool = True,
) -> JobSystem:
    """
    Build and initialize the job system.

    Args:
        settings: Application settings
        registry: Handlers to dispatch to; a fresh registry when omitted
        register_defaults: Fill job types without a handler with the defaults

    The store is initialized before this returns, so the queue is usable
    immediately. The worker and scheduler start only on JobSystem.start().
    """
    setup_logging(settings)

    registry = registry if registry is not None else HandlerRegistry()
    if register_defaults:
        register_default_handlers(registry)
    check_handler_coverage(registry)

    # Freeze the registry in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        registry.freeze()

    store = await create_job_store(settings)
    queue = JobQueue(store, settings, registry)
    worker = JobWorker(store, registry, settings)
    lock = create_lock(settings)
    try:
        # Unknown job types and invalid payloads fail here, not on every tick
        scheduler = PeriodicScheduler(
            queue,
            lock,
            [
                PeriodicJob.from_schedule(name, schedule)
                for name, schedule in settings.job_periodic_schedule.items()
            ],
        )
    except Exception:
        logger.error("Invalid periodic job schedule")
        await lock.close()
        await store.close()
        raise

    logger.info(
        "Job system ready",
        environment=settings.environment,
        store=store.backend_name,
    )
    return JobSystem(settings, store, registry, queue, worker, lock, scheduler)
