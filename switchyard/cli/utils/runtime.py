"""Builds the job queue for one CLI invocation"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from switchyard.config.logging import setup_logging
from switchyard.config.settings import Settings
from switchyard.core.registries import HandlerRegistry
from switchyard.jobs.registry_init import register_default_handlers
from switchyard.jobs.service import JobQueue
from switchyard.jobs.store import create_job_store

from .formatting import print_warning


def load_settings() -> Settings:
    """Read settings from the environment at call time"""
    return Settings()


@asynccontextmanager
async def open_queue(settings: Settings | None = None) -> AsyncIterator[JobQueue]:
    """Open the configured store for the duration of one command"""
    settings = settings or load_settings()
    # Keep command output readable; only warnings and errors are logged
    setup_logging(settings.model_copy(update={"log_level": "WARNING", "debug": False}))

    store = await create_job_store(settings)
    if store.backend_name == "memory":
        print_warning("DATABASE_URL is not set; using an empty in-memory job store")

    registry = register_default_handlers(HandlerRegistry())
    try:
        yield JobQueue(store, settings, registry)
    finally:
        await store.close()
