"""
Job handler registration.
"""

from switchyard.config.logging import get_logger
from switchyard.core.registries import HandlerRegistry
from switchyard.jobs.handlers import default_handler
from switchyard.jobs.payloads import JobType

logger = get_logger(__name__)


def register_default_handlers(registry: HandlerRegistry) -> HandlerRegistry:
    """Register a default handler for every job type that has none yet."""
    added = []
    for job_type in JobType:
        if job_type.value not in registry:
            registry.register(job_type.value, default_handler(job_type))
            added.append(job_type.value)

    logger.info(
        "Job handlers registered",
        registered_handlers=len(registry.list()),
        defaults_added=len(added),
    )
    return registry


def check_handler_coverage(registry: HandlerRegistry) -> list[str]:
    """Log and return the job types that still have no handler."""
    missing = registry.missing(JobType)
    if missing:
        logger.warning("Job types without a handler", job_types=missing)
    return missing
