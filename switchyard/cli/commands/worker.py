"""Worker Command - Run the job worker and periodic scheduler"""

import asyncio
import contextlib
import signal

import typer

from switchyard.app import create_job_system
from switchyard.config.settings import Settings

from ..utils.formatting import print_info, print_success, print_warning
from ..utils.runtime import load_settings


async def run_worker(settings: Settings, stop_event: asyncio.Event | None = None) -> None:
    """Run the job system until `stop_event` is set or the process is signalled"""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform's event loop
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    system = await create_job_system(settings)
    if system.store.backend_name == "memory":
        print_warning("DATABASE_URL is not set; jobs live only inside this worker process")

    await system.start()
    print_success(f"Worker {system.worker.worker_id} started")
    try:
        await stop_event.wait()
    finally:
        print_info("Shutting down worker...")
        await system.close()


def worker(
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", help="Handlers run concurrently"
    ),
    poll_interval_ms: int | None = typer.Option(
        None, "--poll-interval-ms", help="Poll cadence in milliseconds"
    ),
):
    """⚙️ Run the job worker until interrupted"""
    settings = load_settings()
    overrides = {}
    if concurrency is not None:
        if concurrency < 1:
            raise typer.BadParameter("must be at least 1", param_hint="--concurrency")
        overrides["job_concurrency"] = concurrency
    if poll_interval_ms is not None:
        overrides["job_poll_interval_ms"] = poll_interval_ms
    if overrides:
        settings = settings.model_copy(update=overrides)

    asyncio.run(run_worker(settings))
