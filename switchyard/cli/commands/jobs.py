"""Jobs Commands - Inspect and manage the job queue"""

import asyncio
import json

import typer
from rich.console import Console
from rich.panel import Panel

from switchyard.core.exceptions import SwitchyardError
from switchyard.jobs.models import JobStatus
from switchyard.jobs.schemas import EnqueueOptions, TagMatch

from ..utils.formatting import (
    create_job_panel,
    create_job_types_table,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)
from ..utils.runtime import open_queue

console = Console()
app = typer.Typer(name="jobs", help="Job queue inspection and management commands")


def _fail(action: str, error: SwitchyardError) -> None:
    print_error(f"Failed to {action}: {error.message}")
    raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    status: JobStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    tags: list[str] | None = typer.Option(None, "--tag", help="Filter by tag (repeatable)"),
    all_tags: bool = typer.Option(False, "--all-tags", help="Require every --tag to match"),
    limit: int = typer.Option(50, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs"""

    async def _list():
        async with open_queue() as queue:
            if tags and all_tags:
                return await queue.get_jobs_by_tags(tags, TagMatch.ALL, limit, offset)
            return await queue.get_jobs(
                status=status, job_type=job_type, tags=tags, limit=limit, offset=offset
            )

    jobs = asyncio.run(_list())

    if not jobs:
        console.print(Panel(
            "📭 [yellow]No jobs found![/yellow]\n\n"
            f"Filters applied:\n"
            f"• Status: {status.value if status else 'any'}\n"
            f"• Type: {job_type or 'any'}\n"
            f"• Tags: {', '.join(tags) if tags else 'any'}",
            title="Empty Results",
            border_style="yellow"
        ))
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] jobs from offset [yellow]{offset}[/yellow]")
    if len(jobs) == limit:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("show")
def show_job(job_id: int = typer.Argument(..., help="Job ID to show")):
    """🔍 Show a single job"""

    async def _show():
        async with open_queue() as queue:
            return await queue.require_job(job_id)

    try:
        job = asyncio.run(_show())
    except SwitchyardError as e:
        _fail("show job", e)

    console.print(create_job_panel(job))


@app.command("stats")
def stats():
    """📊 Show queue statistics"""

    async def _stats():
        async with open_queue() as queue:
            return await queue.get_job_stats()

    console.print(create_stats_panel(asyncio.run(_stats())))


@app.command("enqueue")
def enqueue(
    job_type: str = typer.Argument(..., help="Job type to enqueue"),
    payload: str = typer.Option("{}", "--payload", "-p", help="Payload as a JSON object"),
    priority: int | None = typer.Option(None, "--priority", help="Higher runs first"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", help="Attempts before failing"),
    timeout_ms: int | None = typer.Option(None, "--timeout-ms", help="Handler time budget"),
    tags: list[str] | None = typer.Option(None, "--tag", help="Tag (repeatable)"),
):
    """➕ Enqueue a job"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    options = EnqueueOptions(
        priority=priority,
        max_attempts=max_attempts,
        timeout_ms=timeout_ms,
        tags=tags or None,
    )

    async def _enqueue():
        async with open_queue() as queue:
            return await queue.enqueue_job(job_type, data, options)

    try:
        job_id = asyncio.run(_enqueue())
    except SwitchyardError as e:
        _fail("enqueue job", e)

    print_success(f"Enqueued {job_type} job {job_id}")


@app.command("retry")
def retry(job_id: int = typer.Argument(..., help="Failed or cancelled job to retry")):
    """🔁 Retry a failed or cancelled job"""

    async def _retry():
        async with open_queue() as queue:
            return await queue.retry_job(job_id)

    try:
        asyncio.run(_retry())
    except SwitchyardError as e:
        _fail("retry job", e)

    print_success(f"Job {job_id} is pending again")


@app.command("retry-failed")
def retry_failed():
    """🔁 Retry every failed job"""

    async def _retry_all():
        async with open_queue() as queue:
            return await queue.retry_all_failed_jobs()

    count = asyncio.run(_retry_all())
    if count:
        print_success(f"Retried {count} failed jobs")
    else:
        print_info("No failed jobs to retry")


@app.command("cancel")
def cancel(job_id: int = typer.Argument(..., help="Job to cancel")):
    """🛑 Cancel a job that has not completed"""

    async def _cancel():
        async with open_queue() as queue:
            return await queue.cancel_job(job_id)

    try:
        asyncio.run(_cancel())
    except SwitchyardError as e:
        _fail("cancel job", e)

    print_success(f"Job {job_id} cancelled")


@app.command("cleanup")
def cleanup(
    older_than_days: int | None = typer.Option(
        None, "--older-than-days", "-d", help="Delete jobs completed before this many days ago"
    ),
):
    """🧹 Delete old completed jobs"""

    async def _cleanup():
        async with open_queue() as queue:
            return await queue.cleanup_old_jobs(older_than_days)

    count = asyncio.run(_cleanup())
    print_success(f"Deleted {count} old jobs")


@app.command("reclaim")
def reclaim(
    max_processing_minutes: int | None = typer.Option(
        None, "--max-processing-minutes", "-m", help="Reclaim jobs processing longer than this"
    ),
):
    """♻️ Return stuck processing jobs to pending"""

    async def _reclaim():
        async with open_queue() as queue:
            return await queue.reclaim_stuck_jobs(max_processing_minutes)

    count = asyncio.run(_reclaim())
    print_success(f"Reclaimed {count} stuck jobs")


@app.command("types")
def types():
    """🗂️ List job types and whether a handler is registered"""

    async def _types():
        async with open_queue() as queue:
            return queue.registry.list()

    console.print(create_job_types_table(asyncio.run(_types())))
