"""Rich formatting utilities for CLI output"""

import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from switchyard.jobs.models import JobStatus
from switchyard.jobs.payloads import JOB_TYPE_CATEGORIES, JOB_TYPE_LABELS
from switchyard.jobs.schemas import JobRecord, JobStats

console = Console()

STATUS_STYLES = {
    JobStatus.PENDING: "yellow",
    JobStatus.PROCESSING: "blue",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _status(status: JobStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _when(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def create_jobs_table(jobs: list[JobRecord]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Priority", justify="center")
    table.add_column("Tags", justify="left", style="green")
    table.add_column("Created", justify="left", style="white")
    table.add_column("Error", justify="left", style="red", max_width=40)

    for job in jobs:
        table.add_row(
            str(job.id),
            job.job_type,
            _status(job.status),
            f"{job.attempts}/{job.max_attempts}",
            str(job.priority),
            ", ".join(job.tags) or "-",
            _when(job.created_at),
            escape(job.error or ""),
        )

    return table


def create_job_panel(job: JobRecord) -> Panel:
    """Create a detail panel for a single job"""
    content = f"""
• Type: [magenta]{job.job_type}[/magenta]
• Status: {_status(job.status)}
• Attempts: [yellow]{job.attempts}/{job.max_attempts}[/yellow]
• Priority: {job.priority}
• Timeout: {f"{job.timeout_ms}ms" if job.timeout_ms else "-"}
• Tags: [green]{", ".join(job.tags) or "-"}[/green]

• Created: {_when(job.created_at)}
• Run at: {_when(job.run_at)}
• Locked: {_when(job.locked_at)} {f"by [cyan]{job.locked_by}[/cyan]" if job.locked_by else ""}
• Completed: {_when(job.completed_at)}
• Failed: {_when(job.failed_at)}
• Error: [red]{escape(job.error or "-")}[/red]

[bold]Payload[/bold]
{escape(json.dumps(job.payload, indent=2, default=str))}
"""
    border = STATUS_STYLES.get(job.status, "white")
    return Panel(content, title=f"Job {job.id}", border_style=border)


def create_stats_panel(stats: JobStats) -> Panel:
    """Create formatted panel for queue statistics"""
    content = f"""
📊 [bold blue]Job Queue Statistics[/bold blue]

• Pending: [yellow]{stats.pending}[/yellow]
• Processing: [blue]{stats.processing}[/blue]
• Completed: [green]{stats.completed}[/green]
• Failed: [red]{stats.failed}[/red]
• Cancelled: [dim]{stats.cancelled}[/dim]
• Success Rate: [green]{stats.success_rate:.2f}%[/green]
"""
    if stats.by_type:
        content += "\n[bold]By type[/bold]\n"
        for job_type, count in sorted(stats.by_type.items()):
            content += f"• {job_type}: {count}\n"

    return Panel(content, title="Queue Stats", border_style="green")


def create_job_types_table(registered: list[str]) -> Table:
    """Create a table of job types grouped by category"""
    table = Table(title="Job Types", box=box.ROUNDED)

    table.add_column("Category", justify="left", style="bold")
    table.add_column("Job Type", justify="left", style="magenta")
    table.add_column("Label", justify="left", style="white")
    table.add_column("Handler", justify="center")

    for category, job_types in JOB_TYPE_CATEGORIES.items():
        for job_type in job_types:
            handled = job_type.value in registered
            table.add_row(
                category,
                job_type.value,
                JOB_TYPE_LABELS[job_type],
                "[green]✓[/green]" if handled else "[red]✗[/red]",
            )

    return table
