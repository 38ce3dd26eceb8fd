"""Switchyard CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from switchyard import __version__

from .commands import jobs
from .commands.worker import worker
from .utils.runtime import load_settings

console = Console()

# Create main Typer app
app = typer.Typer(
    name="switchyard",
    help="🚉 Switchyard - background job queue CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.command("worker")(worker)


@app.command()
def version():
    """📎 Show version information"""
    console.print(Panel(
        f"🚉 [bold cyan]Switchyard[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]",
        title="Version Info",
        border_style="cyan"
    ))


@app.command()
def config():
    """🔧 Show the effective job queue configuration"""
    settings = load_settings()
    console.print(Panel(
        f"• Environment: [yellow]{settings.environment}[/yellow]\n"
        f"• Job store: [cyan]{'sql' if settings.database_url else 'memory'}[/cyan]\n"
        f"• Lock backend: [cyan]{'redis' if settings.redis_url else 'memory'}[/cyan]\n"
        f"• Concurrency: {settings.job_concurrency}\n"
        f"• Poll interval: {settings.job_poll_interval_ms}ms\n"
        f"• Default max attempts: {settings.job_default_max_attempts}\n"
        f"• Default timeout: {settings.job_default_timeout_ms}ms\n"
        f"• Stuck after: {settings.job_stuck_after_minutes} min\n"
        f"• Cleanup after: {settings.job_cleanup_after_days} days",
        title="Configuration",
        border_style="blue"
    ))


if __name__ == "__main__":
    app()
