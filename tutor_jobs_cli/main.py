"""Tutor Jobs CLI - Main Entry Point"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .client.endpoints import TutorJobsClient, TutorJobsError
from .commands import config, jobs
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="tutor-jobs",
    help="⚙️ Tutor Jobs - job queue and batch reconciliation CLI",
    rich_markup_mode="rich",
)

app.add_typer(config.app, name="config")
app.command("process")(jobs.process)
app.command("job")(jobs.job)
app.command("cancel")(jobs.cancel)
app.command("enqueue")(jobs.enqueue)
app.command("reconcile")(jobs.reconcile)
app.command("stats")(jobs.stats)


@app.command()
def status():
    """📊 Check API health and queue status"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with TutorJobsClient(base_url) as client:
            health = client.health_check()
    except TutorJobsError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the Tutor Jobs API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]tutor-jobs config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    database = health.get("database") or {}
    healthy = health.get("ok", False)
    console.print(
        Panel(
            f"{'🚀 [green]Healthy[/green]' if healthy else '⚠️ [red]Degraded[/red]'}\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Database: {'[green]connected[/green]' if database.get('connected') else '[red]down[/red]'}\n"
            f"• Queue depth: [cyan]{queue.get('queue_depth', 0)}[/cyan]\n"
            f"• Stale leases: [yellow]{queue.get('stale_leases', 0)}[/yellow]\n"
            f"• Batch pending: [magenta]{queue.get('batch_pending', 0)}[/magenta]\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green" if healthy else "red",
        )
    )
    if not healthy:
        raise typer.Exit(1)


@app.command()
def version():
    """📎 Show CLI version information"""
    console.print(
        Panel(
            f"⚙️ [bold cyan]Tutor Jobs CLI[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]",
            title="Version Info",
            border_style="cyan",
        )
    )


def _version_callback(value: bool):
    if value:
        console.print(f"Tutor Jobs CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """
    ⚙️ Tutor Jobs CLI

    Operate the job queue: trigger dispatch passes from cron, enqueue and
    inspect jobs, and reconcile external batches.
    """


if __name__ == "__main__":
    app()
