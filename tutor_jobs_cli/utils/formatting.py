"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "cyan",
    "batch_pending": "magenta",
    "completed": "green",
    "failed": "red",
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


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create formatted panel for a single job"""
    lines = [
        f"• ID: [cyan]{job.get('id', '')}[/cyan]",
        f"• Type: [magenta]{job.get('type', '')}[/magenta]",
        f"• Status: {_styled_status(job.get('status', ''))}",
        f"• Priority: {job.get('priority', 0)}",
        f"• Attempts: {job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
        f"• Run after: [dim]{job.get('run_after') or '-'}[/dim]",
    ]
    if job.get("external_batch_id"):
        lines.append(f"• Batch: [blue]{job['external_batch_id']}[/blue]")
    if job.get("locked_by"):
        lines.append(f"• Locked by: [dim]{job['locked_by']}[/dim]")
    if job.get("error"):
        lines.append(f"• Last error: [red]{job['error']}[/red]")
    if job.get("result") is not None:
        lines.append(f"• Result: [green]{job['result']}[/green]")

    return Panel("\n".join(lines), title="Job", border_style="blue")


def create_stats_table(stats: dict[str, Any]) -> Table:
    """Create formatted table for job statistics"""
    table = Table(title="Job Statistics", box=box.ROUNDED)

    table.add_column("Metric", justify="left", style="cyan")
    table.add_column("Value", justify="right", style="yellow")

    table.add_row("Total jobs", str(stats.get("total_jobs", 0)))
    table.add_row("Queue depth", str(stats.get("queue_depth", 0)))
    table.add_row("Batch pending", str(stats.get("batch_pending", 0)))
    table.add_row("Failed (last hour)", str(stats.get("failed_last_hour", 0)))

    for status, count in sorted(stats.get("by_status", {}).items()):
        table.add_row(f"Status: {_styled_status(status)}", str(count))
    for job_type, count in sorted(stats.get("by_type", {}).items()):
        table.add_row(f"Type: {job_type}", str(count))

    return table
