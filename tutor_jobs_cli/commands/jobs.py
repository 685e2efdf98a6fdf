"""Job Commands - dispatch trigger, enqueue, inspection and reconciliation"""

import json
from typing import Any

import typer
from rich.console import Console

from ..client.endpoints import TutorJobsClient, TutorJobsError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()

PROCESS_BATCH_RESULT = "PROCESS_BATCH_RESULT"


def _parse_json(value: str | None, option: str) -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        print_error(f"{option} is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(parsed, dict):
        print_error(f"{option} must be a JSON object")
        raise typer.Exit(1)
    return parsed


def process(
    limit: int | None = typer.Option(
        None, "--limit", "-l", min=1, max=100, help="Maximum jobs to claim"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print on failure"),
):
    """⚙️ Trigger one dispatch pass (cron entry point)"""
    limit = limit or config.get("dispatch.default_limit")
    try:
        with TutorJobsClient() as client:
            result = client.process_jobs(limit)
    except TutorJobsError as e:
        print_error(f"Dispatch failed: {e}")
        raise typer.Exit(1) from None

    if not quiet:
        print_success(
            f"Processed {result.get('processed', 0)} job(s) "
            f"on worker {result.get('worker_id', 'unknown')}"
        )


def job(job_id: str = typer.Argument(..., help="Job ID")):
    """🔎 Show a job's status, attempts and result"""
    try:
        with TutorJobsClient() as client:
            data = client.get_job(job_id)
    except TutorJobsError as e:
        print_error(f"Failed to fetch job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(data))


def cancel(job_id: str = typer.Argument(..., help="Job ID")):
    """🛑 Cancel a job that has not started yet"""
    try:
        with TutorJobsClient() as client:
            client.cancel_job(job_id)
    except TutorJobsError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Canceled job {job_id}")


def enqueue(
    job_type: str = typer.Argument(..., help="Job type, e.g. GENERATE_QUESTIONS"),
    payload: str | None = typer.Option(
        None, "--payload", "-p", help="Job payload as a JSON object"
    ),
    priority: int | None = typer.Option(None, "--priority", min=0, max=100),
    delay: float = typer.Option(0, "--delay", min=0, help="Seconds before eligible"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1, max=25),
    run_now: bool = typer.Option(False, "--run-now", help="Execute immediately"),
):
    """➕ Enqueue a job"""
    body = _parse_json(payload, "--payload")
    try:
        with TutorJobsClient() as client:
            data = client.enqueue_job(
                job_type,
                body,
                priority=priority,
                delay_seconds=delay,
                max_attempts=max_attempts,
                run_now=run_now,
            )
    except TutorJobsError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Enqueued {job_type} as {data.get('job_id')} ({data.get('status')})")
    if data.get("job"):
        console.print(create_job_panel(data["job"]))


def reconcile(
    limit: int = typer.Option(50, "--limit", "-l", min=1, max=500),
):
    """🔁 Reconcile parked batch jobs now"""
    try:
        with TutorJobsClient() as client:
            data = client.enqueue_job(
                PROCESS_BATCH_RESULT, {"limit": limit}, run_now=True
            )
    except TutorJobsError as e:
        print_error(f"Reconciliation failed: {e}")
        raise typer.Exit(1) from None

    job_data = data.get("job") or {}
    report = job_data.get("result")
    if job_data.get("status") != "completed" or not report:
        print_warning(
            f"Reconciliation job {data.get('job_id')} is {job_data.get('status', data.get('status'))}"
        )
        if job_data.get("error"):
            print_error(job_data["error"])
        return

    print_success(
        f"Checked {report.get('checked', 0)} batch(es): "
        f"{report.get('completed', 0)} completed, "
        f"{report.get('failed', 0)} failed, "
        f"{report.get('still_running', 0)} still running"
    )
    for error in report.get("errors", []):
        print_warning(f"{error.get('job_id')}: {error.get('error')}")


def stats():
    """📊 Show queue statistics"""
    try:
        with TutorJobsClient() as client:
            data = client.get_stats()
    except TutorJobsError as e:
        print_error(f"Failed to fetch statistics: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_table(data))
    if data.get("failed_last_hour"):
        print_info("Inspect failures with: tutor-jobs job <id>")
