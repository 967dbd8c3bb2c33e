"""
queuectl command-line interface.

Every command parses its arguments, calls QueueClient and renders the result
with rich. Lifecycle logic lives in the repository and the worker loops.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

import typer
from pydantic import ValidationError
from rich import print
from rich.console import Console
from rich.table import Table

from queuectl import __version__
from queuectl.client import QueueClient
from queuectl.constants import JobState
from queuectl.exceptions import QueueError
from queuectl.observability.logging import setup_logging
from queuectl.reaper import main as reaper_main
from queuectl.types.job import JobRecord, JobSpec
from queuectl.worker import main as worker_main

T = TypeVar("T")

app = typer.Typer(help="queuectl - background job queue with workers, retries and DLQ.")

# Sub-apps so the CLI supports commands like:
#   queuectl worker start --count 3
#   queuectl dlq retry job1
worker_app = typer.Typer(help="Run worker processes.")
dlq_app = typer.Typer(help="Inspect and retry dead-lettered jobs.")

app.add_typer(worker_app, name="worker")
app.add_typer(dlq_app, name="dlq")


def _with_client(action: Callable[[QueueClient], Awaitable[T]]) -> T:
    """Run one client action in a fresh event loop, reporting queue errors."""

    async def runner() -> T:
        async with QueueClient() as client:
            return await action(client)

    try:
        return asyncio.run(runner())
    except QueueError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _version_callback(value: bool) -> None:
    if value:
        print(f"queuectl {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override QUEUECTL_LOG_LEVEL"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    """Durable background job queue."""
    setup_logging(log_level=log_level)


# -----------------------------
# Enqueue
# -----------------------------
def _parse_payload(payload: str) -> dict[str, Any]:
    """A JSON object is a full job spec; anything else is the command itself."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return {"command": payload}
    if not isinstance(data, dict):
        return {"command": payload}
    return data


@app.command()
def enqueue(
    payload: str = typer.Argument(
        ...,
        help="Job JSON e.g. '{\"id\":\"job1\",\"command\":\"echo hi\"}' or a raw command.",
    ),
    id: Optional[str] = typer.Option(None, "--id", help="Job ID (overrides the payload)"),
    max_retries: Optional[int] = typer.Option(
        None, "--max-retries", min=0, help="Override job max_retries"
    ),
) -> None:
    """Add a new job to the queue."""
    data = _parse_payload(payload)
    if id is not None:
        data["id"] = id
    if max_retries is not None:
        data["max_retries"] = max_retries

    try:
        spec = JobSpec.model_validate(data)
    except ValidationError as e:
        raise typer.BadParameter(str(e), param_hint="PAYLOAD") from e

    job_id = _with_client(lambda client: client.enqueue(spec))
    print(f"[green]Enqueued[/green] job [bold]{job_id}[/bold]")


# -----------------------------
# Workers
# -----------------------------
@worker_app.command("start")
def worker_start(
    count: int = typer.Option(1, "--count", "-c", min=1, help="Number of workers"),
    poll_ms: int = typer.Option(1000, "--poll-ms", min=1, help="Idle poll interval in ms"),
    base: int = typer.Option(2, "--base", min=1, help="Backoff base"),
) -> None:
    """Start workers. Ctrl+C finishes current jobs and stops."""
    print(f"Starting {count} worker(s). Ctrl+C to stop.")
    try:
        asyncio.run(
            worker_main.run_async(
                count=count,
                poll_interval=poll_ms / 1000,
                backoff_base=base,
                configure_logging=False,
            )
        )
    except QueueError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    print("[yellow]Workers stopped.[/yellow]")


# -----------------------------
# Status & listing
# -----------------------------
def _jobs_table(title: str, rows: list[JobRecord]) -> Table:
    t = Table(title=title)
    for c in ["id", "state", "attempts", "max_retries", "run_after", "updated_at", "command"]:
        t.add_column(c)
    for r in rows:
        t.add_row(
            r.id,
            r.state.value,
            str(r.attempts),
            str(r.max_retries),
            str(r.run_after),
            r.updated_at.isoformat(),
            r.command,
        )
    return t


@app.command("list")
def list_jobs(
    state: Optional[JobState] = typer.Option(None, "--state", help="Filter by state"),
) -> None:
    """List jobs, newest first."""
    rows = _with_client(lambda client: client.list_jobs(state))
    title = "Jobs" if state is None else f"Jobs ({state.value})"
    Console().print(_jobs_table(title, rows))


@app.command()
def show(job_id: str = typer.Argument(..., help="Job ID")) -> None:
    """Show one job in detail."""
    job = _with_client(lambda client: client.get_job(job_id))
    if job is None:
        print(f"[red]Error:[/red] Job '{job_id}' not found")
        raise typer.Exit(1)

    t = Table(title=f"Job {job.id}", show_header=False)
    t.add_column("field")
    t.add_column("value")
    for field, value in job.model_dump(mode="json").items():
        t.add_row(field, "" if value is None else str(value))
    Console().print(t)


@app.command()
def status() -> None:
    """Show job counts per state."""
    counts = _with_client(lambda client: client.stats())
    t = Table(title="Jobs")
    t.add_column("State")
    t.add_column("Count")
    for state, count in counts.items():
        t.add_row(state, str(count))
    Console().print(t)


# -----------------------------
# DLQ (list + retry)
# -----------------------------
@dlq_app.command("list")
def dlq_list() -> None:
    """List Dead Letter Queue jobs."""
    rows = _with_client(lambda client: client.list_dead())
    t = Table(title="DLQ (dead jobs)")
    t.add_column("id")
    t.add_column("attempts")
    t.add_column("max_retries")
    t.add_column("last_error")
    for r in rows:
        t.add_row(r.id, str(r.attempts), str(r.max_retries), (r.last_error or "")[:80])
    Console().print(t)


@dlq_app.command("retry")
def dlq_retry(job_id: str = typer.Argument(..., help="Job ID")) -> None:
    """Move a dead job back to pending with attempts reset."""
    _with_client(lambda client: client.retry_dead(job_id))
    print(f"[green]Requeued[/green] job [bold]{job_id}[/bold]")


# -----------------------------
# Maintenance
# -----------------------------
@app.command()
def reaper(
    once: bool = typer.Option(False, "--once", help="Run a single recovery pass and exit"),
) -> None:
    """Return jobs orphaned in processing by crashed workers to the queue."""
    try:
        recovered = asyncio.run(
            reaper_main.run_async(once=once, configure_logging=False)
        )
    except QueueError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    if once:
        print(f"Recovered {len(recovered)} stale job(s)")


if __name__ == "__main__":
    app()
