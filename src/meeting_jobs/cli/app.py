"""Admin CLI for the meeting job engine."""

import json
from typing import Annotated

import typer
from rich.table import Table

from meeting_jobs import __version__
from meeting_jobs.cli.common import (
    ActionArgument,
    OutputFormat,
    OutputFormatOption,
    SubjectArgument,
    console,
    open_store,
    run_async_command,
)
from meeting_jobs.config import get_settings
from meeting_jobs.engine.rate_limiter import RateLimiter
from meeting_jobs.logging import setup_logging
from meeting_jobs.persistence import JobRepository, create_tables, get_engine
from meeting_jobs.schemas.job import JobView
from meeting_jobs.schemas.rate_limit import RateDecision

app = typer.Typer(
    name="meetjobs",
    help="Administer the meeting-transcript job engine.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"meetjobs version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """Meeting Jobs - inspect jobs, rate windows and the persistence store."""
    settings = get_settings()
    setup_logging(settings.log_level, verbose=verbose, quiet=quiet, config=settings.logging)


# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------


def _print_job(view: JobView) -> None:
    table = Table(title=f"Job {view.id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Kind", view.kind.value)
    table.add_row("Subject", view.subject)
    table.add_row("Status", view.status.value)
    table.add_row("Priority", str(view.priority))
    table.add_row("Attempts", f"{view.attempts}/{view.max_attempts}")
    table.add_row("Created", view.created_at.isoformat())
    table.add_row("Updated", view.updated_at.isoformat())
    if view.completed_at:
        table.add_row("Completed", view.completed_at.isoformat())
    if view.retry_at:
        table.add_row("Retry at", view.retry_at.isoformat())
    if view.last_error:
        table.add_row("Last error", f"[red]{view.last_error}[/red]")
    if view.parent_id:
        table.add_row("Parent", view.parent_id)
    if view.cancel_requested:
        table.add_row("Cancel requested", "yes")
    console.print(table)


@app.command()
def status(
    job_id: Annotated[str, typer.Argument(help="Job identifier")],
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Show the persisted state of a job.

    Examples:
        meetjobs status analysis_3f9c...
        meetjobs status analysis_3f9c... --format json
    """

    async def _status() -> JobView | None:
        async with open_store() as store:
            job = await JobRepository(store, get_settings().persistence).get(job_id)
            return job.to_view() if job else None

    view = run_async_command(_status(), error_prefix="Status failed")
    if view is None:
        console.print(f"[red]Error:[/red] Job {job_id} not found")
        raise typer.Exit(1)

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps(view.model_dump(mode="json")))
    else:
        _print_job(view)


# -----------------------------------------------------------------------------
# Rate limits
# -----------------------------------------------------------------------------


@app.command("rate-limit")
def rate_limit(
    subject: SubjectArgument,
    action: ActionArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Show sliding-window usage for a caller without consuming quota."""

    async def _status() -> RateDecision:
        async with open_store() as store:
            return await RateLimiter(store, get_settings().rate_limit).status(subject, action)

    decision = run_async_command(_status(), error_prefix="Rate limit lookup failed")

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps(decision.model_dump(mode="json")))
        return

    color = "green" if decision.allowed else "red"
    console.print(f"[bold]{subject}[/bold] / {action}")
    console.print(f"  Used: [{color}]{decision.current}/{decision.limit}[/{color}]")
    console.print(f"  Remaining: {decision.remaining}")
    console.print(f"  Resets at: {decision.reset_at.isoformat()}")
    if decision.degraded:
        console.print("[yellow]Warning:[/yellow] store unavailable, figures are not enforced")


@app.command("rate-limit-reset")
def rate_limit_reset(subject: SubjectArgument, action: ActionArgument) -> None:
    """Clear the sliding window for a caller and action."""

    async def _reset() -> None:
        async with open_store() as store:
            await RateLimiter(store, get_settings().rate_limit).reset(subject, action)

    run_async_command(_reset(), error_prefix="Reset failed")
    console.print(f"[green]Reset[/green] rate window for {subject} / {action}")


# -----------------------------------------------------------------------------
# Store maintenance
# -----------------------------------------------------------------------------


@app.command()
def purge() -> None:
    """Delete expired job records and rate windows."""

    async def _purge() -> int:
        async with open_store() as store:
            return await store.purge_expired()

    removed = run_async_command(_purge(), error_prefix="Purge failed")
    console.print(f"Purged {removed} expired entries")


@app.command("init-db")
def init_db() -> None:
    """Create the persistence tables (use Alembic for managed deployments)."""

    async def _init() -> None:
        async with open_store():
            await create_tables(get_engine())

    run_async_command(_init(), error_prefix="Init failed")
    console.print("[green]Database initialized[/green]")


if __name__ == "__main__":
    app()
