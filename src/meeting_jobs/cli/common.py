"""Common CLI option factories and helpers.

It provides:
- `run_async_command`: Unified async execution with error handling for CLI commands
- `open_store`: Async context manager yielding the configured SQL store
- Argument/option type aliases shared by commands
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Coroutine
from contextlib import asynccontextmanager
from enum import Enum
from typing import Annotated, TypeVar

import typer
from rich.console import Console

from meeting_jobs.persistence import SqlKeyValueStore, dispose_engine, get_session_factory

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """Machine-readable JSON output."""


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from synchronous CLI command with unified error handling.

    Uses asyncio.run() for clean event loop management. Catches exceptions,
    prints user-friendly error messages, and exits with code 1.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine

    Raises:
        typer.Exit: Re-raised from deliberate exits, or raised with code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        # Re-raise deliberate exits (e.g., from validation helpers)
        raise
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {e}")
        raise typer.Exit(1) from None


@asynccontextmanager
async def open_store() -> AsyncGenerator[SqlKeyValueStore, None]:
    """Yield a store on the configured database and dispose the engine afterwards."""
    try:
        yield SqlKeyValueStore(get_session_factory())
    finally:
        await dispose_engine()


# Typer requires function calls as default arguments, which triggers B008.
# Using Annotated with a centralized type alias keeps the noqa in one place.

OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
    ),
]
"""Output format option type for CLI commands.

Usage:
    def command(output_format: OutputFormatOption = OutputFormat.TEXT):
"""

SubjectArgument = Annotated[
    str,
    typer.Argument(help="Caller identifier (user or account id)"),
]

ActionArgument = Annotated[
    str,
    typer.Argument(help="Rate-limited action (normally a job kind, e.g. analysis)"),
]
