"""Logging for the job engine, built on loguru.

Every record can carry job context in its ``extra`` dict:

- ``job_id`` / ``kind`` from ``bind_job``
- ``subject`` / ``action`` from ``bind_subject``
- ``batch_id`` for everything run by a batch's member tasks (``batch_context``)

The console shows whichever of these are present after the logger
name. The pool and timer modules log through the standard library;
those records are forwarded here with the batch context intact.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

    from meeting_jobs.config import LoggingConfig

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Extras rendered on the console, in display order
CONTEXT_KEYS = ("batch_id", "job_id", "subject", "action")


class InterceptHandler(logging.Handler):
    """Forward standard library records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _console_format(record: Record) -> str:
    context = " ".join(
        f"{key}={{extra[{key}]}}" for key in CONTEXT_KEYS if key in record["extra"]
    )
    name = "{extra[name]}" if "name" in record["extra"] else "{name}"
    return (
        "<dim>{time:HH:mm:ss}</dim> | "
        "<level>{level: <8}</level> | "
        f"<cyan>{name}</cyan>"
        + (f" <magenta>[{context}]</magenta>" if context else "")
        + " - <level>{message}</level>\n{exception}"
    )


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    config: LoggingConfig | None = None,
) -> Logger:
    """Configure console (and optional file) logging.

    Args:
        level: Base log level from settings
        verbose: Force DEBUG (wins over ``quiet``)
        quiet: Force WARNING
        config: File sink settings; no file sink when omitted or without ``log_file``

    Returns:
        The configured loguru logger
    """
    if verbose:
        effective_level: LogLevel = "DEBUG"
    elif quiet:
        effective_level = "WARNING"
    else:
        effective_level = level

    logger.remove()
    logger.add(
        sys.stderr,
        level=effective_level,
        format=_console_format,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if config is not None and config.log_file:
        logger.add(
            Path(config.log_file),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra} | {message}",
            rotation=config.rotation,
            retention=config.retention,
            compression="gz",
            serialize=config.serialize,
        )

    _route_stdlib_logging(effective_level)
    return logger


def _route_stdlib_logging(level: LogLevel) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # SQL echo only when debugging; aiosqlite logs every statement at DEBUG
    sql_level = logging.INFO if level in ("TRACE", "DEBUG") else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(sql_level)
    logging.getLogger("aiosqlite").setLevel(logging.DEBUG if level == "TRACE" else logging.WARNING)


def get_logger(name: str) -> Logger:
    """Logger with ``name`` bound (typically ``__name__``)."""
    return logger.bind(name=name)


def bind_job(job_id: str, kind: str) -> Logger:
    """Logger carrying a job's id and kind."""
    return logger.bind(name="meeting_jobs.jobs", job_id=job_id, kind=kind)


def bind_subject(subject: str, action: str) -> Logger:
    """Logger carrying the caller and rate-limited action."""
    return logger.bind(name="meeting_jobs.admission", subject=subject, action=action)


@contextmanager
def batch_context(batch_id: str) -> Iterator[None]:
    """Tag records with ``batch_id`` for code run inside the block.

    Tasks created inside the block copy the context, so everything a
    batch member logs while it executes carries the batch id.
    """
    with logger.contextualize(batch_id=batch_id):
        yield


def reset_logging() -> None:
    """Remove every sink (used by tests and the CLI teardown)."""
    logger.remove()
