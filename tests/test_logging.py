"""Tests for logging configuration."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from loguru import logger

from meeting_jobs.config import LoggingConfig
from meeting_jobs.logging import (
    batch_context,
    bind_job,
    bind_subject,
    get_logger,
    reset_logging,
    setup_logging,
)

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def _reset_logging_state() -> Generator[None, None, None]:
    """Reset loguru state before and after each test."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def captured() -> Generator[list[str], None, None]:
    """Configure DEBUG logging and capture formatted records with their extras."""
    messages: list[str] = []
    setup_logging(level="DEBUG")
    handler_id = logger.add(lambda msg: messages.append(str(msg)), format="{extra} | {message}")
    yield messages
    logger.remove(handler_id)


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_verbose_enables_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(level="WARNING", verbose=True)

        get_logger("engine").debug("dispatching job")

        assert "dispatching job" in capsys.readouterr().err

    def test_verbose_wins_over_quiet(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(level="INFO", verbose=True, quiet=True)

        get_logger("engine").debug("both flags")

        assert "both flags" in capsys.readouterr().err

    def test_quiet_suppresses_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(level="DEBUG", quiet=True)

        get_logger("engine").info("routine")
        get_logger("engine").warning("attention")

        err = capsys.readouterr().err
        assert "routine" not in err
        assert "attention" in err

    def test_console_shows_job_context(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(level="INFO")

        bind_job("analysis_7c1d", "analysis").info("Completed after 1 attempt(s)")
        get_logger("meeting_jobs.engine.cache").info("Evicted 2 cache entries")

        lines = capsys.readouterr().err.splitlines()
        assert "job_id=analysis_7c1d" in lines[0]
        assert "meeting_jobs.jobs" in lines[0]
        assert "job_id=" not in lines[1]
        assert "meeting_jobs.engine.cache" in lines[1]

    def test_file_logging_from_config(self, tmp_path: Path) -> None:
        log_file = tmp_path / "jobs.log"
        setup_logging(level="INFO", config=LoggingConfig(log_file=str(log_file)))

        bind_job("analysis_1", "analysis").debug("Processing attempt 1/3")
        time.sleep(0.1)

        content = log_file.read_text()
        assert "Processing attempt 1/3" in content
        assert "analysis_1" in content


class TestStdlibRouting:
    """Tests for forwarding stdlib records into loguru."""

    def test_engine_stdlib_loggers_routed(self, captured: list[str]) -> None:
        """Pool and timer modules log through stdlib; records reach loguru."""
        logging.getLogger("meeting_jobs.engine.pool").warning("Executor raised for %s", "job_1")

        record = next(msg for msg in captured if "Executor raised for job_1" in msg)
        assert "meeting_jobs.engine.pool" in record

    def test_sqlalchemy_quiet_at_info(self) -> None:
        setup_logging(level="INFO")
        assert logging.getLogger("sqlalchemy.engine").level >= logging.WARNING

    def test_sqlalchemy_echo_when_debugging(self) -> None:
        setup_logging(level="DEBUG")
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO

    def test_aiosqlite_quiet_below_trace(self) -> None:
        setup_logging(level="DEBUG")
        assert logging.getLogger("aiosqlite").level == logging.WARNING


class TestContextBinding:
    """Tests for context binding helpers."""

    def test_get_logger_binds_name(self, captured: list[str]) -> None:
        get_logger("meeting_jobs.engine.cache").info("Evicted entries")
        assert any("meeting_jobs.engine.cache" in msg for msg in captured)

    def test_bind_job(self, captured: list[str]) -> None:
        bind_job("analysis_3f9c", "analysis").info("Processing attempt 1/3")

        output = "".join(captured)
        assert "analysis_3f9c" in output
        assert "'kind': 'analysis'" in output

    def test_bind_subject(self, captured: list[str]) -> None:
        bind_subject("U42", "issue_creation").warning("Rate limit exceeded")

        output = "".join(captured)
        assert "U42" in output
        assert "issue_creation" in output

    def test_batch_context_scoped_to_block(self, captured: list[str]) -> None:
        with batch_context("batch_9f"):
            bind_job("analysis_1", "analysis").info("Inside batch")
        bind_job("analysis_2", "analysis").info("Outside batch")

        inside = next(msg for msg in captured if "Inside batch" in msg)
        outside = next(msg for msg in captured if "Outside batch" in msg)
        assert "batch_9f" in inside
        assert "batch_9f" not in outside

    @pytest.mark.asyncio
    async def test_batch_context_follows_tasks(self, captured: list[str]) -> None:
        async def member() -> None:
            await asyncio.sleep(0)
            logging.getLogger("meeting_jobs.engine.pool").info("member finished")

        with batch_context("batch_42"):
            task = asyncio.create_task(member())
        await task

        record = next(msg for msg in captured if "member finished" in msg)
        assert "batch_42" in record


class TestResetLogging:
    """Tests for reset_logging function."""

    def test_reset_removes_sinks(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(level="INFO")
        reset_logging()

        get_logger("engine").warning("after reset")

        assert "after reset" not in capsys.readouterr().err
