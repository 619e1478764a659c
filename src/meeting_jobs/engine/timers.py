"""Delayed-callback service for retry re-submission and batch flushes.

Timers are realized with ``loop.call_later`` so no worker is ever
blocked waiting for a delay. Coroutine callbacks are wrapped in tasks
that are held until they finish.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None] | None]


@dataclass
class TimerHandle:
    """A scheduled callback that can be cancelled until it fires."""

    id: str
    delay: float
    name: str = ""
    fired: bool = field(default=False, compare=False)
    cancelled: bool = field(default=False, compare=False)
    _handle: asyncio.TimerHandle | None = field(default=None, repr=False, compare=False)

    @property
    def pending(self) -> bool:
        """Whether the callback can still fire."""
        return not (self.fired or self.cancelled)

    def cancel(self) -> bool:
        """Cancel the timer.

        Returns:
            True if the timer was pending and is now cancelled
        """
        if not self.pending:
            return False
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        return True


class TimerService:
    """Schedules callbacks to run once after a delay.

    Usage:
        timers = TimerService()
        handle = timers.schedule(30.0, lambda: requeue(job_id), name="retry")
        ...
        handle.cancel()  # before it fires
        await timers.shutdown()

    Each timer fires at most once, never before its delay has elapsed.
    """

    def __init__(self) -> None:
        self._timers: dict[str, TimerHandle] = {}
        self._active_tasks: set[asyncio.Task[None]] = set()  # Prevent task GC
        self._total_fired = 0

    def schedule(
        self,
        delay: float,
        callback: TimerCallback,
        *,
        name: str = "",
    ) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds.

        Args:
            delay: Seconds to wait (negative values are treated as 0)
            callback: Plain function or coroutine function taking no arguments
            name: Label used in logs

        Returns:
            Handle that can cancel the timer
        """
        loop = asyncio.get_running_loop()
        delay = max(0.0, delay)
        timer = TimerHandle(id=uuid.uuid4().hex, delay=delay, name=name)
        timer._handle = loop.call_later(delay, self._fire, timer, callback)
        self._timers[timer.id] = timer

        logger.debug("Scheduled timer %s (%s) in %.3fs", timer.id[:8], name or "-", delay)
        return timer

    def _fire(self, timer: TimerHandle, callback: TimerCallback) -> None:
        self._timers.pop(timer.id, None)
        if timer.cancelled:
            return
        timer.fired = True
        self._total_fired += 1

        try:
            outcome = callback()
        except Exception:
            logger.exception("Timer %s (%s) callback failed", timer.id[:8], timer.name or "-")
            return

        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(self._await_callback(timer, outcome))
            self._active_tasks.add(task)
            task.add_done_callback(self._active_tasks.discard)

    async def _await_callback(self, timer: TimerHandle, outcome: Awaitable[Any]) -> None:
        try:
            await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer %s (%s) callback failed", timer.id[:8], timer.name or "-")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def cancel_all(self) -> int:
        """Cancel every pending timer.

        Returns:
            Number of timers cancelled
        """
        cancelled = sum(1 for timer in list(self._timers.values()) if timer.cancel())
        self._timers.clear()
        if cancelled:
            logger.info("Cancelled %d pending timers", cancelled)
        return cancelled

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel pending timers and wait for running callbacks."""
        self.cancel_all()
        if self._active_tasks:
            done, pending = await asyncio.wait(list(self._active_tasks), timeout=timeout)
            for task in pending:
                task.cancel()

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    @property
    def pending_count(self) -> int:
        """Number of timers that have not fired or been cancelled."""
        return len(self._timers)

    @property
    def total_fired(self) -> int:
        """Number of timers that fired since creation."""
        return self._total_fired
