"""Unit tests for TimerService."""

import asyncio

import pytest

from meeting_jobs.engine.timers import TimerService


class TestSchedule:
    """Tests for scheduling and firing."""

    @pytest.mark.asyncio
    async def test_sync_callback_fires_once(self) -> None:
        timers = TimerService()
        calls: list[str] = []

        handle = timers.schedule(0.01, lambda: calls.append("fired"), name="t")
        assert handle.pending
        assert timers.pending_count == 1

        await asyncio.sleep(0.05)

        assert calls == ["fired"]
        assert handle.fired
        assert not handle.pending
        assert timers.pending_count == 0
        assert timers.total_fired == 1

    @pytest.mark.asyncio
    async def test_coroutine_callback_is_awaited(self) -> None:
        timers = TimerService()
        done = asyncio.Event()

        async def callback() -> None:
            await asyncio.sleep(0)
            done.set()

        timers.schedule(0.01, callback)

        await asyncio.wait_for(done.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_does_not_fire_early(self) -> None:
        timers = TimerService()
        loop = asyncio.get_running_loop()
        fired_at: list[float] = []
        start = loop.time()

        timers.schedule(0.05, lambda: fired_at.append(loop.time()))
        await asyncio.sleep(0.1)

        assert fired_at
        assert fired_at[0] - start >= 0.05 - 1e-3

    @pytest.mark.asyncio
    async def test_negative_delay_is_immediate(self) -> None:
        timers = TimerService()
        calls: list[int] = []

        handle = timers.schedule(-5, lambda: calls.append(1))
        await asyncio.sleep(0.01)

        assert handle.delay == 0.0
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self) -> None:
        """A failing callback does not affect other timers."""
        timers = TimerService()
        calls: list[int] = []

        def boom() -> None:
            raise RuntimeError("boom")

        async def async_boom() -> None:
            raise RuntimeError("async boom")

        timers.schedule(0.0, boom)
        timers.schedule(0.0, async_boom)
        timers.schedule(0.01, lambda: calls.append(1))
        await asyncio.sleep(0.05)

        assert calls == [1]
        assert timers.total_fired == 3


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_fire(self) -> None:
        timers = TimerService()
        calls: list[int] = []

        handle = timers.schedule(0.01, lambda: calls.append(1))
        assert handle.cancel() is True
        await asyncio.sleep(0.05)

        assert calls == []
        assert handle.cancelled
        assert handle.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_after_fire_is_noop(self) -> None:
        timers = TimerService()

        handle = timers.schedule(0.0, lambda: None)
        await asyncio.sleep(0.01)

        assert handle.cancel() is False
        assert handle.fired

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        timers = TimerService()
        calls: list[int] = []

        for i in range(3):
            timers.schedule(0.01, lambda i=i: calls.append(i))

        assert timers.cancel_all() == 3
        await asyncio.sleep(0.05)

        assert calls == []
        assert timers.pending_count == 0

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_running_callbacks(self) -> None:
        timers = TimerService()
        finished = asyncio.Event()

        async def slow() -> None:
            await asyncio.sleep(0.02)
            finished.set()

        timers.schedule(0.0, slow)
        timers.schedule(10.0, lambda: None)
        await asyncio.sleep(0.005)

        await timers.shutdown(timeout=1.0)

        assert finished.is_set()
        assert timers.pending_count == 0
