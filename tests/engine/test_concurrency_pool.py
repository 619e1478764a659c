"""Unit tests for ConcurrencyPool.

These tests verify bounded parallelism, FIFO dispatch,
batch fan-out, withdrawal of waiting jobs, and join/cancel.
"""

import asyncio

import pytest

from meeting_jobs.engine.batch import Batch
from meeting_jobs.engine.pool import BatchResult, ConcurrencyPool
from meeting_jobs.schemas import Job, JobKind
from tests.factories import make_job, make_metrics_payload


class RecordingExecutor:
    """Executor that tracks concurrency and can be held open."""

    def __init__(self, delay: float = 0.01, fail_ids: set[str] | None = None) -> None:
        self.delay = delay
        self.fail_ids = fail_ids or set()
        self.started: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self, job: Job) -> None:
        self.started.append(job.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
            if job.id in self.fail_ids:
                raise RuntimeError(f"executor failed for {job.id}")
        finally:
            self.in_flight -= 1


class TestConcurrencyBound:
    """Tests for the parallelism limit."""

    @pytest.mark.asyncio
    async def test_never_exceeds_max_parallelism(self) -> None:
        executor = RecordingExecutor()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 2, executor)

        for _ in range(7):
            pool.run(make_job())

        assert pool.active_count == 2
        assert pool.waiting_count == 5
        assert await pool.join(timeout=2.0)

        assert executor.max_in_flight == 2
        assert len(executor.started) == 7
        assert pool.is_idle

    @pytest.mark.asyncio
    async def test_fifo_dispatch_order(self) -> None:
        executor = RecordingExecutor()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, executor)
        jobs = [make_job() for _ in range(4)]

        for job in jobs:
            pool.run(job)
        await pool.join(timeout=2.0)

        assert executor.started == [job.id for job in jobs]

    @pytest.mark.asyncio
    async def test_slot_refilled_when_job_finishes(self) -> None:
        """A waiting job starts as soon as capacity frees up."""
        executor = RecordingExecutor(delay=0)
        executor.gate = asyncio.Event()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, executor)
        first, second = make_job(), make_job()

        pool.run(first)
        pool.run(second)
        await asyncio.sleep(0)
        assert executor.started == [first.id]

        executor.gate.set()
        await pool.join(timeout=1.0)
        assert executor.started == [first.id, second.id]

    def test_rejects_zero_parallelism(self) -> None:
        with pytest.raises(ValueError, match="max_parallelism"):
            ConcurrencyPool(JobKind.ANALYSIS, 0, RecordingExecutor())

    @pytest.mark.asyncio
    async def test_rejects_other_kind(self) -> None:
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, RecordingExecutor())
        with pytest.raises(ValueError, match="cannot run"):
            pool.run(make_job(make_metrics_payload()))


class TestBatches:
    """Tests for batch fan-out and results."""

    @pytest.mark.asyncio
    async def test_batch_fans_out_across_slots(self) -> None:
        executor = RecordingExecutor()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 3, executor)
        batch = Batch(kind=JobKind.ANALYSIS, jobs=[make_job() for _ in range(5)])
        results: list[BatchResult[Job]] = []

        pool.run(batch, on_complete=results.append)
        assert pool.active_count == 3
        await pool.join(timeout=2.0)

        assert executor.max_in_flight == 3
        assert len(results) == 1
        assert results[0].all_succeeded
        assert results[0].success_count == 5
        assert pool.get_stats().batches == 1

    @pytest.mark.asyncio
    async def test_batch_result_collects_failures(self) -> None:
        jobs = [make_job() for _ in range(3)]
        executor = RecordingExecutor(fail_ids={jobs[1].id})
        pool = ConcurrencyPool(JobKind.ANALYSIS, 2, executor)
        results: list[BatchResult[Job]] = []

        pool.run(Batch(kind=JobKind.ANALYSIS, jobs=jobs), on_complete=results.append)
        await pool.join(timeout=2.0)

        result = results[0]
        assert result.total_count == 3
        assert result.failure_count == 1
        assert result.failed[0][0].id == jobs[1].id
        assert isinstance(result.failed[0][1], RuntimeError)

    @pytest.mark.asyncio
    async def test_on_job_done_fires_once_per_job(self) -> None:
        done: list[tuple[str, bool]] = []
        jobs = [make_job() for _ in range(3)]
        executor = RecordingExecutor(fail_ids={jobs[0].id})
        pool = ConcurrencyPool(
            JobKind.ANALYSIS,
            2,
            executor,
            on_job_done=lambda job, err: done.append((job.id, err is None)),
        )

        pool.run(Batch(kind=JobKind.ANALYSIS, jobs=jobs))
        await pool.join(timeout=2.0)

        assert sorted(done) == sorted(
            [(jobs[0].id, False), (jobs[1].id, True), (jobs[2].id, True)]
        )


class TestRemove:
    """Tests for withdrawing waiting jobs."""

    @pytest.mark.asyncio
    async def test_remove_waiting_job(self) -> None:
        executor = RecordingExecutor()
        executor.gate = asyncio.Event()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, executor)
        running, waiting = make_job(), make_job()

        pool.run(running)
        pool.run(waiting)

        assert pool.remove(waiting.id) is True
        assert pool.remove(running.id) is False
        assert pool.waiting_count == 0

        executor.gate.set()
        await pool.join(timeout=1.0)
        assert executor.started == [running.id]

    @pytest.mark.asyncio
    async def test_removing_last_pending_member_completes_batch(self) -> None:
        executor = RecordingExecutor()
        executor.gate = asyncio.Event()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, executor)
        jobs = [make_job(), make_job()]
        results: list[BatchResult[Job]] = []

        pool.run(Batch(kind=JobKind.ANALYSIS, jobs=jobs), on_complete=results.append)
        pool.remove(jobs[1].id)
        executor.gate.set()
        await pool.join(timeout=1.0)

        assert len(results) == 1
        assert results[0].total_count == 1


class TestLifecycle:
    """Tests for join and cancel_all."""

    @pytest.mark.asyncio
    async def test_join_times_out(self) -> None:
        executor = RecordingExecutor()
        executor.gate = asyncio.Event()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, executor)
        pool.run(make_job())

        assert await pool.join(timeout=0.02) is False

        assert await pool.cancel_all() == 1
        assert pool.is_idle

    @pytest.mark.asyncio
    async def test_join_on_idle_pool(self) -> None:
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, RecordingExecutor())
        assert await pool.join(timeout=0.01) is True

    @pytest.mark.asyncio
    async def test_cancel_all_drops_waiting(self) -> None:
        executor = RecordingExecutor()
        executor.gate = asyncio.Event()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 1, executor)
        for _ in range(3):
            pool.run(make_job())
        await asyncio.sleep(0)

        cancelled = await pool.cancel_all()

        assert cancelled == 1
        assert pool.waiting_count == 0
        assert pool.active_count == 0
        assert len(executor.started) == 1

    @pytest.mark.asyncio
    async def test_stats_and_utilization(self) -> None:
        executor = RecordingExecutor()
        executor.gate = asyncio.Event()
        pool = ConcurrencyPool(JobKind.ANALYSIS, 4, executor)
        for _ in range(2):
            pool.run(make_job())

        stats = pool.get_stats()
        assert stats.active == 2
        assert stats.utilization == pytest.approx(0.5)
        assert pool.utilization == pytest.approx(0.5)

        executor.gate.set()
        await pool.join(timeout=1.0)
        assert pool.get_stats().finished == 2
