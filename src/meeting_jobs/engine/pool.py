"""Bounded-parallelism executor for one resource class.

This module provides a ConcurrencyPool that runs jobs and batches of
jobs through an async executor while never exceeding its configured
number of concurrently executing jobs.

Features:
- Capacity counted in job slots (a batch fans out across free slots)
- FIFO waiting queue of units (single jobs or batches)
- Per-job completion callback fired exactly once
- Per-unit BatchResult once every member finished
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from meeting_jobs.logging import batch_context
from meeting_jobs.schemas.enums import JobKind
from meeting_jobs.schemas.job import Job
from meeting_jobs.schemas.stats import PoolStats

from .batch import Batch

logger = logging.getLogger(__name__)

T = TypeVar("T")

JobExecutor = Callable[[Job], Awaitable[Any]]
JobDoneCallback = Callable[[Job, BaseException | None], None]


@dataclass
class BatchResult(Generic[T]):
    """Result of running one unit (a batch or a single job)."""

    succeeded: list[T] = field(default_factory=list)
    failed: list[tuple[T, BaseException]] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        """Total number of items processed."""
        return len(self.succeeded) + len(self.failed)

    @property
    def success_count(self) -> int:
        """Number of successful items."""
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        """Number of failed items."""
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        """Whether all items succeeded."""
        return len(self.failed) == 0


UnitDoneCallback = Callable[[BatchResult[Job]], None]


@dataclass
class _WorkUnit:
    """A batch or job waiting for (or holding) pool slots."""

    id: str
    pending: deque[Job]
    size: int
    on_complete: UnitDoneCallback | None = None
    is_batch: bool = False
    result: BatchResult[Job] = field(default_factory=BatchResult)

    @property
    def finished(self) -> bool:
        return self.result.total_count == self.size


class ConcurrencyPool:
    """Runs jobs of one kind with at most ``max_parallelism`` in flight.

    Usage:
        pool = ConcurrencyPool(JobKind.ANALYSIS, 3, execute_job)
        pool.run(job)                      # fire-and-forget
        pool.run(batch, on_complete=cb)    # cb(BatchResult) when all members finish

        await pool.join(timeout=30.0)

    When a slot frees up, the head of the waiting queue is started at
    once, so capacity is never idle while work is waiting. A batch at
    the head may be started partially; its remaining members keep the
    head position so FIFO order across units is preserved.
    """

    def __init__(
        self,
        kind: JobKind,
        max_parallelism: int,
        executor: JobExecutor,
        on_job_done: JobDoneCallback | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            kind: Resource class this pool serves
            max_parallelism: Maximum concurrently executing jobs (>= 1)
            executor: Coroutine function running one job end to end
            on_job_done: Called once per job with the error (or None)
        """
        if max_parallelism < 1:
            raise ValueError(f"max_parallelism must be >= 1, got {max_parallelism}")
        self.kind = kind
        self._max_parallelism = max_parallelism
        self._executor = executor
        self._on_job_done = on_job_done

        self._waiting: deque[_WorkUnit] = deque()
        self._active: dict[str, asyncio.Task[None]] = {}
        self._active_tasks: set[asyncio.Task[None]] = set()  # Prevent task GC
        self._idle = asyncio.Event()
        self._idle.set()

        # Statistics
        self._total_dispatched = 0
        self._total_finished = 0
        self._total_batches = 0

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------
    def run(self, unit: Job | Batch, on_complete: UnitDoneCallback | None = None) -> None:
        """Queue a job or batch and start as much of it as capacity allows.

        Args:
            unit: A single job or a batch of jobs of this pool's kind
            on_complete: Called with the unit's BatchResult once all members finish
        """
        jobs = list(unit.jobs) if isinstance(unit, Batch) else [unit]
        for job in jobs:
            if job.kind != self.kind:
                raise ValueError(f"{self.kind.value} pool cannot run {job.kind.value} job {job.id}")

        if isinstance(unit, Batch):
            self._total_batches += 1
            work = _WorkUnit(unit.id, deque(jobs), len(jobs), on_complete, is_batch=True)
        else:
            work = _WorkUnit(unit.id, deque(jobs), 1, on_complete)

        if not jobs:
            self._complete_unit(work)
            return

        self._waiting.append(work)
        self._idle.clear()
        self._dispatch()

    def remove(self, job_id: str) -> bool:
        """Withdraw a job that has not started yet.

        Returns:
            True if the job was waiting and has been removed
        """
        for work in list(self._waiting):
            for job in work.pending:
                if job.id == job_id:
                    work.pending.remove(job)
                    work.size -= 1
                    if not work.pending:
                        self._waiting.remove(work)
                        if work.finished:
                            self._complete_unit(work)
                    self._check_idle()
                    return True
        return False

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------
    def _dispatch(self) -> None:
        """Start waiting jobs until the pool is saturated."""
        while self._waiting and len(self._active) < self._max_parallelism:
            work = self._waiting[0]
            job = work.pending.popleft()
            if not work.pending:
                self._waiting.popleft()

            if work.is_batch:
                with batch_context(work.id):
                    task = asyncio.create_task(self._execute(work, job))
            else:
                task = asyncio.create_task(self._execute(work, job))
            self._active[job.id] = task
            self._active_tasks.add(task)
            task.add_done_callback(self._active_tasks.discard)
            self._total_dispatched += 1

            logger.debug(
                "Dispatched %s on %s pool (active=%d/%d, waiting=%d)",
                job.id,
                self.kind.value,
                len(self._active),
                self._max_parallelism,
                self.waiting_count,
            )

    async def _execute(self, work: _WorkUnit, job: Job) -> None:
        error: BaseException | None = None
        try:
            await self._executor(job)
        except asyncio.CancelledError as e:
            error = e
            raise
        except Exception as e:
            logger.exception("Executor raised for %s", job.id)
            error = e
        finally:
            self._active.pop(job.id, None)
            self._total_finished += 1
            if error is None:
                work.result.succeeded.append(job)
            else:
                work.result.failed.append((job, error))

            self._notify_job(job, error)
            if work.finished and not work.pending:
                self._complete_unit(work)

            self._dispatch()
            self._check_idle()

    def _notify_job(self, job: Job, error: BaseException | None) -> None:
        if self._on_job_done is None:
            return
        try:
            self._on_job_done(job, error)
        except Exception:
            logger.exception("Job completion callback failed for %s", job.id)

    def _complete_unit(self, work: _WorkUnit) -> None:
        if work.on_complete is None:
            return
        try:
            work.on_complete(work.result)
        except Exception:
            logger.exception("Unit completion callback failed for %s", work.id)

    def _check_idle(self) -> None:
        if not self._active and not self._waiting:
            self._idle.set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def join(self, timeout: float | None = None) -> bool:
        """Wait until no job is active or waiting.

        Returns:
            True if the pool drained, False on timeout
        """
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def cancel_all(self) -> int:
        """Drop waiting work and cancel in-flight tasks.

        Returns:
            Number of in-flight tasks cancelled
        """
        self._waiting.clear()
        tasks = list(self._active.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._check_idle()
        return len(tasks)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    @property
    def max_parallelism(self) -> int:
        return self._max_parallelism

    @property
    def active_count(self) -> int:
        """Number of jobs currently executing."""
        return len(self._active)

    @property
    def waiting_count(self) -> int:
        """Number of jobs not yet started."""
        return sum(len(work.pending) for work in self._waiting)

    @property
    def is_idle(self) -> bool:
        """True if no pending or in-flight jobs."""
        return self._idle.is_set()

    @property
    def utilization(self) -> float:
        """Fraction of slots in use."""
        return len(self._active) / self._max_parallelism

    def get_stats(self) -> PoolStats:
        """Get pool statistics."""
        return PoolStats(
            kind=self.kind,
            active=len(self._active),
            waiting=self.waiting_count,
            max_parallelism=self._max_parallelism,
            dispatched=self._total_dispatched,
            finished=self._total_finished,
            batches=self._total_batches,
        )
