"""Similarity batching of pending jobs.

Jobs of the same kind whose payloads are compatible are grouped so a
single downstream preparation cost (one compact prompt prefix, one
tracker session) is shared by several jobs.

Compatibility is deterministic and symmetric: identical classifier
fields AND a payload-size ratio (min/max) at or above the similarity
threshold.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from meeting_jobs.config import BatchConfig, get_settings
from meeting_jobs.logging import get_logger
from meeting_jobs.schemas.enums import JobKind
from meeting_jobs.schemas.job import Job

from .timers import TimerHandle, TimerService

logger = get_logger(__name__)

# Loop timers may fire up to one clock tick early
_CLOCK_TOLERANCE = 1e-3


def size_ratio(a: int, b: int) -> float:
    """min/max of two sizes (1.0 when both are zero)."""
    larger = max(a, b)
    if larger == 0:
        return 1.0
    return min(a, b) / larger


def are_compatible(a: Job, b: Job, threshold: float) -> bool:
    """Whether two jobs may share a batch."""
    if a.kind != b.kind:
        return False
    if a.payload.classifiers != b.payload.classifiers:
        return False
    return size_ratio(a.payload.size, b.payload.size) >= threshold


@dataclass
class Batch:
    """A transient group of compatible jobs dispatched together (never persisted)."""

    kind: JobKind
    jobs: list[Job]
    id: str = field(default_factory=lambda: f"batch_{uuid.uuid4().hex[:12]}")

    def __len__(self) -> int:
        return len(self.jobs)

    @property
    def job_ids(self) -> list[str]:
        return [job.id for job in self.jobs]


def group_batches(jobs: Sequence[Job], max_size: int, threshold: float) -> list[list[Job]]:
    """Greedy grouping.

    The first ungrouped job seeds a batch; the remaining ungrouped jobs
    are scanned in order and each one compatible with the seed joins
    until the batch is full. Repeats until every job is grouped.

    Args:
        jobs: Jobs in accumulation order (oldest first)
        max_size: Maximum jobs per batch
        threshold: Minimum size ratio for compatibility

    Returns:
        Groups in seed order
    """
    grouped: set[int] = set()
    groups: list[list[Job]] = []
    for i, seed in enumerate(jobs):
        if i in grouped:
            continue
        grouped.add(i)
        group = [seed]
        for j in range(i + 1, len(jobs)):
            if len(group) >= max_size:
                break
            if j in grouped:
                continue
            if are_compatible(seed, jobs[j], threshold):
                grouped.add(j)
                group.append(jobs[j])
        groups.append(group)
    return groups


@dataclass
class _Pending:
    job: Job
    accumulated_at: float
    seq: int


BatchReleaseCallback = Callable[[Batch], None]


class BatchAccumulator:
    """Collects queued jobs per kind and releases compatible batches.

    A batch is released when it reaches ``max_batch_size`` or when the
    flush interval has elapsed since its oldest member was accumulated,
    whichever comes first. A lone job with no similar peers is
    therefore released after at most one flush interval.

    Usage:
        accumulator = BatchAccumulator(timers, release=dispatch_batch)
        accumulator.add(job)
        ...
        accumulator.remove(job.id)   # cancellation before release
        accumulator.flush()          # release everything now
    """

    def __init__(
        self,
        timers: TimerService,
        release: BatchReleaseCallback,
        config: BatchConfig | None = None,
    ) -> None:
        """Initialize the accumulator.

        Args:
            timers: Service used for flush timers
            release: Called with each released batch
            config: Size, interval and similarity settings (uses settings if not provided)
        """
        self._timers = timers
        self._release = release
        self._config = config or get_settings().batching
        self._pending: dict[JobKind, list[_Pending]] = {}
        self._flush_timers: dict[JobKind, TimerHandle] = {}
        self._flush_deadlines: dict[JobKind, float] = {}
        self._seq = itertools.count()

        # Statistics
        self._total_batches = 0
        self._total_released_jobs = 0

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    @property
    def _interval(self) -> float:
        return self._config.flush_interval_ms / 1000.0

    # -------------------------------------------------------------------------
    # Accumulation
    # -------------------------------------------------------------------------
    def add(self, job: Job) -> None:
        """Accumulate a Queued job; releases any batch that became full."""
        entries = self._pending.setdefault(job.kind, [])
        entries.append(_Pending(job, self._now(), next(self._seq)))

        for group in self._groups(job.kind):
            if len(group) >= self._config.max_batch_size:
                self._emit(job.kind, group, reason="full")

        self._reschedule(job.kind)

    def remove(self, job_id: str) -> bool:
        """Withdraw a job before release.

        Returns:
            True if the job was pending here
        """
        for kind, entries in self._pending.items():
            for entry in entries:
                if entry.job.id == job_id:
                    entries.remove(entry)
                    self._reschedule(kind)
                    return True
        return False

    def flush(self, kind: JobKind | None = None) -> list[Batch]:
        """Release every pending job now, grouped into batches."""
        kinds = [kind] if kind is not None else list(self._pending)
        released: list[Batch] = []
        for k in kinds:
            for group in self._groups(k):
                released.append(self._emit(k, group, reason="flush"))
            self._reschedule(k)
        return released

    # -------------------------------------------------------------------------
    # Grouping & Release
    # -------------------------------------------------------------------------
    def _groups(self, kind: JobKind) -> list[list[_Pending]]:
        entries = sorted(self._pending.get(kind, []), key=lambda e: e.seq)
        by_id = {entry.job.id: entry for entry in entries}
        groups = group_batches(
            [entry.job for entry in entries],
            self._config.max_batch_size,
            self._config.similarity_threshold,
        )
        return [[by_id[job.id] for job in group] for group in groups]

    def _emit(self, kind: JobKind, group: list[_Pending], *, reason: str) -> Batch:
        members = {id(entry) for entry in group}
        self._pending[kind] = [e for e in self._pending[kind] if id(e) not in members]

        batch = Batch(kind=kind, jobs=[entry.job for entry in group])
        self._total_batches += 1
        self._total_released_jobs += len(batch)
        logger.info(
            "Released {} batch {} with {} job(s) ({})",
            kind.value,
            batch.id,
            len(batch),
            reason,
        )
        self._release(batch)
        return batch

    def _on_flush_timer(self, kind: JobKind) -> None:
        self._flush_timers.pop(kind, None)
        now = self._now()
        for group in self._groups(kind):
            oldest = min(entry.accumulated_at for entry in group)
            if now - oldest + _CLOCK_TOLERANCE >= self._interval:
                self._emit(kind, group, reason="interval")
        self._reschedule(kind)

    def _reschedule(self, kind: JobKind) -> None:
        """Keep one flush timer per kind aimed at the oldest pending job."""
        entries = self._pending.get(kind, [])
        current = self._flush_timers.get(kind)
        if not entries:
            if current is not None:
                current.cancel()
                del self._flush_timers[kind]
            return

        deadline = min(entry.accumulated_at for entry in entries) + self._interval
        if current is not None and current.pending:
            # An earlier timer just reschedules when it fires
            if self._flush_deadlines[kind] <= deadline:
                return
            current.cancel()

        self._flush_deadlines[kind] = deadline
        self._flush_timers[kind] = self._timers.schedule(
            max(0.0, deadline - self._now()),
            lambda: self._on_flush_timer(kind),
            name=f"flush:{kind.value}",
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    @property
    def pending_count(self) -> int:
        """Total jobs waiting to be batched."""
        return sum(len(entries) for entries in self._pending.values())

    def pending_for(self, kind: JobKind) -> int:
        return len(self._pending.get(kind, []))

    def pending_ids(self) -> Iterable[str]:
        for entries in self._pending.values():
            for entry in entries:
                yield entry.job.id

    def get_stats(self) -> dict[str, int]:
        """Get accumulator statistics."""
        return {
            "pending": self.pending_count,
            "total_batches": self._total_batches,
            "total_released_jobs": self._total_released_jobs,
        }
