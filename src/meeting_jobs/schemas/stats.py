"""Statistics snapshots exposed for administration."""

from typing import Any

from pydantic import BaseModel, Field, computed_field

from .enums import JobKind


class PoolStats(BaseModel):
    """Point-in-time state of one concurrency pool."""

    kind: JobKind
    active: int = Field(ge=0)
    waiting: int = Field(ge=0, description="Jobs not yet dispatched because the pool is saturated")
    max_parallelism: int = Field(ge=1)
    dispatched: int = 0
    finished: int = 0
    batches: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def utilization(self) -> float:
        """Fraction of slots in use (0.0 to 1.0)."""
        return self.active / self.max_parallelism


class CacheStats(BaseModel):
    """Counters for the result cache."""

    size: int = 0
    max_entries: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hit_rate(self) -> float:
        """Hits over lookups (0.0 when nothing was looked up)."""
        lookups = self.hits + self.misses
        if lookups == 0:
            return 0.0
        return self.hits / lookups


class SchedulerStats(BaseModel):
    """Aggregate view returned by ``JobScheduler.stats()``."""

    queue_depth: int = Field(ge=0, description="Jobs accumulated or waiting for a pool slot")
    pending_batching: int = Field(ge=0)
    pending_retry: int = Field(ge=0)
    pool_utilization: dict[JobKind, float] = Field(default_factory=dict)
    cache_hit_rate: float = 0.0
    pools: dict[JobKind, PoolStats] = Field(default_factory=dict)
    cache: CacheStats = Field(default_factory=CacheStats)
    total_submitted: int = 0
    total_cached: int = 0
    total_rate_limited: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_cancelled: int = 0
    total_retries: int = 0
    total_write_failures: int = Field(
        default=0, description="Job state changes abandoned after the store kept rejecting them"
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")
