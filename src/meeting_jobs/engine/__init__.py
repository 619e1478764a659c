"""Job scheduling and resource-governance engine.

This module provides:
- RateLimiter: sliding-window, cost-weighted admission control
- ResultCache: fingerprint-keyed cache with TTL and approximate LRU eviction
- RetryPolicy: exponential backoff with jitter
- TimerService: delayed callbacks for retries and batch flushes
- ConcurrencyPool: bounded parallelism per job kind
- BatchAccumulator: similarity batching of queued jobs
- JobScheduler: the orchestrator tying them together
"""

from .batch import Batch, BatchAccumulator, are_compatible, group_batches, size_ratio
from .cache import CacheEntry, ResultCache, fingerprint
from .pool import BatchResult, ConcurrencyPool
from .rate_limiter import RATE_KEY_PREFIX, RateLimiter, rate_key
from .retry import RetryPolicy
from .routing import choose_route, compute_priority, is_low_latency
from .scheduler import JobScheduler
from .timers import TimerHandle, TimerService

__all__ = [
    # Batching
    "Batch",
    "BatchAccumulator",
    "are_compatible",
    "group_batches",
    "size_ratio",
    # Cache
    "CacheEntry",
    "ResultCache",
    "fingerprint",
    # Pool
    "BatchResult",
    "ConcurrencyPool",
    # Rate limiting
    "RATE_KEY_PREFIX",
    "RateLimiter",
    "rate_key",
    # Retry
    "RetryPolicy",
    # Routing
    "choose_route",
    "compute_priority",
    "is_low_latency",
    # Scheduler
    "JobScheduler",
    # Timers
    "TimerHandle",
    "TimerService",
]
