"""Fingerprint-keyed result cache with TTL and bounded capacity.

Freshness is checked when an entry is read: an entry older than the
TTL is a miss and is removed on the spot. When the cache is full, one
eviction pass drops a fixed fraction of the least-recently-accessed
entries before the new one is inserted (approximate LRU).
"""

from __future__ import annotations

import copy
import hashlib
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from meeting_jobs.clock import Clock, utc_now
from meeting_jobs.config import CacheConfig, get_settings
from meeting_jobs.logging import get_logger
from meeting_jobs.schemas.enums import JobKind
from meeting_jobs.schemas.payloads import PayloadBase
from meeting_jobs.schemas.stats import CacheStats

logger = get_logger(__name__)


def fingerprint(kind: JobKind, payload: PayloadBase) -> str:
    """Deterministic cache key for a payload.

    Built from the kind and the payload's normalized fields, so payloads
    differing only in whitespace share a fingerprint.
    """
    digest = hashlib.sha256()
    digest.update(kind.value.encode("utf-8"))
    for part in payload.fingerprint_parts():
        digest.update(b"\x1f")
        digest.update(part.encode("utf-8"))
    return digest.hexdigest()


@dataclass
class CacheEntry:
    """A cached successful result."""

    result: dict[str, Any]
    created_at: datetime
    last_accessed: datetime


class ResultCache:
    """In-memory cache of successful downstream results.

    Usage:
        cache = ResultCache()
        key = fingerprint(JobKind.ANALYSIS, payload)
        if (hit := cache.get(key)) is not None:
            return hit
        ...
        cache.put(key, result)
    """

    def __init__(self, config: CacheConfig | None = None, clock: Clock = utc_now) -> None:
        """Initialize the cache.

        Args:
            config: TTL and capacity settings (uses settings if not provided)
            clock: Time source
        """
        self._config = config or get_settings().cache
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def _is_expired(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.created_at > self._config.ttl

    def get(self, key: str) -> dict[str, Any] | None:
        """Look up a fresh result.

        Returns:
            A copy of the cached result, or None on a miss (absent or expired)
        """
        entry = self._entries.get(key)
        now = self._clock()
        if entry is None:
            self._misses += 1
            return None
        if self._is_expired(entry, now):
            del self._entries[key]
            self._expirations += 1
            self._misses += 1
            return None

        entry.last_accessed = now
        self._hits += 1
        return copy.deepcopy(entry.result)

    def put(self, key: str, result: dict[str, Any]) -> None:
        """Store a successful result.

        Runs an eviction pass first if the cache is at capacity.
        """
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self._config.max_entries:
            self._evict()
        self._entries[key] = CacheEntry(
            result=copy.deepcopy(result), created_at=now, last_accessed=now
        )

    def _evict(self) -> int:
        count = max(1, math.floor(self._config.max_entries * self._config.eviction_fraction))
        victims = sorted(self._entries.items(), key=lambda item: item[1].last_accessed)[:count]
        for key, _ in victims:
            del self._entries[key]
        self._evictions += len(victims)
        logger.debug("Evicted {} cache entries ({} remain)", len(victims), len(self._entries))
        return len(victims)

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry (statistics are kept)."""
        self._entries.clear()

    def purge_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        if expired:
            logger.debug("Purged {} expired cache entries", len(expired))
        return len(expired)

    def is_cacheable(self, kind: JobKind) -> bool:
        """Whether results of ``kind`` are cached at all."""
        return kind in self._config.cacheable_kinds

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def hit_rate(self) -> float:
        """Hits over lookups (0.0 when nothing was looked up)."""
        return self.get_stats().hit_rate

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return CacheStats(
            size=len(self._entries),
            max_entries=self._config.max_entries,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            expirations=self._expirations,
        )
