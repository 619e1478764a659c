"""Sliding-window, cost-weighted admission control.

Each (subject, action) pair owns one window record in the persistence
store. A check loads the record, drops entries older than the window,
and admits the request only if the summed cost plus the new cost stays
within the configured limit.

Store failures fail OPEN: the request is allowed and a warning is
logged. Availability wins over strict enforcement when the store is
down; the returned decision is flagged ``degraded``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from meeting_jobs.clock import Clock, utc_now
from meeting_jobs.config import RateLimitConfig, RateLimitRule, get_settings
from meeting_jobs.logging import bind_subject
from meeting_jobs.persistence.store import KeyValueStore
from meeting_jobs.schemas.rate_limit import RateDecision, RateEntry, RateWindow

if TYPE_CHECKING:
    from loguru import Logger

RATE_KEY_PREFIX = "ratelimit:"


def rate_key(subject: str, action: str) -> str:
    """Store key for a (subject, action) window."""
    return f"{RATE_KEY_PREFIX}{action}:{subject}"


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class RateLimiter:
    """Per-caller sliding-window rate limiter.

    Usage:
        limiter = RateLimiter(store)
        decision = await limiter.check("U1", "analysis")
        if not decision.allowed:
            raise RateLimitedError(...)

        # Inspect without consuming quota
        decision = await limiter.status("U1", "analysis")

    Concurrent checks for the same key are serialized so that two
    callers cannot both observe the same remaining quota.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: RateLimitConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            store: Persistence store holding window records
            config: Limits per action (uses settings if not provided)
            clock: Time source
        """
        self._store = store
        self._config = config or get_settings().rate_limit
        self._clock = clock
        self._locks: dict[str, _KeyLock] = {}

        # Statistics
        self._total_allowed = 0
        self._total_denied = 0
        self._total_degraded = 0

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Serialize work on ``key``; the lock is dropped once nobody holds or awaits it."""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------
    async def check(self, subject: str, action: str, cost: int = 1) -> RateDecision:
        """Check and, if allowed, record a request.

        Args:
            subject: Caller identifier
            action: Action name (normally the job kind)
            cost: Weight of the request (>= 1)

        Returns:
            Decision with allowed flag, usage and reset time

        Raises:
            ValueError: If cost is below 1
        """
        if cost < 1:
            raise ValueError(f"cost must be >= 1, got {cost}")

        rule = self._config.rule_for(action)
        key = rate_key(subject, action)
        log = bind_subject(subject, action)

        async with self._locked(key):
            now = self._clock()
            try:
                window = await self._load(key, log)
            except Exception as e:
                log.warning("Rate limit store unavailable, failing open: {}", e)
                return self._fail_open(rule, now, cost)

            window.prune(now - rule.window)
            current = window.total_cost

            if current + cost > rule.limit:
                self._total_denied += 1
                oldest = window.oldest or now
                decision = RateDecision(
                    allowed=False,
                    current=current,
                    remaining=max(0, rule.limit - current),
                    limit=rule.limit,
                    reset_at=oldest + rule.window,
                )
                log.warning(
                    "Rate limit exceeded ({}/{} used, cost {}), resets at {}",
                    current,
                    rule.limit,
                    cost,
                    decision.reset_at.isoformat(),
                )
                return decision

            window.entries.append(RateEntry(timestamp=now, cost=cost))
            ttl = rule.window + self._config.storage_ttl_buffer
            try:
                await self._store.put(key, window.to_bytes(), ttl=ttl)
            except Exception as e:
                log.warning("Rate limit store write failed, failing open: {}", e)
                return self._fail_open(rule, now, cost)

            self._total_allowed += 1
            current += cost
            oldest = window.oldest or now
            return RateDecision(
                allowed=True,
                current=current,
                remaining=max(0, rule.limit - current),
                limit=rule.limit,
                reset_at=oldest + rule.window,
            )

    async def status(self, subject: str, action: str) -> RateDecision:
        """Report current usage without consuming quota.

        ``allowed`` reflects whether a request of cost 1 would pass.
        """
        rule = self._config.rule_for(action)
        key = rate_key(subject, action)
        log = bind_subject(subject, action)
        now = self._clock()

        try:
            window = await self._load(key, log)
        except Exception as e:
            log.warning("Rate limit store unavailable, reporting open: {}", e)
            return RateDecision(
                allowed=True,
                current=0,
                remaining=rule.limit,
                limit=rule.limit,
                reset_at=now + rule.window,
                degraded=True,
            )

        window.prune(now - rule.window)
        current = window.total_cost
        oldest = window.oldest or now
        return RateDecision(
            allowed=current + 1 <= rule.limit,
            current=current,
            remaining=max(0, rule.limit - current),
            limit=rule.limit,
            reset_at=oldest + rule.window,
        )

    async def reset(self, subject: str, action: str) -> None:
        """Clear the window for (subject, action).

        Raises:
            PersistenceUnavailableError: If the store cannot be written
        """
        key = rate_key(subject, action)
        async with self._locked(key):
            await self._store.delete(key)
        bind_subject(subject, action).info("Rate limit window reset")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _load(self, key: str, log: Logger) -> RateWindow:
        raw = await self._store.get(key)
        if raw is None:
            return RateWindow()
        try:
            return RateWindow.from_bytes(raw)
        except ValidationError:
            log.warning("Discarding unreadable rate window {}", key)
            return RateWindow()

    def _fail_open(self, rule: RateLimitRule, now: datetime, cost: int) -> RateDecision:
        self._total_allowed += 1
        self._total_degraded += 1
        return RateDecision(
            allowed=True,
            current=cost,
            remaining=max(0, rule.limit - cost),
            limit=rule.limit,
            reset_at=now + rule.window,
            degraded=True,
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    def get_stats(self) -> dict[str, int]:
        """Get limiter statistics."""
        return {
            "total_allowed": self._total_allowed,
            "total_denied": self._total_denied,
            "total_degraded": self._total_degraded,
            "locked_keys": len(self._locks),
        }


