"""Key-value store used for job records and rate windows.

The engine only depends on the ``KeyValueStore`` protocol. Two
implementations are provided:

- ``InMemoryKeyValueStore``: process-local dict with per-key TTL
- ``SqlKeyValueStore``: SQLAlchemy async store over the ``kv_entries`` table
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meeting_jobs.clock import Clock, utc_now
from meeting_jobs.exceptions import PersistenceUnavailableError
from meeting_jobs.logging import get_logger
from meeting_jobs.persistence.models import KVEntry

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal persistence contract with per-key TTL."""

    async def get(self, key: str) -> bytes | None: ...

    async def put(self, key: str, value: bytes, ttl: timedelta | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Dict-backed store; expired keys are dropped lazily on read.

    Usage:
        store = InMemoryKeyValueStore()
        await store.put("job:analysis_1", b"{...}", ttl=timedelta(hours=24))
        raw = await store.get("job:analysis_1")
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._data: dict[str, tuple[bytes, datetime | None]] = {}

    async def get(self, key: str) -> bytes | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: bytes, ttl: timedelta | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        """Live keys starting with ``prefix``."""
        now = self._clock()
        return sorted(
            k
            for k, (_, expires_at) in self._data.items()
            if k.startswith(prefix) and (expires_at is None or expires_at > now)
        )

    async def purge_expired(self) -> int:
        """Remove expired keys and return how many were dropped."""
        now = self._clock()
        expired = [
            k for k, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for k in expired:
            del self._data[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


def _to_db_time(value: datetime) -> datetime:
    """Normalize to naive UTC for storage (SQLite drops tzinfo)."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


class SqlKeyValueStore:
    """SQLAlchemy-backed store over the ``kv_entries`` table.

    Each operation runs in its own short session. Driver errors are
    wrapped in ``PersistenceUnavailableError`` with the cause chained.

    Usage:
        factory = create_session_factory(get_engine())
        store = SqlKeyValueStore(factory)
        await store.put("ratelimit:analysis:U1", raw, ttl=timedelta(minutes=61))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory producing sessions bound to the target database
            clock: Time source used for expiry checks
        """
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> datetime:
        return _to_db_time(self._clock())

    # -------------------------------------------------------------------------
    # KeyValueStore
    # -------------------------------------------------------------------------
    async def get(self, key: str) -> bytes | None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(KVEntry, key)
                if entry is None:
                    return None
                if entry.expires_at is not None and entry.expires_at <= self._now():
                    return None
                return entry.value
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read {key!r}: {e}") from e

    async def put(self, key: str, value: bytes, ttl: timedelta | None = None) -> None:
        expires_at = self._now() + ttl if ttl is not None else None
        try:
            async with self._session_factory() as session:
                entry = await session.get(KVEntry, key)
                if entry is None:
                    session.add(KVEntry(key=key, value=value, expires_at=expires_at))
                else:
                    entry.value = value
                    entry.expires_at = expires_at
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to write {key!r}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(KVEntry).where(KVEntry.key == key))
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to delete {key!r}: {e}") from e

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------
    async def keys(self, prefix: str = "") -> list[str]:
        """Live keys starting with ``prefix``."""
        now = self._now()
        stmt = (
            select(KVEntry.key)
            .where(KVEntry.key.startswith(prefix, autoescape=True))
            .where((KVEntry.expires_at.is_(None)) | (KVEntry.expires_at > now))
            .order_by(KVEntry.key)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to list keys: {e}") from e

    async def purge_expired(self) -> int:
        """Delete expired rows and return how many were removed."""
        stmt = delete(KVEntry).where(KVEntry.expires_at <= self._now())
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to purge expired rows: {e}") from e

        removed = result.rowcount or 0  # type: ignore[attr-defined]
        if removed:
            logger.info("Purged {} expired entries", removed)
        return removed
