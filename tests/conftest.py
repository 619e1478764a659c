"""Pytest configuration and shared fixtures.

Usage Guide:
- For payloads/requests/jobs: import factories from tests.factories
- For time-dependent logic: use the ``clock`` fixture and ``clock.advance(...)``
- For engine tests: use ``make_scheduler`` with the fake collaborators below
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from meeting_jobs.config import (
    BatchConfig,
    CacheConfig,
    KindRetryConfig,
    PersistenceConfig,
    PoolConfig,
    RateLimitConfig,
    RateLimitRule,
    RetryConfig,
    RoutingConfig,
    Settings,
)
from meeting_jobs.engine import JobScheduler, RateLimiter, ResultCache, TimerService
from meeting_jobs.persistence import Base, InMemoryKeyValueStore, JobRepository, SqlKeyValueStore
from meeting_jobs.schemas import (
    AnalysisPayload,
    AnalysisResult,
    IssueCreationResult,
    JobKind,
    MetricsPayload,
    MetricsResult,
)

# -----------------------------------------------------------------------------
# Test Timeline Constants
#
# All hardcoded dates should reference these constants for consistency.
# -----------------------------------------------------------------------------
JAN_15 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)  # Test epoch


class FakeClock:
    """Manually advanced clock (callable like ``utc_now``)."""

    def __init__(self, start: datetime = JAN_15) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to the test epoch."""
    return FakeClock()


# -----------------------------------------------------------------------------
# Store Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine for tests.

    Each test gets a fresh database with all tables created.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_store(session_factory, clock: FakeClock) -> SqlKeyValueStore:
    return SqlKeyValueStore(session_factory, clock=clock)


class FailingStore:
    """Store whose every operation raises (persistence outage)."""

    def __init__(self) -> None:
        self.calls = 0

    async def get(self, key: str) -> bytes | None:
        self.calls += 1
        raise ConnectionError("store offline")

    async def put(self, key: str, value: bytes, ttl: timedelta | None = None) -> None:
        self.calls += 1
        raise ConnectionError("store offline")

    async def delete(self, key: str) -> None:
        self.calls += 1
        raise ConnectionError("store offline")


class FlakyStore(InMemoryKeyValueStore):
    """In-memory store whose ``put`` rejects matching writes.

    Rejects every matching write, or only the first ``failures`` of them.
    """

    def __init__(
        self,
        clock: FakeClock,
        match: Callable[[str, bytes], bool],
        failures: int | None = None,
    ) -> None:
        super().__init__(clock=clock)
        self.match = match
        self.failures = failures
        self.rejected = 0

    async def put(self, key: str, value: bytes, ttl: timedelta | None = None) -> None:
        if self.match(key, value) and (self.failures is None or self.rejected < self.failures):
            self.rejected += 1
            raise ConnectionError("store write timed out")
        await super().put(key, value, ttl)


def job_write(
    status: str, prefix: str = "job:", attempts: int | None = None
) -> Callable[[str, bytes], bool]:
    """Match job record writes that move a job to ``status`` (after ``attempts``)."""
    markers = [f'"status":"{status}"'.encode()]
    if attempts is not None:
        markers.append(f'"attempts":{attempts},'.encode())
    return lambda key, value: key.startswith(prefix) and all(m in value for m in markers)


# -----------------------------------------------------------------------------
# Fake Collaborators
# -----------------------------------------------------------------------------
Outcome = Any  # a result model, an Exception instance, or a callable returning either


class _ScriptedCollaborator:
    """Plays back scripted outcomes and tracks concurrency.

    Once the script is exhausted, ``default`` is returned.
    """

    def __init__(self, default: Any, delay: float = 0.0) -> None:
        self.default = default
        self.delay = delay
        self.script: list[Outcome] = []
        self.calls: list[Any] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.release: asyncio.Event | None = None

    def fail_times(self, count: int, error: Exception | None = None) -> None:
        self.script.extend([error or ConnectionError("downstream timeout")] * count)

    async def _play(self, arg: Any) -> Any:
        self.calls.append(arg)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.release is not None:
                await self.release.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.script.pop(0) if self.script else self.default
            if callable(outcome) and not isinstance(outcome, Exception):
                outcome = outcome(arg)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeAnalysisClient(_ScriptedCollaborator):
    def __init__(self, delay: float = 0.0) -> None:
        super().__init__(AnalysisResult(success=True, usage={"input_tokens": 120}), delay)

    async def analyze(self, payload: AnalysisPayload) -> AnalysisResult:
        return await self._play(payload)  # type: ignore[no-any-return]


class FakeIssueTracker(_ScriptedCollaborator):
    def __init__(self, delay: float = 0.0) -> None:
        super().__init__(None, delay)
        self._counter = 0
        self.default = self._next_issue

    def _next_issue(self, fields: dict[str, Any]) -> IssueCreationResult:
        self._counter += 1
        return IssueCreationResult(success=True, key=f"{fields['projectKey']}-{self._counter}")

    async def create_issue(self, fields: dict[str, Any]) -> IssueCreationResult:
        return await self._play(fields)  # type: ignore[no-any-return]


class FakeMetricsRecorder(_ScriptedCollaborator):
    def __init__(self, delay: float = 0.0) -> None:
        super().__init__(lambda payload: MetricsResult(recorded=len(payload.values)), delay)

    async def record(self, payload: MetricsPayload) -> MetricsResult:
        return await self._play(payload)  # type: ignore[no-any-return]


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def issue_tracker() -> FakeIssueTracker:
    return FakeIssueTracker()


@pytest.fixture
def metrics_recorder() -> FakeMetricsRecorder:
    return FakeMetricsRecorder()


# -----------------------------------------------------------------------------
# Engine Fixtures
# -----------------------------------------------------------------------------
def make_settings(
    *,
    max_attempts: int = 3,
    base_delay: float = 0.01,
    parallelism: int = 3,
    max_batch_size: int = 5,
    flush_interval_ms: int = 50,
    low_load_threshold: int = 5,
    low_latency_categories: list[str] | None = None,
    analysis_limit: int = 20,
    write_retry_seconds: float = 0.01,
    write_attempts: int = 3,
) -> Settings:
    """Settings tuned for fast, deterministic tests."""
    retry = KindRetryConfig(base_delay_seconds=base_delay, max_attempts=max_attempts)
    return Settings(
        _env_file=None,
        rate_limit=RateLimitConfig(
            rules={
                JobKind.ANALYSIS.value: RateLimitRule(limit=analysis_limit, window_seconds=3600),
                JobKind.ISSUE_CREATION.value: RateLimitRule(limit=500, window_seconds=60),
                JobKind.METRICS.value: RateLimitRule(limit=1000, window_seconds=3600),
            }
        ),
        cache=CacheConfig(max_entries=100, ttl_seconds=600),
        retry=RetryConfig(kinds={kind: retry for kind in JobKind}),
        pools=PoolConfig(max_parallelism={kind: parallelism for kind in JobKind}),
        batching=BatchConfig(max_batch_size=max_batch_size, flush_interval_ms=flush_interval_ms),
        routing=RoutingConfig(
            low_load_threshold=low_load_threshold,
            low_latency_categories=(
                low_latency_categories
                if low_latency_categories is not None
                else ["dailyStandup", "standup", "bugTriage"]
            ),
        ),
        persistence=PersistenceConfig(
            state_write_retry_seconds=write_retry_seconds,
            state_write_attempts=write_attempts,
        ),
    )


@pytest.fixture
async def make_scheduler(
    clock: FakeClock,
    memory_store: InMemoryKeyValueStore,
    analysis_client: FakeAnalysisClient,
    issue_tracker: FakeIssueTracker,
    metrics_recorder: FakeMetricsRecorder,
):
    """Factory building a scheduler wired to the in-memory store and fakes.

    Schedulers still open at the end of the test are shut down without waiting.
    """
    created: list[JobScheduler] = []

    def _make(settings: Settings | None = None, **overrides: Any) -> JobScheduler:
        settings = settings or make_settings()
        store = overrides.pop("store", memory_store)
        kwargs: dict[str, Any] = {
            "repository": JobRepository(store, settings.persistence),
            "rate_limiter": RateLimiter(store, settings.rate_limit, clock=clock),
            "cache": ResultCache(settings.cache, clock=clock),
            "analysis_client": analysis_client,
            "issue_tracker": issue_tracker,
            "metrics_recorder": metrics_recorder,
            "settings": settings,
            "timers": TimerService(),
            "clock": clock,
        }
        kwargs.update(overrides)
        scheduler = JobScheduler(**kwargs)
        created.append(scheduler)
        return scheduler

    yield _make

    for scheduler in created:
        if not scheduler._closed:
            await scheduler.shutdown(wait=False)


@pytest.fixture
def scheduler(make_scheduler: Callable[..., JobScheduler]) -> JobScheduler:
    """Scheduler with default test settings."""
    return make_scheduler()
