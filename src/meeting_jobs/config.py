"""Configuration settings for the meeting job engine."""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from meeting_jobs.schemas.enums import JobKind


class RateLimitRule(BaseModel):
    """Sliding-window limit for a single action."""

    limit: int = Field(
        ge=1,
        description="Maximum summed request cost allowed inside one window",
    )
    window_seconds: float = Field(
        gt=0,
        description="Length of the trailing window in seconds",
    )

    @property
    def window(self) -> timedelta:
        """Get the window as a timedelta."""
        return timedelta(seconds=self.window_seconds)


def _default_rate_rules() -> dict[str, RateLimitRule]:
    return {
        JobKind.ANALYSIS.value: RateLimitRule(limit=20, window_seconds=3600),
        JobKind.ISSUE_CREATION.value: RateLimitRule(limit=500, window_seconds=60),
        JobKind.METRICS.value: RateLimitRule(limit=1000, window_seconds=3600),
    }


class RateLimitConfig(BaseModel):
    """Configuration for per-caller admission control.

    Each action (normally the job kind) has its own sliding window.
    Actions without an explicit rule fall back to ``default_rule``.
    """

    rules: dict[str, RateLimitRule] = Field(
        default_factory=_default_rate_rules,
        description="Limit per action name",
    )
    default_rule: RateLimitRule = Field(
        default_factory=lambda: RateLimitRule(limit=100, window_seconds=3600),
        description="Limit applied to actions without an explicit rule",
    )
    storage_ttl_buffer_seconds: int = Field(
        default=60,
        ge=0,
        description="Extra seconds a window record outlives its window in storage",
    )

    def rule_for(self, action: str) -> RateLimitRule:
        """Get the rule for an action (falls back to the default rule)."""
        return self.rules.get(action, self.default_rule)

    @property
    def storage_ttl_buffer(self) -> timedelta:
        """Get the storage TTL buffer as a timedelta."""
        return timedelta(seconds=self.storage_ttl_buffer_seconds)


class CacheConfig(BaseModel):
    """Configuration for the result cache.

    Controls freshness, capacity and which job kinds are cached at all.
    """

    max_entries: int = Field(
        default=1000,
        ge=1,
        description="Maximum cached results before an eviction pass",
    )
    ttl_seconds: float = Field(
        default=600,
        gt=0,
        description="Seconds a result stays servable (10 minutes)",
    )
    eviction_fraction: float = Field(
        default=0.2,
        gt=0.0,
        le=1.0,
        description="Fraction of least-recently-accessed entries removed per eviction pass",
    )
    cleanup_interval_seconds: float = Field(
        default=300,
        gt=0,
        description="Seconds between background purges of expired entries",
    )
    cacheable_kinds: list[JobKind] = Field(
        default_factory=lambda: [JobKind.ANALYSIS, JobKind.ISSUE_CREATION],
        description="Job kinds whose successful results are cached",
    )

    @property
    def ttl(self) -> timedelta:
        """Get the TTL as a timedelta."""
        return timedelta(seconds=self.ttl_seconds)


class KindRetryConfig(BaseModel):
    """Backoff settings for one job kind."""

    base_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Base of the exponential backoff (also the jitter bound)",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Total attempts before a job is marked failed",
    )


def _default_retry() -> dict[JobKind, KindRetryConfig]:
    return {
        JobKind.ANALYSIS: KindRetryConfig(max_attempts=3),
        JobKind.ISSUE_CREATION: KindRetryConfig(max_attempts=3),
        JobKind.METRICS: KindRetryConfig(max_attempts=2),
    }


class RetryConfig(BaseModel):
    """Configuration for retry behavior per job kind."""

    kinds: dict[JobKind, KindRetryConfig] = Field(
        default_factory=_default_retry,
        description="Retry settings by job kind",
    )

    def for_kind(self, kind: JobKind) -> KindRetryConfig:
        """Get retry settings for a kind (defaults if not configured)."""
        return self.kinds.get(kind, KindRetryConfig())


def _default_parallelism() -> dict[JobKind, int]:
    return {
        JobKind.ANALYSIS: 3,
        JobKind.ISSUE_CREATION: 5,
        JobKind.METRICS: 2,
    }


class PoolConfig(BaseModel):
    """Configuration for the per-kind concurrency pools."""

    max_parallelism: dict[JobKind, int] = Field(
        default_factory=_default_parallelism,
        description="Maximum concurrently executing jobs per kind",
    )

    def for_kind(self, kind: JobKind) -> int:
        """Get max parallelism for a kind (1 if not configured)."""
        return max(1, self.max_parallelism.get(kind, 1))


class BatchConfig(BaseModel):
    """Configuration for similarity batching.

    Controls batch size, flush latency and how alike two payloads
    must be before they share a batch.
    """

    max_batch_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum jobs per batch",
    )
    flush_interval_ms: int = Field(
        default=2000,
        ge=1,
        description="Milliseconds after the oldest member was accumulated before release",
    )
    similarity_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum min/max payload-size ratio for two jobs to be compatible",
    )

    @property
    def flush_interval(self) -> timedelta:
        """Get the flush interval as a timedelta."""
        return timedelta(milliseconds=self.flush_interval_ms)


class RoutingConfig(BaseModel):
    """Configuration for immediate-vs-queued routing and priority.

    All values are empirically tuned heuristics.
    """

    small_payload_chars: int = Field(
        default=2000,
        ge=0,
        description="Payloads smaller than this are candidates for immediate dispatch",
    )
    low_latency_categories: list[str] = Field(
        default_factory=lambda: ["dailyStandup", "standup", "bugTriage"],
        description="Categories that favour immediate dispatch when small",
    )
    low_load_threshold: int = Field(
        default=5,
        ge=0,
        description="Pending depth below which every job is dispatched immediately",
    )
    large_payload_chars: int = Field(
        default=10000,
        ge=0,
        description="Payloads larger than this get HIGH priority",
    )
    urgent_categories: list[str] = Field(
        default_factory=lambda: ["bugTriage", "retrospective"],
        description="Categories that get HIGH priority",
    )
    urgent_issue_types: list[str] = Field(
        default_factory=lambda: ["Bug"],
        description="Issue types that get HIGH priority",
    )


class ValidationConfig(BaseModel):
    """Configuration for payload validation and sanitization."""

    max_notes_length: int = Field(
        default=50000,
        ge=1,
        description="Maximum transcript length in characters",
    )
    max_field_length: int = Field(
        default=1000,
        ge=1,
        description="Maximum length of classifier and short text fields",
    )
    reject_prompt_injection: bool = Field(
        default=True,
        description="Reject transcripts matching known prompt-injection patterns",
    )


class PersistenceConfig(BaseModel):
    """Configuration for the persistence store and job retention."""

    database_url: str = Field(
        default="sqlite+aiosqlite:///./meeting_jobs.db",
        description="Async SQLite database connection string",
    )
    job_ttl_hours: float = Field(
        default=24,
        gt=0,
        description="Retention of job records while they are still active",
    )
    terminal_job_ttl_hours: float = Field(
        default=6,
        gt=0,
        description="Retention of job records after they reach a terminal state",
    )
    state_write_retry_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay before re-applying a job state change the store rejected",
    )
    state_write_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts at a job state change before waiters are failed",
    )

    @property
    def job_ttl(self) -> timedelta:
        """Get the active-job retention as a timedelta."""
        return timedelta(hours=self.job_ttl_hours)

    @property
    def terminal_job_ttl(self) -> timedelta:
        """Get the terminal-job retention as a timedelta."""
        return timedelta(hours=self.terminal_job_ttl_hours)


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Admission & Caching
    # --------------------------------------------------------------------------
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig,
        description="Per-caller rate limit configuration",
    )
    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Result cache configuration",
    )

    # --------------------------------------------------------------------------
    # Scheduling
    # --------------------------------------------------------------------------
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry/backoff configuration",
    )
    pools: PoolConfig = Field(
        default_factory=PoolConfig,
        description="Concurrency pool configuration",
    )
    batching: BatchConfig = Field(
        default_factory=BatchConfig,
        description="Similarity batching configuration",
    )
    routing: RoutingConfig = Field(
        default_factory=RoutingConfig,
        description="Immediate-vs-queued routing and priority configuration",
    )
    validation: ValidationConfig = Field(
        default_factory=ValidationConfig,
        description="Payload validation configuration",
    )

    # --------------------------------------------------------------------------
    # Persistence
    # --------------------------------------------------------------------------
    persistence: PersistenceConfig = Field(
        default_factory=PersistenceConfig,
        description="Persistence store configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
