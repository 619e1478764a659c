"""Exponential backoff with jitter and a bounded attempt budget.

Pure decision logic: no I/O, no sleeping. The scheduler realizes the
delay with a timer.
"""

from __future__ import annotations

import random

from meeting_jobs.config import KindRetryConfig, RetryConfig, get_settings
from meeting_jobs.exceptions import NonRetryableDownstreamError
from meeting_jobs.schemas.enums import JobKind


class RetryPolicy:
    """Backoff schedule for one job kind.

    ``next_delay(attempt) = base * 2 ** (attempt - 1) + jitter`` where
    jitter is uniform in ``[0, base)``.

    Usage:
        policy = RetryPolicy.for_kind(JobKind.ANALYSIS)
        if policy.should_retry(job.attempts, job.max_attempts):
            delay = policy.next_delay(job.attempts)
    """

    def __init__(
        self,
        base_delay: float,
        max_attempts: int,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            base_delay: Backoff base in seconds (also the jitter bound)
            max_attempts: Attempt budget for jobs created under this policy
            rng: Random source for jitter (seedable in tests)
        """
        if base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {base_delay}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: KindRetryConfig, rng: random.Random | None = None) -> RetryPolicy:
        return cls(config.base_delay_seconds, config.max_attempts, rng)

    @classmethod
    def for_kind(
        cls,
        kind: JobKind,
        config: RetryConfig | None = None,
        rng: random.Random | None = None,
    ) -> RetryPolicy:
        """Build the policy configured for ``kind``."""
        config = config or get_settings().retry
        return cls.from_config(config.for_kind(kind), rng)

    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before re-submitting after failed ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        jitter = self._rng.uniform(0, self.base_delay) if self.base_delay > 0 else 0.0
        # uniform() may return the upper bound; keep jitter strictly below base
        if jitter >= self.base_delay > 0:
            jitter = 0.0
        return self.base_delay * 2 ** (attempt - 1) + jitter

    @staticmethod
    def should_retry(attempt: int, max_attempts: int) -> bool:
        """Whether another attempt is allowed after ``attempt`` failed."""
        return attempt < max_attempts

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        """Whether ``error`` may be retried at all."""
        return not isinstance(error, NonRetryableDownstreamError)
