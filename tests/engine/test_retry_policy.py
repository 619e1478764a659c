"""Unit tests for RetryPolicy."""

import random

import pytest

from meeting_jobs.config import KindRetryConfig, RetryConfig
from meeting_jobs.engine.retry import RetryPolicy
from meeting_jobs.exceptions import DownstreamFailureError, NonRetryableDownstreamError
from meeting_jobs.schemas import JobKind


class TestNextDelay:
    """Tests for backoff computation."""

    @pytest.mark.parametrize("attempt", [1, 2, 3, 4])
    def test_delay_within_bounds(self, attempt: int) -> None:
        """base * 2^(n-1) <= delay < base * 2^(n-1) + base."""
        policy = RetryPolicy(base_delay=30.0, max_attempts=5, rng=random.Random(7))
        floor = 30.0 * 2 ** (attempt - 1)

        for _ in range(50):
            delay = policy.next_delay(attempt)
            assert floor <= delay < floor + 30.0

    def test_delay_grows_exponentially(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_attempts=5, rng=random.Random(1))

        delays = [policy.next_delay(n) for n in (1, 2, 3)]

        assert delays[0] < 2.0 <= delays[1] < 3.0 < 4.0 <= delays[2] < 5.0

    def test_seeded_rng_is_reproducible(self) -> None:
        a = RetryPolicy(2.0, 3, rng=random.Random(42))
        b = RetryPolicy(2.0, 3, rng=random.Random(42))

        assert [a.next_delay(1) for _ in range(5)] == [b.next_delay(1) for _ in range(5)]

    def test_zero_base_has_no_delay(self) -> None:
        policy = RetryPolicy(base_delay=0.0, max_attempts=3)
        assert policy.next_delay(3) == 0.0

    def test_jitter_never_reaches_base(self) -> None:
        class UpperBoundRandom(random.Random):
            def uniform(self, a: float, b: float) -> float:
                return b

        policy = RetryPolicy(base_delay=10.0, max_attempts=3, rng=UpperBoundRandom())
        assert policy.next_delay(1) == 10.0

    def test_attempt_must_be_positive(self) -> None:
        policy = RetryPolicy(1.0, 3)
        with pytest.raises(ValueError, match="attempt"):
            policy.next_delay(0)


class TestShouldRetry:
    """Tests for the attempt budget."""

    @pytest.mark.parametrize(
        ("attempt", "max_attempts", "expected"),
        [
            (1, 3, True),
            (2, 3, True),
            (3, 3, False),
            (4, 3, False),
            (1, 1, False),
        ],
    )
    def test_should_retry(self, attempt: int, max_attempts: int, expected: bool) -> None:
        assert RetryPolicy.should_retry(attempt, max_attempts) is expected

    def test_non_retryable_errors(self) -> None:
        assert RetryPolicy.is_retryable(ConnectionError("timeout"))
        assert RetryPolicy.is_retryable(DownstreamFailureError("500"))
        assert not RetryPolicy.is_retryable(NonRetryableDownstreamError("400"))


class TestConstruction:
    """Tests for validation and config wiring."""

    def test_rejects_negative_base(self) -> None:
        with pytest.raises(ValueError, match="base_delay"):
            RetryPolicy(-1.0, 3)

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(1.0, 0)

    def test_for_kind_uses_config(self) -> None:
        config = RetryConfig(
            kinds={JobKind.METRICS: KindRetryConfig(base_delay_seconds=5, max_attempts=2)}
        )

        policy = RetryPolicy.for_kind(JobKind.METRICS, config)

        assert policy.base_delay == 5
        assert policy.max_attempts == 2

    def test_for_kind_defaults_when_missing(self) -> None:
        policy = RetryPolicy.for_kind(JobKind.ANALYSIS, RetryConfig(kinds={}))

        assert policy.base_delay == 30.0
        assert policy.max_attempts == 3
