"""Job engine exceptions."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meeting_jobs.schemas.rate_limit import RateDecision


class JobEngineError(Exception):
    """Base exception for job engine errors."""

    pass


class RateLimitedError(JobEngineError):
    """Raised by submit when the caller exhausted its window.

    No job is created. Callers should retry after ``reset_at``.
    """

    def __init__(
        self,
        message: str,
        reset_at: datetime,
        retry_after: timedelta,
        decision: RateDecision | None = None,
    ) -> None:
        super().__init__(message)
        self.reset_at = reset_at
        self.retry_after = retry_after
        self.decision = decision


class ValidationFailedError(JobEngineError):
    """Raised when a payload is malformed, oversized or unsafe. Never retried."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class DownstreamFailureError(JobEngineError):
    """Raised when an AI, issue-tracker or metrics call fails.

    Handled inside the pool/retry loop; callers only ever see it
    through ``last_error`` on the job record.
    """

    pass


class NonRetryableDownstreamError(DownstreamFailureError):
    """Downstream failure that must not be retried (e.g. rejected input)."""

    pass


class TerminalFailureError(JobEngineError):
    """Raised when waiting on a job that ended in Failed."""

    def __init__(self, message: str, job_id: str, last_error: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.last_error = last_error


class PersistenceUnavailableError(JobEngineError):
    """Raised when the key-value store cannot be read or written."""

    pass


class InvalidTransitionError(JobEngineError):
    """Raised when a job is moved along an edge the state machine does not allow."""

    pass


class JobNotFoundError(JobEngineError):
    """Raised when a job id has no persisted record."""

    pass
