"""Enums shared across the job engine."""

from enum import IntEnum, StrEnum


class JobKind(StrEnum):
    """Resource class of a job.

    Determines which concurrency pool and downstream collaborator
    handle the job.
    """

    ANALYSIS = "analysis"
    ISSUE_CREATION = "issue_creation"
    METRICS = "metrics"


class JobStatus(StrEnum):
    """Lifecycle state of a job.

    Queued -> Processing -> {Completed | Retrying | Failed}
    Retrying -> Queued (after the backoff delay)

    A caller cancellation ends the job Failed with ``cancel_requested`` set.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Priority(IntEnum):
    """Job priority.

    Lower values = higher priority (dispatched first).
    """

    CRITICAL = 1  # Enterprise callers
    HIGH = 2  # Premium callers, urgent meetings, large transcripts
    NORMAL = 3  # Regular submissions
    LOW = 4  # Background work


class CallerTier(StrEnum):
    """Service tier of the submitting caller."""

    STANDARD = "standard"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class RouteDecision(StrEnum):
    """How a freshly created job enters the engine."""

    IMMEDIATE = "immediate"
    QUEUED = "queued"
