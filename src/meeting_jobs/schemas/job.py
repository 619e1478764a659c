"""Job record, request, handle and view models.

The ``Job`` model is the persisted record and the only place status
changes are made. Every mutator checks the transition against the
state machine before touching any field.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, Field

from meeting_jobs.exceptions import InvalidTransitionError

from .enums import CallerTier, JobKind, JobStatus, RouteDecision
from .payloads import JobPayload

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.RETRYING, JobStatus.FAILED}),
    JobStatus.RETRYING: frozenset({JobStatus.QUEUED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

CANCELLED_ERROR = "cancelled by caller"


def new_job_id(kind: JobKind) -> str:
    """Generate an opaque job id prefixed with its kind."""
    return f"{kind.value}_{uuid.uuid4().hex}"


class JobRequest(BaseModel):
    """What a caller submits."""

    subject: str = Field(min_length=1, description="Caller identifier used for rate limiting")
    tier: CallerTier = CallerTier.STANDARD
    payload: JobPayload

    @property
    def kind(self) -> JobKind:
        """Kind derived from the payload."""
        return self.payload.job_kind


class JobView(BaseModel):
    """Caller-facing view of a job record (payload omitted)."""

    id: str
    kind: JobKind
    subject: str
    status: JobStatus
    priority: int
    attempts: int
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    retry_at: datetime | None = None
    last_error: str | None = None
    cancel_requested: bool = False
    parent_id: str | None = None
    result: dict[str, Any] | None = None


class JobHandle(BaseModel):
    """Returned by submit.

    Cache hits come back already completed with ``cached=True`` and
    no ``job_id`` because no job was created.
    """

    job_id: str | None
    kind: JobKind
    status: JobStatus
    fingerprint: str
    cached: bool = False
    route: RouteDecision | None = None
    result: dict[str, Any] | None = None
    processing_seconds: float = 0.0
    submitted_at: datetime

    @property
    def is_done(self) -> bool:
        """Whether the handle already carries a terminal status."""
        return self.status.is_terminal


class Job(BaseModel):
    """A unit of work tracked through the scheduler."""

    id: str
    kind: JobKind
    subject: str
    tier: CallerTier = CallerTier.STANDARD
    payload: JobPayload
    fingerprint: str
    priority: int
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    max_attempts: int = Field(ge=1)
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    retry_at: datetime | None = None
    last_error: str | None = None
    cancel_requested: bool = False
    parent_id: str | None = None
    result: dict[str, Any] | None = None

    @classmethod
    def create(
        cls,
        request: JobRequest,
        *,
        fingerprint: str,
        priority: int,
        max_attempts: int,
        now: datetime,
        parent_id: str | None = None,
    ) -> Self:
        """Create a new Queued job from a validated request."""
        return cls(
            id=new_job_id(request.kind),
            kind=request.kind,
            subject=request.subject,
            tier=request.tier,
            payload=request.payload,
            fingerprint=fingerprint,
            priority=priority,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
            parent_id=parent_id,
        )

    # -------------------------------------------------------------------------
    # State Machine
    # -------------------------------------------------------------------------
    @property
    def is_terminal(self) -> bool:
        """Whether the job is Completed or Failed."""
        return self.status.is_terminal

    def can_transition(self, status: JobStatus) -> bool:
        """Check whether ``status`` is reachable in one step."""
        return status in ALLOWED_TRANSITIONS[self.status]

    def _transition(self, status: JobStatus, now: datetime) -> None:
        if not self.can_transition(status):
            raise InvalidTransitionError(
                f"Job {self.id}: {self.status.value} -> {status.value} is not allowed"
            )
        self.status = status
        self.updated_at = now
        if status.is_terminal:
            self.completed_at = now

    def claim(self, now: datetime) -> None:
        """Queued -> Processing; counts one attempt."""
        self._transition(JobStatus.PROCESSING, now)
        self.attempts += 1
        self.retry_at = None

    def complete(self, result: dict[str, Any], now: datetime) -> None:
        """Processing -> Completed with the downstream result."""
        self._transition(JobStatus.COMPLETED, now)
        self.result = result

    def schedule_retry(self, error: str, retry_at: datetime, now: datetime) -> None:
        """Processing -> Retrying until ``retry_at``."""
        self._transition(JobStatus.RETRYING, now)
        self.last_error = error
        self.retry_at = retry_at

    def requeue(self, now: datetime) -> None:
        """Retrying -> Queued once the backoff delay elapsed."""
        self._transition(JobStatus.QUEUED, now)
        self.retry_at = None

    def fail(self, error: str, now: datetime) -> None:
        """Processing -> Failed (terminal)."""
        self._transition(JobStatus.FAILED, now)
        self.last_error = error

    def cancel(self, now: datetime) -> None:
        """End a non-terminal job Failed on behalf of the caller.

        The only way a Queued or Retrying job reaches Failed. The
        record keeps ``cancel_requested`` so it can be told apart from
        a downstream failure.
        """
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Job {self.id}: {self.status.value} cannot be cancelled"
            )
        self.status = JobStatus.FAILED
        self.updated_at = now
        self.completed_at = now
        self.cancel_requested = True
        self.last_error = CANCELLED_ERROR
        self.retry_at = None

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------
    def to_view(self) -> JobView:
        """Caller-facing view without the payload."""
        return JobView.model_validate(self.model_dump(exclude={"payload", "tier", "fingerprint"}))

    def to_bytes(self) -> bytes:
        """Serialize for the key-value store."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> Self:
        """Deserialize a stored record."""
        return cls.model_validate_json(raw)
