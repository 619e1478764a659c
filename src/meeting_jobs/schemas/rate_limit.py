"""Pydantic schemas for sliding-window rate limiting.

A window record is stored per (subject, action) in the persistence
store; a decision is what the limiter hands back to callers.
"""

from datetime import datetime, timedelta
from typing import Self

from pydantic import BaseModel, Field


class RateEntry(BaseModel):
    """One admitted request inside a window."""

    timestamp: datetime
    cost: int = Field(default=1, ge=1)


class RateWindow(BaseModel):
    """Recent admitted requests for one (subject, action)."""

    entries: list[RateEntry] = Field(default_factory=list)

    def prune(self, cutoff: datetime) -> Self:
        """Drop entries older than ``cutoff`` (entries at the cutoff are kept)."""
        self.entries = [e for e in self.entries if e.timestamp >= cutoff]
        return self

    @property
    def total_cost(self) -> int:
        """Summed cost of all entries."""
        return sum(e.cost for e in self.entries)

    @property
    def oldest(self) -> datetime | None:
        """Timestamp of the oldest entry (None if empty)."""
        if not self.entries:
            return None
        return min(e.timestamp for e in self.entries)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> Self:
        return cls.model_validate_json(raw)


class RateDecision(BaseModel):
    """Admission decision for one check."""

    allowed: bool = Field(description="Whether the request was admitted")
    current: int = Field(ge=0, description="Summed cost in the window after this decision")
    remaining: int = Field(ge=0, description="Cost still admissible in the window")
    limit: int = Field(ge=0, description="Configured limit for the action")
    reset_at: datetime = Field(description="When the oldest in-window entry expires")
    degraded: bool = Field(
        default=False,
        description="True when the decision was made without the window (fail-open)",
    )

    def retry_after(self, now: datetime) -> timedelta:
        """Time from ``now`` until ``reset_at`` (never negative)."""
        return max(timedelta(0), self.reset_at - now)
