"""Kind-specific job payloads.

Payloads are immutable once a job is created. Each payload exposes the
three features the engine needs without knowing the kind:

- ``classifiers``: fields that must match for two jobs to share a batch
- ``size``: a comparable magnitude used for similarity and routing
- ``category``: the classifier routing and priority rules look at
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import JobKind

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs so cosmetic differences share a fingerprint."""
    return _WHITESPACE.sub(" ", text).strip()


class PayloadBase(BaseModel):
    """Base class for all payloads (frozen)."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    kind: str

    @property
    def job_kind(self) -> JobKind:
        return JobKind(self.kind)

    @property
    def classifiers(self) -> tuple[str, ...]:
        raise NotImplementedError

    @property
    def size(self) -> int:
        raise NotImplementedError

    @property
    def category(self) -> str:
        return self.classifiers[0]

    def fingerprint_parts(self) -> list[str]:
        """Normalized fields that identify the payload's content."""
        raise NotImplementedError


class AnalysisOptions(BaseModel):
    """Follow-up behaviour requested with an analysis."""

    model_config = ConfigDict(frozen=True)

    create_issues: bool = False
    project_key: str | None = None
    assign_to_subject: bool = False
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class AnalysisPayload(PayloadBase):
    """A sanitized meeting transcript to send for structured extraction."""

    kind: Literal["analysis"] = "analysis"
    notes: str = Field(min_length=1)
    meeting_type: str = Field(min_length=1)
    issue_type: str = Field(min_length=1)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)

    @property
    def classifiers(self) -> tuple[str, ...]:
        return (self.meeting_type, self.issue_type)

    @property
    def size(self) -> int:
        return len(self.notes)

    def fingerprint_parts(self) -> list[str]:
        # Options do not change the extraction itself, so they stay out of the key
        return [self.meeting_type, self.issue_type, normalize_text(self.notes)]


class IssueCreationPayload(PayloadBase):
    """Fields for one work item to file in the issue tracker."""

    kind: Literal["issue_creation"] = "issue_creation"
    summary: str = Field(min_length=1)
    description: str = ""
    issue_type: str = Field(min_length=1)
    priority: str | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    project_key: str = Field(min_length=1)

    @property
    def classifiers(self) -> tuple[str, ...]:
        return (self.issue_type, self.project_key)

    @property
    def size(self) -> int:
        return len(self.summary) + len(self.description)

    def fingerprint_parts(self) -> list[str]:
        return [
            self.project_key,
            self.issue_type,
            normalize_text(self.summary),
            normalize_text(self.description),
            self.priority or "",
            self.assignee or "",
            ",".join(sorted(self.labels)),
        ]

    def to_fields(self) -> dict[str, Any]:
        """Fields as handed to the issue tracker."""
        return {
            "summary": self.summary,
            "description": self.description,
            "issueType": self.issue_type,
            "priority": self.priority,
            "assignee": self.assignee,
            "labels": list(self.labels),
            "projectKey": self.project_key,
        }


class MetricsPayload(PayloadBase):
    """A usage/performance sample to record."""

    kind: Literal["metrics"] = "metrics"
    metric: str = Field(min_length=1)
    values: dict[str, float] = Field(default_factory=dict)

    @property
    def classifiers(self) -> tuple[str, ...]:
        return (self.metric,)

    @property
    def size(self) -> int:
        return len(self.values)

    def fingerprint_parts(self) -> list[str]:
        return [self.metric] + [f"{k}={v}" for k, v in sorted(self.values.items())]


JobPayload = Annotated[
    AnalysisPayload | IssueCreationPayload | MetricsPayload,
    Field(discriminator="kind"),
]
