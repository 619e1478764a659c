"""Result models returned by downstream collaborators."""

from typing import Any

from pydantic import BaseModel, Field


class ExtractedIssue(BaseModel):
    """One work item extracted from a transcript."""

    summary: str
    description: str = ""
    issue_type: str = "Task"
    priority: str | None = None
    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)


class AnalysisResult(BaseModel):
    """Outcome of one AI analysis call.

    The engine only inspects ``success`` and ``issues``; everything
    else is carried through opaquely.
    """

    success: bool
    issues: list[ExtractedIssue] = Field(default_factory=list)
    usage: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class IssueCreationResult(BaseModel):
    """Outcome of one issue-tracker create call."""

    success: bool
    key: str | None = None
    error: str | None = None


class MetricsResult(BaseModel):
    """Outcome of recording a metrics sample."""

    success: bool = True
    recorded: int = 0
    error: str | None = None
