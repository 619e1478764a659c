"""Downstream collaborator interfaces and their result models."""

from meeting_jobs.collaborators.protocols import AnalysisClient, IssueTracker, MetricsRecorder
from meeting_jobs.schemas.results import (
    AnalysisResult,
    ExtractedIssue,
    IssueCreationResult,
    MetricsResult,
)

__all__ = [
    "AnalysisClient",
    "AnalysisResult",
    "ExtractedIssue",
    "IssueCreationResult",
    "IssueTracker",
    "MetricsRecorder",
    "MetricsResult",
]
