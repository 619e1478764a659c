"""Pydantic schemas for the meeting job engine.

This module provides job records, payloads, results and statistics models.
"""

from .enums import CallerTier, JobKind, JobStatus, Priority, RouteDecision
from .job import (
    ALLOWED_TRANSITIONS,
    CANCELLED_ERROR,
    Job,
    JobHandle,
    JobRequest,
    JobView,
    new_job_id,
)
from .payloads import (
    AnalysisOptions,
    AnalysisPayload,
    IssueCreationPayload,
    JobPayload,
    MetricsPayload,
    normalize_text,
)
from .rate_limit import RateDecision, RateEntry, RateWindow
from .results import AnalysisResult, ExtractedIssue, IssueCreationResult, MetricsResult
from .stats import CacheStats, PoolStats, SchedulerStats

__all__ = [
    # Enums
    "CallerTier",
    "JobKind",
    "JobStatus",
    "Priority",
    "RouteDecision",
    # Jobs
    "ALLOWED_TRANSITIONS",
    "CANCELLED_ERROR",
    "Job",
    "JobHandle",
    "JobRequest",
    "JobView",
    "new_job_id",
    # Payloads
    "AnalysisOptions",
    "AnalysisPayload",
    "IssueCreationPayload",
    "JobPayload",
    "MetricsPayload",
    "normalize_text",
    # Rate limiting
    "RateDecision",
    "RateEntry",
    "RateWindow",
    # Results
    "AnalysisResult",
    "ExtractedIssue",
    "IssueCreationResult",
    "MetricsResult",
    # Stats
    "CacheStats",
    "PoolStats",
    "SchedulerStats",
]
