"""Interfaces of the downstream services the engine calls.

The engine never depends on a concrete client; any object with the
matching async method can be injected.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from meeting_jobs.schemas.payloads import AnalysisPayload, MetricsPayload
from meeting_jobs.schemas.results import AnalysisResult, IssueCreationResult, MetricsResult


@runtime_checkable
class AnalysisClient(Protocol):
    """AI analysis service: one call per job.

    Raise ``NonRetryableDownstreamError`` for input the service rejects
    outright; any other exception (including timeouts) is retried.
    """

    async def analyze(self, payload: AnalysisPayload) -> AnalysisResult: ...


@runtime_checkable
class IssueTracker(Protocol):
    """Issue-tracker service: one call per work item."""

    async def create_issue(self, fields: dict[str, Any]) -> IssueCreationResult: ...


@runtime_checkable
class MetricsRecorder(Protocol):
    """Usage/performance metrics sink."""

    async def record(self, payload: MetricsPayload) -> MetricsResult: ...
