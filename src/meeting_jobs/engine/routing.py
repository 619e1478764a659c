"""Priority computation and immediate-vs-queued routing.

Both are pure functions of the payload, caller tier and current load.
All thresholds come from ``RoutingConfig``.
"""

from __future__ import annotations

from meeting_jobs.config import RoutingConfig
from meeting_jobs.schemas.enums import CallerTier, Priority, RouteDecision
from meeting_jobs.schemas.payloads import PayloadBase

_TIER_PRIORITY: dict[CallerTier, Priority] = {
    CallerTier.STANDARD: Priority.NORMAL,
    CallerTier.PREMIUM: Priority.HIGH,
    CallerTier.ENTERPRISE: Priority.CRITICAL,
}


def compute_priority(payload: PayloadBase, tier: CallerTier, config: RoutingConfig) -> Priority:
    """Priority for a new job (lower = more urgent).

    Starts at the caller tier's level; large content, urgent categories
    and urgent issue types raise it to HIGH. The most urgent rule wins.
    """
    candidates = [_TIER_PRIORITY.get(tier, Priority.NORMAL)]

    if payload.size > config.large_payload_chars:
        candidates.append(Priority.HIGH)
    if payload.category in config.urgent_categories:
        candidates.append(Priority.HIGH)

    issue_type = getattr(payload, "issue_type", None)
    if issue_type is not None and issue_type in config.urgent_issue_types:
        candidates.append(Priority.HIGH)

    return min(candidates)


def is_low_latency(payload: PayloadBase, config: RoutingConfig) -> bool:
    """Small payload in a latency-sensitive category."""
    return (
        payload.size < config.small_payload_chars
        and payload.category in config.low_latency_categories
    )


def choose_route(payload: PayloadBase, pending_depth: int, config: RoutingConfig) -> RouteDecision:
    """Decide whether a job bypasses batching.

    Immediate when the payload is small AND latency-sensitive, or when
    the pending depth is below the low-load threshold.
    """
    if is_low_latency(payload, config) or pending_depth < config.low_load_threshold:
        return RouteDecision.IMMEDIATE
    return RouteDecision.QUEUED
