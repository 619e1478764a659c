"""Payload validation and sanitization.

Every request goes through ``validate_request`` before it reaches the
rate limiter or cache. Transcripts are untrusted: HTML is reduced to
simple formatting, script-capable URL schemes are neutralised, and
(by default) known prompt-injection phrasing is rejected.

All failures raise ``ValidationFailedError``; nothing here is retried.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError

from meeting_jobs.config import ValidationConfig
from meeting_jobs.exceptions import ValidationFailedError
from meeting_jobs.logging import get_logger
from meeting_jobs.schemas.job import JobRequest
from meeting_jobs.schemas.payloads import (
    AnalysisPayload,
    IssueCreationPayload,
    MetricsPayload,
    PayloadBase,
)

logger = get_logger(__name__)

ALLOWED_TAGS = frozenset({"p", "br", "strong", "em", "ul", "ol", "li", "h1", "h2", "h3"})

INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"system\s*:\s*you\s+are", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"<\|.*?\|>"),
    re.compile(r"\{\{.*?\}\}", re.DOTALL),
    re.compile(r"<%.*?%>", re.DOTALL),
)

_SCRIPT_BLOCK = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b[^>]*?(/?)>")
_SCHEMES = (
    (re.compile(r"javascript:", re.IGNORECASE), "script-removed:"),
    (re.compile(r"vbscript:", re.IGNORECASE), "script-removed:"),
    (re.compile(r"data:", re.IGNORECASE), "data-removed:"),
)


def detect_prompt_injection(text: str) -> tuple[bool, str]:
    """Return (True, pattern) if ``text`` contains typical injection phrasing."""
    for pattern in INJECTION_PATTERNS:
        if pattern.search(text or ""):
            return True, pattern.pattern
    return False, ""


def _keep_simple_tag(match: re.Match[str]) -> str:
    closing, name, self_closing = match.group(1), match.group(2).lower(), match.group(3)
    if name not in ALLOWED_TAGS:
        return ""
    return f"<{closing}{name}{self_closing}>"


def sanitize_text(text: str) -> str:
    """Strip unsafe markup and neutralise script-capable URL schemes."""
    cleaned = _SCRIPT_BLOCK.sub("", text)
    cleaned = _COMMENT.sub("", cleaned)
    cleaned = _TAG.sub(_keep_simple_tag, cleaned)
    for pattern, replacement in _SCHEMES:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


class PayloadValidator:
    """Checks limits and sanitizes payload text fields.

    Usage:
        validator = PayloadValidator(settings.validation)
        request = validator.validate({"subject": "U1", "payload": {...}})
    """

    def __init__(self, config: ValidationConfig | None = None) -> None:
        self._config = config or ValidationConfig()

    def validate(self, request: JobRequest | dict[str, Any]) -> JobRequest:
        """Validate and sanitize a request.

        Args:
            request: A parsed request or raw mapping

        Returns:
            A request whose payload has been sanitized

        Raises:
            ValidationFailedError: If the request is malformed, oversized or unsafe
        """
        if not isinstance(request, JobRequest):
            try:
                request = JobRequest.model_validate(request)
            except ValidationError as e:
                errors = [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                ]
                raise ValidationFailedError("Malformed job request", errors) from e

        errors: list[str] = []
        self._check_field("subject", request.subject, errors)
        payload = self._sanitize(request.payload, errors)

        if errors:
            logger.warning(
                "Rejected {} request from {}: {}", request.kind.value, request.subject, errors
            )
            raise ValidationFailedError(f"Invalid {request.kind.value} payload", errors)

        return request.model_copy(update={"payload": payload})

    # -------------------------------------------------------------------------
    # Per-kind Rules
    # -------------------------------------------------------------------------
    def _sanitize(self, payload: PayloadBase, errors: list[str]) -> PayloadBase:
        if isinstance(payload, AnalysisPayload):
            return self._sanitize_analysis(payload, errors)
        if isinstance(payload, IssueCreationPayload):
            return self._sanitize_issue(payload, errors)
        if isinstance(payload, MetricsPayload):
            self._check_field("metric", payload.metric, errors)
            return payload
        errors.append(f"unsupported payload kind: {payload.kind}")
        return payload

    def _sanitize_analysis(self, payload: AnalysisPayload, errors: list[str]) -> AnalysisPayload:
        self._check_field("meeting_type", payload.meeting_type, errors)
        self._check_field("issue_type", payload.issue_type, errors)
        if payload.options.project_key is not None:
            self._check_field("options.project_key", payload.options.project_key, errors)

        notes = self._check_long_text("notes", payload.notes, errors)
        return payload.model_copy(update={"notes": notes})

    def _sanitize_issue(
        self, payload: IssueCreationPayload, errors: list[str]
    ) -> IssueCreationPayload:
        self._check_field("issue_type", payload.issue_type, errors)
        self._check_field("project_key", payload.project_key, errors)
        for label in payload.labels:
            self._check_field("labels", label, errors)

        summary = sanitize_text(payload.summary)
        if not summary:
            errors.append("summary: must not be empty")
        elif len(summary) > self._config.max_field_length:
            errors.append(f"summary: exceeds {self._config.max_field_length} characters")

        description = sanitize_text(payload.description)
        if len(description) > self._config.max_notes_length:
            errors.append(f"description: exceeds {self._config.max_notes_length} characters")

        return payload.model_copy(update={"summary": summary, "description": description})

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _check_field(self, name: str, value: str, errors: list[str]) -> None:
        if not value.strip():
            errors.append(f"{name}: must not be empty")
        elif len(value) > self._config.max_field_length:
            errors.append(f"{name}: exceeds {self._config.max_field_length} characters")

    def _check_long_text(self, name: str, value: str, errors: list[str]) -> str:
        if len(value) > self._config.max_notes_length:
            errors.append(f"{name}: exceeds {self._config.max_notes_length} characters")
            return value

        if self._config.reject_prompt_injection:
            found, pattern = detect_prompt_injection(value)
            if found:
                errors.append(f"{name}: contains disallowed instruction pattern ({pattern})")
                return value

        sanitized = sanitize_text(value)
        if not sanitized:
            errors.append(f"{name}: empty after sanitization")
        return sanitized


def validate_request(
    request: JobRequest | dict[str, Any],
    config: ValidationConfig | None = None,
) -> JobRequest:
    """Convenience wrapper around ``PayloadValidator.validate``."""
    return PayloadValidator(config).validate(request)
