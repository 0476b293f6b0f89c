"""Deterministic tool failure classification for the reasoning loop."""

from __future__ import annotations

import re
from dataclasses import dataclass

from onboarding_core.engine.models import ErrorClass

TOOL_FAILURE_CLASSIFIER_VERSION = 2

_AUTHORIZATION_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "access denied",
    "invalid credentials",
    "invalid api key",
    "authentication",
    "not authorized",
    "401",
    "403",
)
_DATA_MISSING_PATTERNS: tuple[str, ...] = (
    "not found",
    "no results",
    "no record",
    "missing",
    "required field",
    "is required",
    "404",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "too many requests",
    "rate limit",
    "try again later",
    "429",
    "503",
)


@dataclass(slots=True)
class ToolFailureClassification:
    """Normalized tool failure classification result."""

    error_class: ErrorClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self, *, tool: str) -> dict[str, object]:
        """Serialize classifier diagnostics for observations and errors."""

        return {
            "classifier_version": TOOL_FAILURE_CLASSIFIER_VERSION,
            "tool": tool,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_tool_failure(
    *,
    tool: str,
    message: str,
    explicit_class: ErrorClass | None = None,
    timed_out: bool = False,
) -> ToolFailureClassification:
    """Classify a tool failure into the error taxonomy."""

    if explicit_class is not None:
        return ToolFailureClassification(
            error_class=explicit_class,
            reason_code=f"{tool}_{explicit_class.value}",
            matched_rule="explicit",
            matched_pattern=None,
        )
    if timed_out:
        return ToolFailureClassification(
            error_class=ErrorClass.TRANSIENT,
            reason_code=f"{tool}_timeout",
            matched_rule="timeout",
            matched_pattern=None,
        )

    haystack = message.lower()

    pattern = _first_match(haystack, _AUTHORIZATION_PATTERNS)
    if pattern is not None:
        return ToolFailureClassification(
            error_class=ErrorClass.AUTHORIZATION,
            reason_code=f"{tool}_authorization",
            matched_rule="authorization",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return ToolFailureClassification(
            error_class=ErrorClass.TRANSIENT,
            reason_code=f"{tool}_transient",
            matched_rule="transient",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _DATA_MISSING_PATTERNS)
    if pattern is not None:
        return ToolFailureClassification(
            error_class=ErrorClass.DATA_MISSING,
            reason_code=f"{tool}_data_missing",
            matched_rule="data_missing",
            matched_pattern=pattern,
        )

    return ToolFailureClassification(
        error_class=ErrorClass.PERMANENT,
        reason_code=f"{tool}_permanent",
        matched_rule="fallback_permanent",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern.isdigit():
            # Status codes only count as standalone numbers, never inside ids.
            if re.search(rf"(?<!\d){pattern}(?!\d)", haystack):
                return pattern
        elif pattern in haystack:
            return pattern
    return None
