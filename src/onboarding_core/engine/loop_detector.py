"""Circular-reasoning detection for the reasoning loop."""

from __future__ import annotations

import hashlib
import json
import re
from collections import Counter
from typing import Any

DEFAULT_REPEAT_THRESHOLD = 3

_WHITESPACE_RE = re.compile(r"\s+")


class LoopDetector:
    """Tracks thoughts and tool signatures across iterations of one run.

    A tool call is circular when the same signature (tool name plus canonical
    params) would run ``repeat_threshold`` times in a row. A thought is
    circular when its normalized form has been seen ``repeat_threshold``
    times in the run, consecutive or not.
    """

    def __init__(self, repeat_threshold: int = DEFAULT_REPEAT_THRESHOLD) -> None:
        if repeat_threshold < 2:
            raise ValueError("repeat_threshold must be >= 2")
        self.repeat_threshold = repeat_threshold
        self._thought_counts: Counter[str] = Counter()
        self._last_signature: str | None = None
        self._consecutive_identical = 0

    def reset(self) -> None:
        self._thought_counts.clear()
        self._last_signature = None
        self._consecutive_identical = 0

    def record_thought(self, thought: str) -> str | None:
        """Count a thought; return the offending pattern once it repeats too often."""

        normalized = normalize_thought(thought)
        if not normalized:
            return None
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        self._thought_counts[digest] += 1
        if self._thought_counts[digest] >= self.repeat_threshold:
            return f"Repeated thought {self._thought_counts[digest]} times: {normalized[:80]}"
        return None

    def check_tool_call(self, tool: str, params: dict[str, Any]) -> str | None:
        """Record an intended tool call.

        Returns the offending pattern when this call would be the
        ``repeat_threshold``-th identical one in a row; the caller must not
        make it.
        """

        signature = tool_signature(tool, params)
        if signature == self._last_signature:
            self._consecutive_identical += 1
        else:
            self._last_signature = signature
            self._consecutive_identical = 1
        if self._consecutive_identical >= self.repeat_threshold:
            return f"Repeated tool call {self._consecutive_identical} times: {signature}"
        return None

    def break_tool_streak(self) -> None:
        """Forget the last tool signature after an iteration that made no tool call."""

        self._last_signature = None
        self._consecutive_identical = 0


def normalize_thought(thought: str) -> str:
    return _WHITESPACE_RE.sub(" ", thought).strip().lower()


def tool_signature(tool: str, params: dict[str, Any]) -> str:
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{tool}:{canonical}"
