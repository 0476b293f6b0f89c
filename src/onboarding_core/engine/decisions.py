"""Decision variants produced by a decision maker, validated once at the boundary.

A raw decision is a JSON object (or JSON text, optionally inside a Markdown
code fence) shaped as::

    {"thought": "...", "action": "tool", "details": {"tool": "...", "params": {}}}

``action`` is one of ``tool``, ``answer``, ``needs_user_input``, ``help`` and
``continue``. ``details.learned`` may carry facts for any action.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from onboarding_core.engine.errors import DecisionFormatError

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ToolCall:
    thought: str
    tool: str
    params: dict[str, Any] = field(default_factory=dict)
    learned: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Answer:
    thought: str
    operation: str
    data: dict[str, Any] = field(default_factory=dict)
    reasoning: str | None = None
    confidence: object = None
    learned: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NeedsUserInput:
    """Request for more user data; ``needed_fields`` is never empty."""

    thought: str
    needed_fields: tuple[str, ...]
    title: str | None = None
    instructions: str | None = None
    learned: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Help:
    thought: str
    reason: str
    pattern: str | None = None
    learned: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Continue:
    thought: str
    learned: dict[str, Any] = field(default_factory=dict)


Decision = ToolCall | Answer | NeedsUserInput | Help | Continue


def parse_decision(raw: object) -> Decision:
    """Validate a raw decision payload into one of the decision variants."""

    payload = _load_payload(raw)
    thought = payload.get("thought")
    if not isinstance(thought, str):
        thought = ""
    action = payload.get("action")
    if not isinstance(action, str) or not action.strip():
        raise DecisionFormatError("Decision is missing an 'action'.")
    details = payload.get("details", {})
    if details is None:
        details = {}
    if not isinstance(details, dict):
        raise DecisionFormatError("Decision 'details' must be an object.")
    learned = _optional_object(details, "learned")

    action = action.strip().lower()
    if action in {"tool", "tool_call"}:
        tool = details.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise DecisionFormatError("Tool decision requires a non-empty 'tool' name.")
        return ToolCall(
            thought=thought,
            tool=tool.strip(),
            params=_optional_object(details, "params"),
            learned=learned,
        )
    if action == "answer":
        operation = details.get("operation")
        if not isinstance(operation, str) or not operation.strip():
            raise DecisionFormatError("Answer decision requires an 'operation'.")
        reasoning = details.get("reasoning")
        return Answer(
            thought=thought,
            operation=operation.strip(),
            data=_optional_object(details, "data"),
            reasoning=reasoning if isinstance(reasoning, str) else None,
            confidence=details.get("confidence"),
            learned=learned,
        )
    if action == "needs_user_input":
        return _parse_needs_user_input(thought, details, learned)
    if action == "help":
        reason = details.get("reason")
        pattern = details.get("pattern")
        return Help(
            thought=thought,
            reason=reason if isinstance(reason, str) and reason else "unspecified",
            pattern=pattern if isinstance(pattern, str) else None,
            learned=learned,
        )
    if action == "continue":
        return Continue(thought=thought, learned=learned)
    raise DecisionFormatError(f"Unknown decision action: {action!r}")


def _parse_needs_user_input(
    thought: str,
    details: dict[str, Any],
    learned: dict[str, Any],
) -> NeedsUserInput:
    fields = details.get("needed_fields")
    if not isinstance(fields, list) or not fields:
        raise DecisionFormatError("needs_user_input requires a non-empty 'needed_fields' list.")
    if not all(isinstance(name, str) and name.strip() for name in fields):
        raise DecisionFormatError("Every needed field must be a non-empty string.")

    ui_request = details.get("ui_request") or details.get("uiRequest") or {}
    if not isinstance(ui_request, dict):
        raise DecisionFormatError("'ui_request' must be an object.")
    title = ui_request.get("title")
    instructions = ui_request.get("instructions")
    return NeedsUserInput(
        thought=thought,
        needed_fields=tuple(name.strip() for name in fields),
        title=title if isinstance(title, str) else None,
        instructions=instructions if isinstance(instructions, str) else None,
        learned=learned,
    )


def _load_payload(raw: object) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise DecisionFormatError(
            f"Decision must be an object or JSON text, got {type(raw).__name__}.",
        )
    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise DecisionFormatError(f"Decision is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise DecisionFormatError("Decision JSON must be an object.")
    return payload


def _optional_object(details: dict[str, Any], key: str) -> dict[str, Any]:
    value = details.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecisionFormatError(f"Decision '{key}' must be an object.")
    return value
