from __future__ import annotations

import allure
import pytest

from onboarding_core.engine.decisions import (
    Answer,
    Continue,
    Help,
    NeedsUserInput,
    ToolCall,
    parse_decision,
)
from onboarding_core.engine.errors import DecisionFormatError

pytestmark = [
    allure.epic("Task Execution Core"),
    allure.feature("Reasoning Core"),
]


def test_parses_tool_call_from_dict() -> None:
    decision = parse_decision(
        {
            "thought": "Look in memory first",
            "action": "tool",
            "details": {
                "tool": "searchBusinessMemory",
                "params": {"query": "acme"},
                "learned": {"hint": "acme"},
            },
        },
    )

    assert decision == ToolCall(
        thought="Look in memory first",
        tool="searchBusinessMemory",
        params={"query": "acme"},
        learned={"hint": "acme"},
    )


def test_parses_fenced_json_answer() -> None:
    raw = """```json
{"thought": "Done", "action": "answer",
 "details": {"operation": "business_profile_collected",
             "data": {"entityType": "LLC"}, "confidence": 0.9}}
```"""

    decision = parse_decision(raw)

    assert isinstance(decision, Answer)
    assert decision.operation == "business_profile_collected"
    assert decision.data == {"entityType": "LLC"}
    assert decision.confidence == 0.9
    assert decision.reasoning is None


def test_parses_needs_user_input_with_ui_hints() -> None:
    decision = parse_decision(
        {
            "thought": "Cannot find it",
            "action": "needs_user_input",
            "details": {
                "needed_fields": ["business_name", " ein "],
                "uiRequest": {"title": "Business details", "instructions": "Fill in"},
            },
        },
    )

    assert isinstance(decision, NeedsUserInput)
    assert decision.needed_fields == ("business_name", "ein")
    assert decision.title == "Business details"
    assert decision.instructions == "Fill in"


def test_parses_help_and_continue() -> None:
    help_decision = parse_decision(
        {"action": "help", "details": {"reason": "data_missing", "pattern": "no records"}},
    )
    continue_decision = parse_decision(
        {"thought": "Noting facts", "action": "continue", "details": {"learned": {"a": 1}}},
    )

    assert help_decision == Help(thought="", reason="data_missing", pattern="no records")
    assert continue_decision == Continue(thought="Noting facts", learned={"a": 1})


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("not json at all", "not valid JSON"),
        ("[1, 2]", "must be an object"),
        (42, "object or JSON text"),
        ({"thought": "x"}, "missing an 'action'"),
        ({"action": "dance"}, "Unknown decision action"),
        ({"action": "tool", "details": {"params": {}}}, "non-empty 'tool'"),
        ({"action": "tool", "details": {"tool": "x", "params": [1]}}, "'params' must be"),
        ({"action": "answer", "details": {}}, "requires an 'operation'"),
        ({"action": "needs_user_input", "details": {"needed_fields": []}}, "non-empty"),
        ({"action": "needs_user_input", "details": {"needed_fields": [""]}}, "non-empty string"),
        ({"action": "continue", "details": "oops"}, "'details' must be"),
    ],
)
def test_rejects_malformed_decisions(raw: object, message: str) -> None:
    with pytest.raises(DecisionFormatError, match=message):
        parse_decision(raw)
