from __future__ import annotations

import allure
import pytest

from onboarding_core.engine.loop_detector import LoopDetector, normalize_thought, tool_signature

pytestmark = [
    allure.epic("Task Execution Core"),
    allure.feature("Reasoning Core"),
]


def test_third_consecutive_identical_tool_call_is_flagged() -> None:
    detector = LoopDetector()

    assert detector.check_tool_call("search", {"q": "acme", "page": 1}) is None
    assert detector.check_tool_call("search", {"page": 1, "q": "acme"}) is None
    pattern = detector.check_tool_call("search", {"q": "acme", "page": 1})

    assert pattern is not None
    assert "search" in pattern


def test_different_params_reset_the_tool_streak() -> None:
    detector = LoopDetector()

    detector.check_tool_call("search", {"q": "a"})
    detector.check_tool_call("search", {"q": "a"})
    assert detector.check_tool_call("search", {"q": "b"}) is None
    assert detector.check_tool_call("search", {"q": "a"}) is None


def test_break_tool_streak_forgets_previous_call() -> None:
    detector = LoopDetector()

    detector.check_tool_call("search", {"q": "a"})
    detector.check_tool_call("search", {"q": "a"})
    detector.break_tool_streak()

    assert detector.check_tool_call("search", {"q": "a"}) is None


def test_thought_repeats_are_counted_after_normalization() -> None:
    detector = LoopDetector()

    assert detector.record_thought("Check the registry") is None
    assert detector.record_thought("Something else") is None
    assert detector.record_thought("  check   the REGISTRY ") is None
    assert detector.record_thought("check the registry") is not None


def test_empty_thoughts_are_ignored() -> None:
    detector = LoopDetector(repeat_threshold=2)

    assert detector.record_thought("") is None
    assert detector.record_thought("   ") is None


def test_threshold_must_allow_one_repeat() -> None:
    with pytest.raises(ValueError, match="repeat_threshold"):
        LoopDetector(repeat_threshold=1)


def test_signature_helpers_are_canonical() -> None:
    assert normalize_thought("  A\n b ") == "a b"
    assert tool_signature("t", {"b": 1, "a": 2}) == tool_signature("t", {"a": 2, "b": 1})
