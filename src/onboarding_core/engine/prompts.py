"""Prompt templates handed to decision makers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

_DECISION_FORMAT = """{
  "thought": "<what you are reasoning about>",
  "action": "tool | answer | needs_user_input | help | continue",
  "details": {
    "tool": "<tool name, for action=tool>",
    "params": {},
    "operation": "<result operation, for action=answer>",
    "data": {},
    "reasoning": "<why, for action=answer>",
    "confidence": 0.0,
    "needed_fields": ["<field id, for action=needs_user_input>"],
    "ui_request": {"title": "", "instructions": ""},
    "reason": "<for action=help>",
    "learned": {}
  }
}"""


@dataclass(slots=True)
class PromptTemplates:
    """Agent-specific prompt text; the loop fills in the run context."""

    system: str = "You are an onboarding agent working on one task at a time."
    iteration_instructions: str = (
        "Decide the single next step. Call a tool when you need data, answer when "
        "you have enough, ask for user input only for fields you cannot obtain."
    )
    single_pass_instructions: str = (
        "No tools are available. Answer from the task state, or request user input."
    )


def render_iteration_prompt(  # noqa: PLR0913
    templates: PromptTemplates,
    *,
    operation: str,
    parameters: dict[str, Any],
    task_state: dict[str, Any],
    knowledge: dict[str, Any],
    history: list[dict[str, Any]],
    tool_names: list[str],
    iteration: int,
    max_iterations: int,
) -> str:
    """Build the prompt for one iteration of the reasoning loop."""

    tools = ", ".join(tool_names) if tool_names else "(none)"
    return (
        f"{templates.system}\n"
        f"\n"
        f"Operation: {operation}\n"
        f"Iteration {iteration} of {max_iterations}.\n"
        f"Available tools: {tools}\n"
        f"\n"
        f"Request parameters:\n{_dump(parameters)}\n"
        f"\n"
        f"Current task state:\n{_dump(task_state)}\n"
        f"\n"
        f"Knowledge gathered so far:\n{_dump(knowledge)}\n"
        f"\n"
        f"Previous iterations:\n{_dump(history)}\n"
        f"\n"
        f"{templates.iteration_instructions}\n"
        f"Respond with JSON only, in this format:\n"
        f"{_DECISION_FORMAT}\n"
    )


def render_single_pass_prompt(
    templates: PromptTemplates,
    *,
    operation: str,
    parameters: dict[str, Any],
    task_state: dict[str, Any],
) -> str:
    """Build the prompt for an agent without tools."""

    return (
        f"{templates.system}\n"
        f"\n"
        f"Operation: {operation}\n"
        f"\n"
        f"Request parameters:\n{_dump(parameters)}\n"
        f"\n"
        f"Current task state:\n{_dump(task_state)}\n"
        f"\n"
        f"{templates.single_pass_instructions}\n"
        f"Respond with JSON only, in this format:\n"
        f"{_DECISION_FORMAT}\n"
    )


def _dump(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, sort_keys=True, default=str)
