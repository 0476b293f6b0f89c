"""Collaborator protocols and the explicit context object passed to engine services."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from onboarding_core.config import Settings
from onboarding_core.engine.audit import BestEffortAudit
from onboarding_core.engine.errors import ToolError
from onboarding_core.engine.models import (
    SYSTEM_TRIGGER,
    Actor,
    ContextEntry,
    ErrorClass,
    Operation,
    TaskContext,
    TaskCreate,
    TaskStatus,
    TaskView,
    Trigger,
)


class EventStore(Protocol):
    def append(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        actor: Actor,
        operation: str | Operation,
        data: dict[str, Any] | None = None,
        reasoning: str | None = None,
        confidence: object = None,
        trigger: Trigger = SYSTEM_TRIGGER,
    ) -> ContextEntry: ...

    def read(self, task_id: str, from_sequence: int | None = None) -> list[ContextEntry]: ...


class TaskStore(Protocol):
    def create_task(self, payload: TaskCreate) -> TaskView: ...

    def get_task(self, task_id: str) -> TaskView | None: ...

    def list_by_status(self, status: TaskStatus) -> list[TaskView]: ...

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]: ...

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        expected_status: TaskStatus | None = None,
    ) -> bool: ...


class ToolRegistry(Protocol):
    """Named tools an agent may call; ``invoke`` blocks until the tool returns."""

    def names(self) -> list[str]: ...

    def invoke(self, name: str, params: dict[str, Any]) -> object: ...


class DecisionMaker(Protocol):
    """Probabilistic decider (LLM client or scripted fake)."""

    def decide(self, prompt: str) -> object:
        """Return a raw decision payload: a dict or JSON text."""


class Orchestrator(Protocol):
    def resume(self, context: TaskContext) -> None:
        """Continue a recovered task from its rehydrated context."""


class MappingToolRegistry:
    """Tool registry over a plain ``name -> callable(params)`` mapping."""

    def __init__(self, tools: Mapping[str, Callable[[dict[str, Any]], object]]) -> None:
        self._tools = dict(tools)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def invoke(self, name: str, params: dict[str, Any]) -> object:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolError(f"Unknown tool: {name}", error_class=ErrorClass.PERMANENT)
        return tool(params)


@dataclass(slots=True)
class EngineContext:
    """Stores, settings and audit channel shared by executor, runner and recovery."""

    event_log: EventStore
    tasks: TaskStore
    settings: Settings = field(default_factory=Settings)
    audit: BestEffortAudit = field(default_factory=BestEffortAudit)
