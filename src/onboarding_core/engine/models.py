"""Domain models for the event log, task state and reasoning runs."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_REASONING = "No reasoning provided"
DEFAULT_CONFIDENCE = 0.5


class TaskStatus(str, Enum):
    """Closed status vocabulary shared with orchestration callers."""

    CREATED = "created"
    IN_PROGRESS = "in_progress"
    PAUSED_FOR_INPUT = "paused_for_input"
    COMPLETED = "completed"
    FAILED = "failed"


class ActorType(str, Enum):
    AGENT = "agent"
    USER = "user"
    SYSTEM = "system"


class TriggerType(str, Enum):
    ORCHESTRATOR_REQUEST = "orchestrator_request"
    USER_REQUEST = "user_request"
    SYSTEM_EVENT = "system_event"


class ResultStatus(str, Enum):
    """Outcome of one reasoning run or agent execution."""

    COMPLETED = "completed"
    NEEDS_INPUT = "needs_input"
    ERROR = "error"


class ErrorClass(str, Enum):
    """Normalized error taxonomy used across the loop and the executor."""

    TRANSIENT = "transient"
    DATA_MISSING = "data_missing"
    AUTHORIZATION = "authorization"
    PERMANENT = "permanent"
    CIRCULAR_REASONING = "circular_reasoning"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class Operation(str, Enum):
    """Operation tags with a defined meaning for state folding and lifecycle."""

    TASK_CREATED = "task_created"
    TASK_STARTED = "task_started"
    TASK_PAUSED = "task_paused"
    TASK_RESUMED = "task_resumed"
    TASK_RECOVERED = "task_recovered"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    PROGRESS_UPDATED = "progress_updated"
    USER_INPUT_RECEIVED = "user_input_received"
    AGENT_EXECUTION_STARTED = "agent_execution_started"
    AGENT_EXECUTION_PAUSED = "agent_execution_paused"
    AGENT_EXECUTION_COMPLETED = "agent_execution_completed"
    AGENT_EXECUTION_FAILED = "agent_execution_failed"


AGENT_STATUS_TO_TASK_STATUS: dict[ResultStatus, TaskStatus] = {
    ResultStatus.COMPLETED: TaskStatus.COMPLETED,
    ResultStatus.NEEDS_INPUT: TaskStatus.PAUSED_FOR_INPUT,
    ResultStatus.ERROR: TaskStatus.FAILED,
}


def operation_name(operation: str | Operation) -> str:
    """Plain string tag for an operation given as enum member or free-form text."""

    if isinstance(operation, Operation):
        return operation.value
    return operation


def clamp_confidence(value: object) -> float:
    """Coerce a producer-supplied confidence into [0.0, 1.0]."""

    if isinstance(value, bool) or not isinstance(value, int | float):
        return DEFAULT_CONFIDENCE
    number = float(value)
    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


@dataclass(frozen=True, slots=True)
class Actor:
    """Who appended an entry."""

    type: ActorType
    id: str
    version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "id": self.id, "version": self.version}


@dataclass(frozen=True, slots=True)
class Trigger:
    """What caused an entry to be appended."""

    type: TriggerType
    source: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "source": self.source, "details": dict(self.details)}


SYSTEM_TRIGGER = Trigger(type=TriggerType.SYSTEM_EVENT, source="system")


@dataclass(frozen=True, slots=True)
class ContextEntry:
    """One immutable, sequence-numbered record of something an actor did to a task."""

    entry_id: str
    task_id: str
    sequence_number: int
    timestamp: datetime
    actor: Actor
    operation: str
    data: dict[str, Any]
    reasoning: str
    confidence: float
    trigger: Trigger

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "task_id": self.task_id,
            "sequence_number": self.sequence_number,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor.to_dict(),
            "operation": self.operation,
            "data": self.data,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "trigger": self.trigger.to_dict(),
        }


@dataclass(slots=True)
class TaskState:
    """Snapshot derived by folding a task's context entries."""

    status: TaskStatus = TaskStatus.CREATED
    phase: str = "initialization"
    completeness: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    last_sequence: int = 0
    last_updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "phase": self.phase,
            "completeness": self.completeness,
            "data": self.data,
            "last_sequence": self.last_sequence,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a coarse task record."""

    task_type: str
    business_id: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Coarse-grained task record."""

    task_id: str
    business_id: str
    task_type: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskContext:
    """Rehydrated task: coarse record, full log and replayed state."""

    task: TaskView
    entries: list[ContextEntry]
    state: TaskState


@dataclass(slots=True)
class ErrorInfo:
    """Error attached to a reasoning result or agent response."""

    error_class: ErrorClass
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def recoverable(self) -> bool:
        return self.error_class in {ErrorClass.TRANSIENT, ErrorClass.DATA_MISSING}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_class": self.error_class.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


@dataclass(slots=True)
class ToolInvocation:
    """One tool call made during a reasoning run."""

    name: str
    iteration: int
    succeeded: bool
    duration_ms: int
    error_class: ErrorClass | None = None

    @property
    def label(self) -> str:
        return f"{self.name}_{self.iteration}"


@dataclass(slots=True)
class ReasoningTrace:
    """Diagnostics of a completed reasoning run."""

    iterations: int
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    knowledge: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def tools_used(self) -> list[str]:
        return [invocation.label for invocation in self.tool_invocations]

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "tools_used": self.tools_used,
            "knowledge_gained": dict(self.knowledge),
            "duration_ms": self.duration_ms,
        }
