"""Agent executor: wraps every reasoning run with lifecycle entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from onboarding_core.engine.context import EngineContext
from onboarding_core.engine.models import (
    Actor,
    ActorType,
    ErrorInfo,
    Operation,
    ResultStatus,
    Trigger,
    TriggerType,
)
from onboarding_core.engine.reasoning import (
    AgentCapabilities,
    ReasoningCore,
    ReasoningRequest,
    ReasoningResult,
)
from onboarding_core.engine.state_computer import compute_state

logger = logging.getLogger(__name__)

DEFAULT_AGENT_OPERATION = "execute_subtask"
INSTRUCTION_PREVIEW_CHARS = 100
EXECUTIONS_KEY = "executions"


@dataclass(slots=True)
class Agent:
    """An executable agent: its capabilities plus per-tool timeout overrides."""

    capabilities: AgentCapabilities
    tool_timeouts: dict[str, float] = field(default_factory=dict)

    @property
    def agent_id(self) -> str:
        return self.capabilities.agent_id

    def actor(self) -> Actor:
        return Actor(type=ActorType.AGENT, id=self.agent_id, version=self.capabilities.version)


@dataclass(slots=True)
class AgentRequest:
    """Work handed to an agent by an orchestrator."""

    task_id: str
    instruction: str
    data: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    operation: str = DEFAULT_AGENT_OPERATION
    request_id: str = field(default_factory=lambda: f"req_{uuid4().hex}")

    def parameters(self) -> dict[str, Any]:
        return {
            "instruction": self.instruction,
            "data": self.data,
            "context": self.context,
            "expected_output": self.context.get("expected_output"),
            "success_criteria": self.context.get("success_criteria"),
            "subtask_description": self.context.get("subtask_description"),
        }


@dataclass(slots=True)
class AgentResponse:
    """What the orchestrator gets back from one agent execution."""

    status: ResultStatus
    operation: str
    data: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.0
    ui_requests: list[dict[str, Any]] = field(default_factory=list)
    error: ErrorInfo | None = None


def build_input_request(
    *,
    agent_id: str,
    needed_fields: tuple[str, ...] | list[str],
    title: str | None = None,
    instructions: str | None = None,
) -> dict[str, Any]:
    """Form request for the UI, built only from the fields the agent named."""

    return {
        "request_id": f"ui_{uuid4().hex}",
        "agent_id": agent_id,
        "template_type": "form",
        "title": title or "Additional information required",
        "instructions": instructions or "Please provide the following information.",
        "fields": [
            {
                "id": name,
                "label": name.replace("_", " ").strip().capitalize(),
                "type": "text",
                "required": True,
            }
            for name in needed_fields
        ],
    }


class AgentExecutor:
    """Runs agents and records exactly one terminal lifecycle entry per run.

    ``agent_execution_started`` is appended before the loop starts. The run
    then ends with ``agent_execution_paused`` (needs input),
    ``agent_execution_completed`` (completed or error results) or
    ``agent_execution_failed`` (the run raised; the exception is re-raised).
    Each entry stores its run record under ``data["executions"][request_id]``.
    Executions for one task must be serialized by the caller.
    """

    def __init__(self, context: EngineContext) -> None:
        self.context = context

    def execute(self, agent: Agent, request: AgentRequest) -> AgentResponse:
        actor = agent.actor()
        trigger = Trigger(
            type=TriggerType.ORCHESTRATOR_REQUEST,
            source="agent_executor",
            details={"request_id": request.request_id},
        )
        execution = {
            "agent_id": agent.agent_id,
            "request_id": request.request_id,
            "operation": request.operation,
            "instruction": request.instruction[:INSTRUCTION_PREVIEW_CHARS],
        }
        logger.info(
            "Starting agent %s for task %s (request %s)",
            agent.agent_id,
            request.task_id,
            request.request_id,
        )

        state = compute_state(self.context.event_log.read(request.task_id))
        self.context.event_log.append(
            task_id=request.task_id,
            actor=actor,
            operation=Operation.AGENT_EXECUTION_STARTED,
            data=_execution_data(execution),
            reasoning=f"Agent {agent.agent_id} started {request.operation}",
            confidence=1.0,
            trigger=trigger,
        )
        self._notify(Operation.AGENT_EXECUTION_STARTED, request.task_id, execution)

        reasoning_settings = self.context.settings.reasoning
        core = ReasoningCore(
            agent.capabilities,
            max_iterations=reasoning_settings.max_iterations,
            repeat_threshold=reasoning_settings.repeat_threshold,
            default_tool_timeout_seconds=reasoning_settings.tool_timeout_seconds,
            tool_workers=reasoning_settings.tool_workers,
        )
        try:
            result = core.run(
                ReasoningRequest(
                    task_id=request.task_id,
                    operation=request.operation,
                    parameters=request.parameters(),
                    task_state=state,
                    tool_timeouts=dict(agent.tool_timeouts),
                ),
            )
        except Exception as error:
            logger.exception(
                "Agent %s failed on task %s (request %s)",
                agent.agent_id,
                request.task_id,
                request.request_id,
            )
            failed = {**execution, "error": str(error), "error_type": type(error).__name__}
            self.context.event_log.append(
                task_id=request.task_id,
                actor=actor,
                operation=Operation.AGENT_EXECUTION_FAILED,
                data=_execution_data(failed),
                reasoning=f"Agent {agent.agent_id} raised {type(error).__name__}",
                confidence=1.0,
                trigger=trigger,
            )
            self._notify(Operation.AGENT_EXECUTION_FAILED, request.task_id, failed)
            raise

        response = _to_response(agent.agent_id, result)
        if response.status is ResultStatus.NEEDS_INPUT:
            self._record_paused(request, actor, trigger, execution, result, response)
        else:
            self._record_completed(request, actor, trigger, execution, result)
        logger.info(
            "Agent %s finished task %s with status %s",
            agent.agent_id,
            request.task_id,
            response.status.value,
        )
        return response

    def _record_paused(  # noqa: PLR0913
        self,
        request: AgentRequest,
        actor: Actor,
        trigger: Trigger,
        execution: dict[str, Any],
        result: ReasoningResult,
        response: AgentResponse,
    ) -> None:
        paused = {
            **execution,
            "status": result.status.value,
            "needed_fields": list(result.needed_fields),
            "ui_request": response.ui_requests[0] if response.ui_requests else None,
        }
        self.context.event_log.append(
            task_id=request.task_id,
            actor=actor,
            operation=Operation.AGENT_EXECUTION_PAUSED,
            data=_execution_data(paused),
            reasoning=result.reasoning,
            confidence=result.confidence,
            trigger=trigger,
        )
        self._notify(Operation.AGENT_EXECUTION_PAUSED, request.task_id, paused)

    def _record_completed(  # noqa: PLR0913
        self,
        request: AgentRequest,
        actor: Actor,
        trigger: Trigger,
        execution: dict[str, Any],
        result: ReasoningResult,
    ) -> None:
        completed = {
            **execution,
            "status": result.status.value,
            "result_operation": result.operation,
            "result": result.data,
            "error": result.error.to_dict() if result.error is not None else None,
            "reasoning_trace": result.trace.to_dict() if result.trace is not None else None,
        }
        self.context.event_log.append(
            task_id=request.task_id,
            actor=actor,
            operation=Operation.AGENT_EXECUTION_COMPLETED,
            data=_execution_data(completed),
            reasoning=result.reasoning,
            confidence=result.confidence,
            trigger=trigger,
        )
        self._notify(
            Operation.AGENT_EXECUTION_COMPLETED,
            request.task_id,
            {key: value for key, value in completed.items() if key != "reasoning_trace"},
        )

    def _notify(self, operation: Operation, task_id: str, payload: dict[str, Any]) -> None:
        self.context.audit.publish(operation.value, {"task_id": task_id, **payload})


def _execution_data(record: dict[str, Any]) -> dict[str, Any]:
    # One record per request id; a later entry for the same run replaces it whole.
    return {EXECUTIONS_KEY: {record["request_id"]: record}}


def _to_response(agent_id: str, result: ReasoningResult) -> AgentResponse:
    ui_requests: list[dict[str, Any]] = []
    if result.status is ResultStatus.NEEDS_INPUT and result.needed_fields:
        ui_requests.append(
            build_input_request(
                agent_id=agent_id,
                needed_fields=result.needed_fields,
                title=result.ui_hints.get("title"),
                instructions=result.ui_hints.get("instructions"),
            ),
        )
    return AgentResponse(
        status=result.status,
        operation=result.operation,
        data=dict(result.data),
        reasoning=result.reasoning,
        confidence=result.confidence,
        ui_requests=ui_requests,
        error=result.error,
    )
