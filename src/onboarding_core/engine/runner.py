"""Single-agent task runner used by the CLI and as a recovery resume target."""

from __future__ import annotations

import logging
from typing import Any

from onboarding_core.engine.context import EngineContext
from onboarding_core.engine.errors import TaskNotFoundError
from onboarding_core.engine.executor import Agent, AgentExecutor, AgentRequest, AgentResponse
from onboarding_core.engine.models import (
    AGENT_STATUS_TO_TASK_STATUS,
    Actor,
    ActorType,
    Operation,
    ResultStatus,
    TaskContext,
    TaskCreate,
    TaskStatus,
    TaskView,
    Trigger,
    TriggerType,
)
from onboarding_core.engine.state_computer import compute_state

logger = logging.getLogger(__name__)

RUNNER_ACTOR = Actor(type=ActorType.SYSTEM, id="task_runner")
_RUNNER_TRIGGER = Trigger(type=TriggerType.ORCHESTRATOR_REQUEST, source="task_runner")


class TaskRunner:
    """Drives one agent through a task and keeps the coarse status in step with the log."""

    def __init__(self, context: EngineContext, agent: Agent) -> None:
        self.context = context
        self.agent = agent
        self.executor = AgentExecutor(context)

    def create_task(self, task_type: str, *, business_id: str | None = None) -> TaskView:
        task = self.context.tasks.create_task(
            TaskCreate(task_type=task_type, business_id=business_id),
        )
        self.context.event_log.append(
            task_id=task.task_id,
            actor=RUNNER_ACTOR,
            operation=Operation.TASK_CREATED,
            data={"task_type": task.task_type, "business_id": task.business_id},
            reasoning=f"Task of type {task.task_type} created",
            confidence=1.0,
            trigger=_RUNNER_TRIGGER,
        )
        return task

    def start(
        self,
        task_id: str,
        instruction: str,
        data: dict[str, Any] | None = None,
    ) -> AgentResponse:
        """Move a created task to ``in_progress`` and run the agent on it."""

        self._require_task(task_id)
        self.context.tasks.update_status(task_id, TaskStatus.IN_PROGRESS)
        self.context.event_log.append(
            task_id=task_id,
            actor=RUNNER_ACTOR,
            operation=Operation.TASK_STARTED,
            data={"request": {"instruction": instruction, "data": data or {}}},
            reasoning=f"Task started with agent {self.agent.agent_id}",
            confidence=1.0,
            trigger=_RUNNER_TRIGGER,
        )
        return self._run_agent(
            AgentRequest(task_id=task_id, instruction=instruction, data=data or {}),
        )

    def submit_input(self, task_id: str, *, user_id: str, values: dict[str, Any]) -> AgentResponse:
        """Record user-provided values for a paused task and continue it."""

        self._require_task(task_id)
        self.context.tasks.update_status(task_id, TaskStatus.IN_PROGRESS)
        self.context.event_log.append(
            task_id=task_id,
            actor=Actor(type=ActorType.USER, id=user_id),
            operation=Operation.USER_INPUT_RECEIVED,
            data={"user_input": values},
            reasoning="User submitted requested information",
            confidence=1.0,
            trigger=Trigger(type=TriggerType.USER_REQUEST, source=user_id),
        )
        return self._run_agent(self._request_from_log(task_id))

    def resume(self, context: TaskContext) -> None:
        """Continue a recovered task from where its log left off."""

        task_id = context.task.task_id
        self.context.tasks.update_status(task_id, TaskStatus.IN_PROGRESS)
        self.context.event_log.append(
            task_id=task_id,
            actor=RUNNER_ACTOR,
            operation=Operation.TASK_RESUMED,
            data={"resumed_from_sequence": context.state.last_sequence},
            reasoning=f"Resuming task in phase {context.state.phase}",
            confidence=1.0,
            trigger=_RUNNER_TRIGGER,
        )
        self._run_agent(_request_from_state(task_id, context.state.data))

    def _run_agent(self, request: AgentRequest) -> AgentResponse:
        try:
            response = self.executor.execute(self.agent, request)
        except Exception as error:
            self._finish(
                request.task_id,
                TaskStatus.FAILED,
                Operation.TASK_FAILED,
                data={"error": {"message": str(error), "error_type": type(error).__name__}},
                reasoning=f"Agent {self.agent.agent_id} raised {type(error).__name__}",
            )
            raise

        status = AGENT_STATUS_TO_TASK_STATUS[response.status]
        if response.status is ResultStatus.COMPLETED:
            self._finish(
                request.task_id,
                status,
                Operation.TASK_COMPLETED,
                data={**response.data, "result_operation": response.operation},
                reasoning=response.reasoning,
                confidence=response.confidence,
            )
        elif response.status is ResultStatus.ERROR:
            self._finish(
                request.task_id,
                status,
                Operation.TASK_FAILED,
                data={
                    "error": response.error.to_dict() if response.error is not None else None,
                    "result_operation": response.operation,
                },
                reasoning=response.reasoning,
            )
        else:
            self.context.tasks.update_status(request.task_id, status)
        return response

    def _finish(  # noqa: PLR0913
        self,
        task_id: str,
        status: TaskStatus,
        operation: Operation,
        *,
        data: dict[str, Any],
        reasoning: str,
        confidence: float = 1.0,
    ) -> None:
        self.context.event_log.append(
            task_id=task_id,
            actor=RUNNER_ACTOR,
            operation=operation,
            data=data,
            reasoning=reasoning,
            confidence=confidence,
            trigger=_RUNNER_TRIGGER,
        )
        self.context.tasks.update_status(task_id, status)
        logger.info("Task %s is now %s", task_id, status.value)

    def _request_from_log(self, task_id: str) -> AgentRequest:
        state = compute_state(self.context.event_log.read(task_id))
        return _request_from_state(task_id, state.data)

    def _require_task(self, task_id: str) -> TaskView:
        task = self.context.tasks.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task


def _request_from_state(task_id: str, data: dict[str, Any]) -> AgentRequest:
    started_with = data.get("request")
    if not isinstance(started_with, dict):
        started_with = {}
    instruction = started_with.get("instruction")
    request_data = dict(started_with.get("data") or {})
    user_input = data.get("user_input")
    if isinstance(user_input, dict):
        request_data.update(user_input)
    return AgentRequest(
        task_id=task_id,
        instruction=instruction if isinstance(instruction, str) else "Continue the task",
        data=request_data,
    )
