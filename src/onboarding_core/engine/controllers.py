"""Controllers for task and recovery CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from onboarding_core.config import Settings
from onboarding_core.engine.audit import BestEffortAudit, LoggingAuditSink
from onboarding_core.engine.backend import CommandDecisionMaker
from onboarding_core.engine.context import EngineContext
from onboarding_core.engine.errors import TaskNotFoundError
from onboarding_core.engine.event_log import EventLog
from onboarding_core.engine.executor import Agent, AgentResponse
from onboarding_core.engine.models import (
    Actor,
    ActorType,
    Operation,
    ResultStatus,
    TaskCreate,
    TaskStatus,
    Trigger,
    TriggerType,
)
from onboarding_core.engine.reasoning import AgentCapabilities
from onboarding_core.engine.recovery import TaskRecovery
from onboarding_core.engine.repository import TaskRepository
from onboarding_core.engine.runner import TaskRunner
from onboarding_core.engine.state_computer import (
    compute_state,
    compute_state_at_sequence,
    diff_states,
)

logger = logging.getLogger(__name__)

CLI_ACTOR = Actor(type=ActorType.SYSTEM, id="cli")
_CLI_TRIGGER = Trigger(type=TriggerType.USER_REQUEST, source="cli")


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI inputs for task creation."""

    db_path: Path | None
    task_type: str
    business_id: str | None


@dataclass(slots=True)
class TaskListCommand:
    """CLI inputs for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI inputs for task inspection."""

    db_path: Path | None
    task_id: str
    at_sequence: int | None
    show_entries: bool


@dataclass(slots=True)
class TaskAppendCommand:
    """CLI inputs for appending a context entry by hand."""

    db_path: Path | None
    task_id: str
    operation: str
    data_json: str
    actor_type: str
    actor_id: str
    reasoning: str | None
    confidence: float | None


@dataclass(slots=True)
class TaskRunCommand:
    """CLI inputs for starting the configured agent on a task."""

    db_path: Path | None
    task_id: str
    instruction: str
    data_json: str


@dataclass(slots=True)
class TaskInputCommand:
    """CLI inputs for answering a paused task."""

    db_path: Path | None
    task_id: str
    user_id: str
    values_json: str


@dataclass(slots=True)
class RecoverCommand:
    """CLI inputs for recovery sweeps."""

    db_path: Path | None
    loop: bool
    max_sweeps: int | None
    interval_seconds: float | None


class TaskCliController:
    """Coordinates task and recovery command execution."""

    def create(self, command: TaskCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as context:
            task = context.tasks.create_task(
                TaskCreate(task_type=command.task_type, business_id=command.business_id),
            )
            entry = context.event_log.append(
                task_id=task.task_id,
                actor=CLI_ACTOR,
                operation=Operation.TASK_CREATED,
                data={"task_type": task.task_type, "business_id": task.business_id},
                reasoning=f"Task of type {task.task_type} created from the command line",
                confidence=1.0,
                trigger=_CLI_TRIGGER,
            )
        return [
            f"Task created: {task.task_id}",
            f"  type={task.task_type} business={task.business_id} status={task.status.value} "
            f"sequence={entry.sequence_number}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _engine(settings) as context:
            tasks = context.tasks.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} type={task.task_type} status={task.status.value} "
                f"business={task.business_id} updated_at={task.updated_at.isoformat()}",
            )
        return lines

    def inspect(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as context:
            task = context.tasks.get_task(command.task_id)
            entries = context.event_log.read(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]

        current = compute_state(entries)
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type}",
            f"Business: {task.business_id}",
            f"Status: {task.status.value}",
            f"Entries: {len(entries)}",
            f"Replayed status: {current.status.value}",
            f"Phase: {current.phase}",
            f"Completeness: {current.completeness}",
            f"Data: {json.dumps(current.data, ensure_ascii=False, sort_keys=True)}",
        ]
        if command.at_sequence is not None:
            past = compute_state_at_sequence(entries, command.at_sequence)
            lines.extend(
                [
                    f"State at sequence {command.at_sequence}:",
                    f"  status={past.status.value} phase={past.phase} "
                    f"completeness={past.completeness}",
                    f"  data={json.dumps(past.data, ensure_ascii=False, sort_keys=True)}",
                    "Changes since then: "
                    f"{json.dumps(diff_states(past, current), ensure_ascii=False, sort_keys=True)}",
                ],
            )
        if command.show_entries:
            for entry in entries:
                lines.append(
                    f"  #{entry.sequence_number} {entry.timestamp.isoformat()} "
                    f"{entry.actor.type.value}:{entry.actor.id} {entry.operation} "
                    f"confidence={entry.confidence:.2f} reasoning={entry.reasoning}",
                )
        return lines

    def append(self, command: TaskAppendCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        data = _parse_data(command.data_json)
        actor = Actor(type=ActorType(command.actor_type.strip().lower()), id=command.actor_id)
        with _engine(settings) as context:
            if context.tasks.get_task(command.task_id) is None:
                return [f"Task not found: {command.task_id}"]
            entry = context.event_log.append(
                task_id=command.task_id,
                actor=actor,
                operation=command.operation,
                data=data,
                reasoning=command.reasoning,
                confidence=command.confidence,
                trigger=_CLI_TRIGGER,
            )
            state = compute_state(context.event_log.read(command.task_id))
        return [
            f"Appended {entry.entry_id} sequence={entry.sequence_number} "
            f"operation={entry.operation}",
            f"  status={state.status.value} phase={state.phase} "
            f"completeness={state.completeness}",
        ]

    def run(self, command: TaskRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        data = _parse_data(command.data_json)
        agent = _build_agent(settings)
        with _engine(settings) as context:
            runner = TaskRunner(context, agent)
            try:
                response = runner.start(command.task_id, command.instruction, data)
            except TaskNotFoundError:
                return [f"Task not found: {command.task_id}"]
            return _response_lines(context, command.task_id, response)

    def submit_input(self, command: TaskInputCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        values = _parse_data(command.values_json)
        agent = _build_agent(settings)
        with _engine(settings) as context:
            runner = TaskRunner(context, agent)
            try:
                response = runner.submit_input(
                    command.task_id,
                    user_id=command.user_id,
                    values=values,
                )
            except TaskNotFoundError:
                return [f"Task not found: {command.task_id}"]
            return _response_lines(context, command.task_id, response)

    def recover(self, command: RecoverCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if not settings.recovery.enabled:
            return ["Recovery is disabled (ONBOARDING_CORE_RECOVERY_ENABLED=false)."]
        agent = _build_agent(settings)
        with _engine(settings) as context:
            recovery = TaskRecovery(context, TaskRunner(context, agent))
            if command.loop:
                summary = recovery.run_loop(
                    interval_seconds=command.interval_seconds,
                    max_sweeps=command.max_sweeps,
                )
            else:
                summary = recovery.run()

            lines = [
                "Recovery completed: "
                f"found={summary.found} recovered={summary.recovered} "
                f"failed={summary.failed} skipped={summary.skipped}",
            ]
            for task_id in summary.recovered_task_ids:
                task = context.tasks.get_task(task_id)
                status = task.status.value if task is not None else "unknown"
                lines.append(f"  resumed {task_id} status={status}")
        for task_id in summary.failed_task_ids:
            lines.append(f"  failed {task_id}")
        return lines


def _build_agent(settings: Settings) -> Agent:
    agent_settings = settings.agent
    if agent_settings.command_template is None:
        raise ValueError("Agent command is not configured; set ONBOARDING_CORE_AGENT_COMMAND.")
    return Agent(
        capabilities=AgentCapabilities(
            agent_id=agent_settings.agent_id,
            decision_maker=CommandDecisionMaker(
                agent_settings.command_template,
                timeout_seconds=agent_settings.timeout_seconds,
                agent_id=agent_settings.agent_id,
            ),
        ),
    )


def _response_lines(context: EngineContext, task_id: str, response: AgentResponse) -> list[str]:
    task = context.tasks.get_task(task_id)
    lines = [
        f"Agent run finished: status={response.status.value} operation={response.operation}",
        f"  task={task_id} task_status={task.status.value if task is not None else 'unknown'} "
        f"confidence={response.confidence:.2f}",
    ]
    if response.status is ResultStatus.NEEDS_INPUT:
        for request in response.ui_requests:
            fields = ", ".join(field["id"] for field in request["fields"])
            lines.append(f"  needs input: {fields}")
    elif response.status is ResultStatus.ERROR and response.error is not None:
        lines.append(
            f"  error={response.error.error_class.value} message={response.error.message}",
        )
    else:
        lines.append(f"  data={json.dumps(response.data, ensure_ascii=False, sort_keys=True)}")
    return lines


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _parse_data(raw: str) -> dict[str, object]:
    payload = json.loads(raw) if raw.strip() else {}
    if not isinstance(payload, dict):
        raise ValueError("Entry data must be a JSON object.")
    return payload


@contextmanager
def _engine(settings: Settings) -> Iterator[EngineContext]:
    event_log = EventLog(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        append_max_retries=settings.event_log.append_max_retries,
    )
    tasks = TaskRepository(
        settings.db_path,
        business_id=settings.business_context.business_id,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    event_log.init_schema()
    try:
        yield EngineContext(
            event_log=event_log,
            tasks=tasks,
            settings=settings,
            audit=BestEffortAudit([LoggingAuditSink()]),
        )
    finally:
        event_log.close()
        tasks.close()
