from __future__ import annotations

import allure
from sqlalchemy import text

from onboarding_core.engine.context import EngineContext, MappingToolRegistry
from onboarding_core.engine.executor import Agent
from onboarding_core.engine.models import (
    Actor,
    ActorType,
    TaskContext,
    TaskCreate,
    TaskStatus,
)
from onboarding_core.engine.reasoning import AgentCapabilities
from onboarding_core.engine.recovery import RECOVERY_REASONING, TaskRecovery
from onboarding_core.engine.runner import TaskRunner
from onboarding_core.engine.state_computer import compute_state

pytestmark = [
    allure.epic("Task Execution Core"),
    allure.feature("Task Recovery"),
]

SYSTEM = Actor(type=ActorType.SYSTEM, id="test")


class _RecordingOrchestrator:
    def __init__(self) -> None:
        self.resumed: list[TaskContext] = []

    def resume(self, context: TaskContext) -> None:
        self.resumed.append(context)


class _FailingOrchestrator:
    def resume(self, context: TaskContext) -> None:
        raise RuntimeError("orchestrator is not ready")


def _seed_task(
    engine_context: EngineContext,
    status: TaskStatus,
    operations: list[tuple[str, dict]],
) -> str:
    task = engine_context.tasks.create_task(TaskCreate(task_type="business_onboarding"))
    for operation, data in operations:
        engine_context.event_log.append(
            task_id=task.task_id,
            actor=SYSTEM,
            operation=operation,
            data=data,
        )
    engine_context.tasks.update_status(task.task_id, status)
    return task.task_id


_IN_FLIGHT_LOG = [
    ("task_created", {}),
    ("task_started", {"request": {"instruction": "Onboard Acme", "data": {}}}),
    ("phase_started", {"phase": "business_info"}),
    ("agent_execution_started", {"executions": {"req_1": {"agent_id": "a"}}}),
]


def test_recovery_appends_one_entry_and_resumes_with_replayed_state(engine_context) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    before = engine_context.event_log.read(task_id)
    orchestrator = _RecordingOrchestrator()

    summary = TaskRecovery(engine_context, orchestrator).run()

    assert summary.found == 1
    assert summary.recovered == 1
    assert summary.recovered_task_ids == [task_id]
    after = engine_context.event_log.read(task_id)
    assert len(after) == len(before) + 1
    recovered = after[-1]
    assert recovered.operation == "task_recovered"
    assert recovered.actor.type is ActorType.SYSTEM
    assert recovered.reasoning == RECOVERY_REASONING
    assert recovered.confidence == 1.0
    assert set(recovered.data) == {"reason", "recovered_at"}

    assert len(orchestrator.resumed) == 1
    resumed = orchestrator.resumed[0]
    assert resumed.task.task_id == task_id
    assert resumed.entries == before
    assert resumed.state == compute_state(before)
    assert resumed.state.phase == "business_info"
    assert resumed.state.completeness == 50


def test_second_sweep_is_a_no_op(engine_context) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    orchestrator = _RecordingOrchestrator()
    recovery = TaskRecovery(engine_context, orchestrator)

    recovery.run()
    count_after_first = len(engine_context.event_log.read(task_id))
    second = recovery.run()

    assert second.found == 0
    assert second.recovered == 0
    assert len(engine_context.event_log.read(task_id)) == count_after_first
    assert len(orchestrator.resumed) == 1


def test_paused_and_finished_tasks_are_left_alone(engine_context) -> None:
    paused = _seed_task(
        engine_context,
        TaskStatus.PAUSED_FOR_INPUT,
        [("task_created", {}), ("agent_execution_paused", {})],
    )
    completed = _seed_task(
        engine_context,
        TaskStatus.COMPLETED,
        [("task_created", {}), ("task_completed", {})],
    )
    orchestrator = _RecordingOrchestrator()

    summary = TaskRecovery(engine_context, orchestrator).run()

    assert summary.found == 0
    assert orchestrator.resumed == []
    assert len(engine_context.event_log.read(paused)) == 2
    assert len(engine_context.event_log.read(completed)) == 2


def test_task_without_entries_is_marked_failed(engine_context) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, [])
    orchestrator = _RecordingOrchestrator()

    summary = TaskRecovery(engine_context, orchestrator).run()

    assert summary.failed == 1
    assert summary.failed_task_ids == [task_id]
    assert orchestrator.resumed == []
    task = engine_context.tasks.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.FAILED
    entries = engine_context.event_log.read(task_id)
    assert [entry.operation for entry in entries] == ["task_failed"]


def test_unreadable_log_is_marked_failed(engine_context) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    with engine_context.event_log.engine.begin() as connection:
        connection.execute(
            text("UPDATE context_entries SET data_json = 'not json' WHERE task_id = :task_id"),
            {"task_id": task_id},
        )
    orchestrator = _RecordingOrchestrator()

    summary = TaskRecovery(engine_context, orchestrator).run()

    assert summary.failed == 1
    assert orchestrator.resumed == []
    task = engine_context.tasks.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.FAILED


def test_resume_failure_marks_task_failed(engine_context) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)

    summary = TaskRecovery(engine_context, _FailingOrchestrator()).run()

    assert summary.failed == 1
    task = engine_context.tasks.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.FAILED
    operations = [entry.operation for entry in engine_context.event_log.read(task_id)]
    assert operations[-2:] == ["task_recovered", "task_failed"]
    assert TaskRecovery(engine_context, _FailingOrchestrator()).run().found == 0


def test_lost_claim_skips_task(engine_context, monkeypatch) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    stale_listing = engine_context.tasks.list_by_status(TaskStatus.IN_PROGRESS)
    engine_context.tasks.update_status(task_id, TaskStatus.CREATED)
    monkeypatch.setattr(engine_context.tasks, "list_by_status", lambda status: stale_listing)
    orchestrator = _RecordingOrchestrator()

    summary = TaskRecovery(engine_context, orchestrator).run()

    assert summary.skipped == 1
    assert summary.recovered == 0
    assert orchestrator.resumed == []
    assert len(engine_context.event_log.read(task_id)) == len(_IN_FLIGHT_LOG)


def test_run_loop_aggregates_sweeps(engine_context) -> None:
    _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    orchestrator = _RecordingOrchestrator()

    summary = TaskRecovery(engine_context, orchestrator).run_loop(
        interval_seconds=0,
        max_sweeps=3,
    )

    assert summary.found == 1
    assert summary.recovered == 1
    assert len(orchestrator.resumed) == 1


def test_runner_completes_recovered_task(engine_context, scripted) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    decider = scripted(
        [
            {
                "thought": "Picking up where we left off",
                "action": "answer",
                "details": {"operation": "onboarding_done", "data": {"done": True}},
            },
        ],
    )
    runner = TaskRunner(
        engine_context,
        Agent(
            capabilities=AgentCapabilities(
                agent_id="onboarding_agent",
                decision_maker=decider,
                tools=MappingToolRegistry({}),
            ),
        ),
    )

    summary = TaskRecovery(engine_context, runner).run()

    assert summary.recovered == 1
    task = engine_context.tasks.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.COMPLETED
    assert "Onboard Acme" in decider.prompts[0]
    operations = [entry.operation for entry in engine_context.event_log.read(task_id)]
    assert operations[len(_IN_FLIGHT_LOG) :] == [
        "task_recovered",
        "task_resumed",
        "agent_execution_started",
        "agent_execution_completed",
        "task_completed",
    ]


def test_runner_failure_during_resume_is_recorded_once(engine_context, scripted) -> None:
    task_id = _seed_task(engine_context, TaskStatus.IN_PROGRESS, _IN_FLIGHT_LOG)
    runner = TaskRunner(
        engine_context,
        Agent(
            capabilities=AgentCapabilities(
                agent_id="onboarding_agent",
                decision_maker=scripted([RuntimeError("model endpoint unreachable")]),
                tools=MappingToolRegistry({}),
            ),
        ),
    )

    summary = TaskRecovery(engine_context, runner).run()

    assert summary.failed == 1
    assert summary.failed_task_ids == [task_id]
    task = engine_context.tasks.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.FAILED
    operations = [entry.operation for entry in engine_context.event_log.read(task_id)]
    assert operations[len(_IN_FLIGHT_LOG) :] == [
        "task_recovered",
        "task_resumed",
        "agent_execution_started",
        "agent_execution_failed",
        "task_failed",
    ]
    assert operations.count("task_failed") == 1
