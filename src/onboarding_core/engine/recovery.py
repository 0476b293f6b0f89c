"""Startup and periodic sweep that resumes tasks orphaned by a crash or restart."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from onboarding_core.engine.context import EngineContext, Orchestrator
from onboarding_core.engine.errors import EventLogError, RecoveryError
from onboarding_core.engine.models import (
    Actor,
    ActorType,
    ContextEntry,
    Operation,
    TaskContext,
    TaskStatus,
    TaskView,
    Trigger,
    TriggerType,
)
from onboarding_core.engine.state_computer import compute_state
from onboarding_core.storage.common import utc_now

logger = logging.getLogger(__name__)

RECOVERY_ACTOR = Actor(type=ActorType.SYSTEM, id="task_recovery")
RECOVERY_REASON = "Server restart detected"
RECOVERY_REASONING = "Task was in progress when server restarted, automatically resuming"
_RECOVERY_TRIGGER = Trigger(type=TriggerType.SYSTEM_EVENT, source="task_recovery")


@dataclass(slots=True)
class RecoverySummary:
    """Counters for one or more recovery sweeps."""

    found: int = 0
    recovered: int = 0
    failed: int = 0
    skipped: int = 0
    recovered_task_ids: list[str] = field(default_factory=list)
    failed_task_ids: list[str] = field(default_factory=list)

    def merge(self, other: RecoverySummary) -> None:
        self.found += other.found
        self.recovered += other.recovered
        self.failed += other.failed
        self.skipped += other.skipped
        self.recovered_task_ids.extend(other.recovered_task_ids)
        self.failed_task_ids.extend(other.failed_task_ids)


class TaskRecovery:
    """Finds ``in_progress`` tasks and hands them back to the orchestrator.

    Each task is rehydrated from its log, then claimed by moving its coarse
    status from ``in_progress`` to ``created`` with a guarded update. Only the
    sweeper that wins the claim appends ``task_recovered`` and resumes, so
    overlapping or repeated sweeps never double-resume a task. Paused tasks
    are left alone.
    """

    def __init__(self, context: EngineContext, orchestrator: Orchestrator) -> None:
        self.context = context
        self.orchestrator = orchestrator

    def run(self) -> RecoverySummary:
        """Run one sweep. Listing failures propagate; per-task failures do not."""

        summary = RecoverySummary()
        orphaned = self.context.tasks.list_by_status(TaskStatus.IN_PROGRESS)
        summary.found = len(orphaned)
        if not orphaned:
            logger.info("No orphaned tasks found")
            return summary

        logger.info("Found %d orphaned task(s) to recover", len(orphaned))
        for task in orphaned:
            self._recover_task(task, summary)
        logger.info(
            "Recovery sweep finished: recovered=%d failed=%d skipped=%d",
            summary.recovered,
            summary.failed,
            summary.skipped,
        )
        return summary

    def run_loop(
        self,
        *,
        interval_seconds: float | None = None,
        max_sweeps: int | None = None,
    ) -> RecoverySummary:
        """Sweep repeatedly, sleeping ``interval_seconds`` between sweeps."""

        interval = (
            interval_seconds
            if interval_seconds is not None
            else self.context.settings.recovery.interval_seconds
        )
        aggregate = RecoverySummary()
        sweeps = 0
        while max_sweeps is None or sweeps < max_sweeps:
            aggregate.merge(self.run())
            sweeps += 1
            if max_sweeps is not None and sweeps >= max_sweeps:
                break
            time.sleep(interval)
        return aggregate

    def _recover_task(self, task: TaskView, summary: RecoverySummary) -> None:
        logger.info("Recovering task %s (%s)", task.task_id, task.task_type)
        try:
            entries = self._rehydrate(task)
        except RecoveryError as error:
            logger.error("Cannot recover task %s: %s", task.task_id, error)
            if self._mark_failed(task, reason=str(error), expected=TaskStatus.IN_PROGRESS):
                summary.failed += 1
                summary.failed_task_ids.append(task.task_id)
            else:
                summary.skipped += 1
            return

        claimed = self.context.tasks.update_status(
            task.task_id,
            TaskStatus.CREATED,
            expected_status=TaskStatus.IN_PROGRESS,
        )
        if not claimed:
            logger.info("Task %s was claimed by another sweeper, skipping", task.task_id)
            summary.skipped += 1
            return

        state = compute_state(entries)
        try:
            self.context.event_log.append(
                task_id=task.task_id,
                actor=RECOVERY_ACTOR,
                operation=Operation.TASK_RECOVERED,
                data={"reason": RECOVERY_REASON, "recovered_at": utc_now().isoformat()},
                reasoning=RECOVERY_REASONING,
                confidence=1.0,
                trigger=_RECOVERY_TRIGGER,
            )
            self.orchestrator.resume(TaskContext(task=task, entries=entries, state=state))
        except Exception as error:  # noqa: BLE001
            logger.exception("Failed to resume task %s", task.task_id)
            current = self.context.tasks.get_task(task.task_id)
            if current is not None and current.status is TaskStatus.FAILED:
                logger.info("Task %s was already marked failed while resuming", task.task_id)
            else:
                self._mark_failed(task, reason=str(error) or type(error).__name__, expected=None)
            summary.failed += 1
            summary.failed_task_ids.append(task.task_id)
            return

        logger.info("Task %s recovery triggered", task.task_id)
        summary.recovered += 1
        summary.recovered_task_ids.append(task.task_id)

    def _rehydrate(self, task: TaskView) -> list[ContextEntry]:
        try:
            entries = self.context.event_log.read(task.task_id)
        except EventLogError as error:
            raise RecoveryError(
                f"Context for task {task.task_id} is unreadable: {error}",
            ) from error
        if not entries:
            raise RecoveryError(f"Task {task.task_id} has no context entries.")
        return entries

    def _mark_failed(
        self,
        task: TaskView,
        *,
        reason: str,
        expected: TaskStatus | None,
    ) -> bool:
        updated = self.context.tasks.update_status(
            task.task_id,
            TaskStatus.FAILED,
            expected_status=expected,
        )
        if not updated:
            return False
        try:
            self.context.event_log.append(
                task_id=task.task_id,
                actor=RECOVERY_ACTOR,
                operation=Operation.TASK_FAILED,
                data={"recovery": {"reason": reason, "failed_at": utc_now().isoformat()}},
                reasoning="Task could not be recovered after restart",
                confidence=1.0,
                trigger=_RECOVERY_TRIGGER,
            )
        except EventLogError:
            logger.exception("Could not record recovery failure for task %s", task.task_id)
        return True
