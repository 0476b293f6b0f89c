"""Pure reducer that replays context entries into a task state snapshot.

State is never stored on its own: it is recomputed from the log whenever a
caller needs it, either live (all entries) or as of an earlier point for
audits. Folding depends on list order only, never on wall-clock time.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from onboarding_core.engine.models import ContextEntry, Operation, TaskState, TaskStatus

PHASE_PROGRESS: dict[str, int] = {
    "initialization": 0,
    "starting": 5,
    "discovery": 15,
    "user_info": 25,
    "data_collection": 35,
    "business_info": 50,
    "validation": 60,
    "entity_verification": 75,
    "submission": 90,
    "complete": 100,
}

_STATUS_TRANSITIONS: dict[str, TaskStatus] = {
    Operation.TASK_CREATED.value: TaskStatus.CREATED,
    Operation.TASK_STARTED.value: TaskStatus.IN_PROGRESS,
    Operation.TASK_RESUMED.value: TaskStatus.IN_PROGRESS,
    Operation.TASK_RECOVERED.value: TaskStatus.IN_PROGRESS,
    Operation.AGENT_EXECUTION_STARTED.value: TaskStatus.IN_PROGRESS,
    Operation.USER_INPUT_RECEIVED.value: TaskStatus.IN_PROGRESS,
    Operation.AGENT_EXECUTION_PAUSED.value: TaskStatus.PAUSED_FOR_INPUT,
    Operation.TASK_PAUSED.value: TaskStatus.PAUSED_FOR_INPUT,
    Operation.TASK_COMPLETED.value: TaskStatus.COMPLETED,
    Operation.TASK_FAILED.value: TaskStatus.FAILED,
}


def compute_state(entries: Iterable[ContextEntry]) -> TaskState:
    """Fold every entry, in the given order, onto the initial state."""

    state = TaskState()
    for entry in entries:
        state = apply_entry(state, entry)
    return state


def compute_state_at_sequence(entries: Sequence[ContextEntry], sequence_number: int) -> TaskState:
    """Replay only the first ``sequence_number`` entries."""

    if sequence_number <= 0:
        return TaskState()
    return compute_state(entries[:sequence_number])


def compute_state_at_time(entries: Sequence[ContextEntry], timestamp: datetime) -> TaskState:
    """Replay the leading entries recorded at or before ``timestamp``."""

    prefix: list[ContextEntry] = []
    for entry in entries:
        if entry.timestamp > timestamp:
            break
        prefix.append(entry)
    return compute_state(prefix)


def apply_entry(state: TaskState, entry: ContextEntry) -> TaskState:
    """Return a new state with one entry applied; ``state`` is left untouched."""

    data = merge_data(state.data, entry.data)
    status = _STATUS_TRANSITIONS.get(entry.operation, state.status)
    phase = state.phase
    completeness = state.completeness

    if entry.operation == Operation.TASK_CREATED.value:
        phase = "initialization"
        completeness = 0
    elif entry.operation == Operation.TASK_COMPLETED.value:
        completeness = 100
    elif entry.operation == Operation.PHASE_STARTED.value:
        next_phase = entry.data.get("phase")
        if isinstance(next_phase, str) and next_phase:
            phase = next_phase
            completeness = PHASE_PROGRESS.get(next_phase, completeness)
    elif entry.operation == Operation.PHASE_COMPLETED.value:
        next_phase = entry.data.get("next_phase")
        if isinstance(next_phase, str) and next_phase:
            phase = next_phase
    elif entry.operation == Operation.PROGRESS_UPDATED.value:
        completeness = _clamp_completeness(entry.data.get("completeness"), completeness)

    return TaskState(
        status=status,
        phase=phase,
        completeness=completeness,
        data=data,
        last_sequence=entry.sequence_number,
        last_updated=entry.timestamp,
    )


def merge_data(current: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Merge ``incoming`` onto ``current`` without mutating either.

    Later keys win. A dict value landing on a dict value merges one level
    deep; lists and scalars replace. An explicit ``None`` is stored, so keys
    are never removed.
    """

    merged = copy.deepcopy(current)
    for key, value in incoming.items():
        existing = merged.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            nested = dict(existing)
            nested.update(copy.deepcopy(value))
            merged[key] = nested
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def diff_states(before: TaskState, after: TaskState) -> dict[str, Any]:
    """Describe what changed between two snapshots of the same task."""

    diff: dict[str, Any] = {}
    if before.status != after.status:
        diff["status"] = {"before": before.status.value, "after": after.status.value}
    if before.phase != after.phase:
        diff["phase"] = {"before": before.phase, "after": after.phase}
    if before.completeness != after.completeness:
        diff["completeness"] = {
            "before": before.completeness,
            "after": after.completeness,
            "delta": after.completeness - before.completeness,
        }

    data_changes: dict[str, Any] = {}
    for key, value in after.data.items():
        if key not in before.data:
            data_changes[key] = {"added": value}
        elif before.data[key] != value:
            data_changes[key] = {"before": before.data[key], "after": value}
    for key, value in before.data.items():
        if key not in after.data:
            data_changes[key] = {"removed": value}
    diff["data_changes"] = data_changes
    return diff


def _clamp_completeness(value: object, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return fallback
    return max(0, min(100, round(value)))
