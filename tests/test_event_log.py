from __future__ import annotations

import threading
from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from onboarding_core.engine.errors import EventLogError
from onboarding_core.engine.event_log import EventLog
from onboarding_core.engine.models import (
    DEFAULT_REASONING,
    Actor,
    ActorType,
    Operation,
    Trigger,
    TriggerType,
)

pytestmark = [
    allure.epic("Task Execution Core"),
    allure.feature("Event Log"),
]

AGENT = Actor(type=ActorType.AGENT, id="profile_collector", version="1.2.0")


def _open_log(tmp_path: Path, **kwargs) -> EventLog:
    event_log = EventLog(tmp_path / "events.db", **kwargs)
    event_log.init_schema()
    return event_log


def test_append_assigns_gapless_sequence_numbers(tmp_path: Path) -> None:
    event_log = _open_log(tmp_path)

    first = event_log.append(task_id="task-1", actor=AGENT, operation=Operation.TASK_CREATED)
    second = event_log.append(
        task_id="task-1",
        actor=AGENT,
        operation="phase_started",
        data={"phase": "user_info"},
        reasoning="Collecting the owner profile first",
        confidence=0.8,
        trigger=Trigger(type=TriggerType.ORCHESTRATOR_REQUEST, source="orchestrator"),
    )
    other = event_log.append(task_id="task-2", actor=AGENT, operation="task_created")

    assert first.sequence_number == 1
    assert second.sequence_number == 2
    assert other.sequence_number == 1
    assert first.operation == "task_created"
    assert first.entry_id.startswith("entry_")
    assert first.entry_id != second.entry_id

    entries = event_log.read("task-1")
    assert [entry.sequence_number for entry in entries] == [1, 2]
    assert entries[1].data == {"phase": "user_info"}
    assert entries[1].actor == AGENT
    assert entries[1].trigger.type is TriggerType.ORCHESTRATOR_REQUEST
    assert entries[1].timestamp.tzinfo is not None
    event_log.close()


def test_append_fills_reasoning_and_clamps_confidence(tmp_path: Path) -> None:
    event_log = _open_log(tmp_path)

    high = event_log.append(task_id="t", actor=AGENT, operation="x", confidence=1.7)
    low = event_log.append(task_id="t", actor=AGENT, operation="x", confidence=-0.3)
    garbage = event_log.append(task_id="t", actor=AGENT, operation="x", confidence="high")
    missing = event_log.append(task_id="t", actor=AGENT, operation="x")

    assert high.confidence == 1.0
    assert low.confidence == 0.0
    assert garbage.confidence == 0.5
    assert missing.confidence == 0.5
    assert missing.reasoning == DEFAULT_REASONING
    event_log.close()


def test_read_unknown_task_returns_empty_list(tmp_path: Path) -> None:
    event_log = _open_log(tmp_path)

    assert event_log.read("does-not-exist") == []
    assert event_log.count("does-not-exist") == 0
    assert event_log.latest("does-not-exist") is None
    event_log.close()


def test_read_from_sequence_and_latest(tmp_path: Path) -> None:
    event_log = _open_log(tmp_path)
    for index in range(5):
        event_log.append(task_id="t", actor=AGENT, operation="progress_updated", data={"i": index})

    tail = event_log.read("t", from_sequence=4)

    assert [entry.sequence_number for entry in tail] == [4, 5]
    assert event_log.count("t") == 5
    latest = event_log.latest("t")
    assert latest is not None
    assert latest.data == {"i": 4}
    event_log.close()


def test_append_rejects_non_serializable_data(tmp_path: Path) -> None:
    event_log = _open_log(tmp_path)

    with pytest.raises(EventLogError, match="not JSON-serializable"):
        event_log.append(task_id="t", actor=AGENT, operation="x", data={"bad": object()})

    assert event_log.read("t") == []
    event_log.close()


def test_corrupt_stored_data_surfaces_as_event_log_error(tmp_path: Path) -> None:
    event_log = _open_log(tmp_path)
    event_log.append(task_id="t", actor=AGENT, operation="x", data={"ok": True})
    with event_log.engine.begin() as connection:
        connection.execute(
            text("UPDATE context_entries SET data_json = '{broken' WHERE task_id = 't'"),
        )

    with pytest.raises(EventLogError, match="unreadable data"):
        event_log.read("t")
    event_log.close()


def test_concurrent_appends_keep_sequences_unique_and_gapless(tmp_path: Path) -> None:
    db_path = tmp_path / "concurrent.db"
    EventLog(db_path).init_schema()
    writers = 4
    appends_per_writer = 10
    start = threading.Event()
    errors: list[Exception] = []

    def _writer(writer_no: int) -> None:
        event_log = EventLog(db_path, append_max_retries=500)
        start.wait()
        try:
            for index in range(appends_per_writer):
                event_log.append(
                    task_id="shared",
                    actor=Actor(type=ActorType.AGENT, id=f"agent-{writer_no}"),
                    operation="progress_updated",
                    data={"writer": writer_no, "index": index},
                )
        except Exception as error:  # noqa: BLE001
            errors.append(error)
        finally:
            event_log.close()

    threads = [threading.Thread(target=_writer, args=(n,)) for n in range(writers)]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    verify = EventLog(db_path)
    entries = verify.read("shared")
    assert [entry.sequence_number for entry in entries] == list(
        range(1, writers * appends_per_writer + 1),
    )
    for writer_no in range(writers):
        indexes = [entry.data["index"] for entry in entries if entry.data["writer"] == writer_no]
        assert indexes == list(range(appends_per_writer))
    verify.close()
