"""Append-only event log of context entries."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Session, col, select

from onboarding_core.engine.errors import EventLogError
from onboarding_core.engine.models import (
    DEFAULT_REASONING,
    SYSTEM_TRIGGER,
    Actor,
    ActorType,
    ContextEntry,
    Operation,
    Trigger,
    TriggerType,
    clamp_confidence,
    operation_name,
)
from onboarding_core.storage.alembic_runner import upgrade_head
from onboarding_core.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from onboarding_core.storage.sqlmodel_models import ContextEntryRow

logger = logging.getLogger(__name__)

_LOCKED_RETRY_SLEEP_SECONDS = 0.01


class EventLog:
    """Context entry store backed by SQLModel + SQLite.

    ``append`` assigns the next sequence number for a task inside the insert
    transaction. The ``(task_id, sequence_number)`` unique constraint rejects a
    concurrent writer that read the same maximum; that writer rolls back and
    retries with a fresh read, so numbers stay gapless and unique per task.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        append_max_retries: int = 20,
    ) -> None:
        self.db_path = db_path
        self.append_max_retries = append_max_retries
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

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
    ) -> ContextEntry:
        """Durably append one entry and return it with its assigned sequence number."""

        data_json = _encode_json(data or {}, what="data")
        details_json = (
            _encode_json(trigger.details, what="trigger details") if trigger.details else None
        )
        stored_reasoning = reasoning if reasoning else DEFAULT_REASONING
        stored_confidence = clamp_confidence(confidence)
        entry_id = f"entry_{uuid4().hex}"

        for attempt in range(1, self.append_max_retries + 1):
            now = utc_now()
            try:
                with Session(self.engine) as session:
                    current = session.exec(
                        select(func.max(ContextEntryRow.sequence_number)).where(
                            ContextEntryRow.task_id == task_id,
                        ),
                    ).one()
                    row = ContextEntryRow(
                        entry_id=entry_id,
                        task_id=task_id,
                        sequence_number=(current or 0) + 1,
                        created_at=to_db_datetime(now),
                        actor_type=actor.type.value,
                        actor_id=actor.id,
                        actor_version=actor.version,
                        operation=operation_name(operation),
                        data_json=data_json,
                        reasoning=stored_reasoning,
                        confidence=stored_confidence,
                        trigger_type=trigger.type.value,
                        trigger_source=trigger.source,
                        trigger_details_json=details_json,
                    )
                    session.add(row)
                    session.commit()
                    session.refresh(row)
                    return _to_entry(row)
            except IntegrityError:
                logger.debug(
                    "Sequence collision appending to task %s (attempt %d), retrying",
                    task_id,
                    attempt,
                )
                continue
            except OperationalError as error:
                if "locked" not in str(error).lower():
                    raise EventLogError(
                        f"Failed to append entry for task {task_id}: {error}",
                    ) from error
                logger.debug("Database locked appending to task %s, retrying", task_id)
                time.sleep(_LOCKED_RETRY_SLEEP_SECONDS * attempt)
                continue
            except SQLAlchemyError as error:
                raise EventLogError(
                    f"Failed to append entry for task {task_id}: {error}",
                ) from error

        raise EventLogError(
            f"Could not assign a sequence number for task {task_id} "
            f"after {self.append_max_retries} attempts.",
        )

    def read(self, task_id: str, from_sequence: int | None = None) -> list[ContextEntry]:
        """Return entries in sequence order; an unknown task yields an empty list."""

        statement = select(ContextEntryRow).where(ContextEntryRow.task_id == task_id)
        if from_sequence is not None:
            statement = statement.where(ContextEntryRow.sequence_number >= from_sequence)
        statement = statement.order_by(col(ContextEntryRow.sequence_number).asc())
        try:
            with Session(self.engine) as session:
                rows = session.exec(statement).all()
        except SQLAlchemyError as error:
            raise EventLogError(f"Failed to read entries for task {task_id}: {error}") from error
        return [_to_entry(row) for row in rows]

    def count(self, task_id: str) -> int:
        """Number of entries recorded for a task."""

        with Session(self.engine) as session:
            total = session.exec(
                select(func.count()).where(ContextEntryRow.task_id == task_id),
            ).one()
        return int(total or 0)

    def latest(self, task_id: str) -> ContextEntry | None:
        """Most recent entry for a task, if any."""

        with Session(self.engine) as session:
            row = session.exec(
                select(ContextEntryRow)
                .where(ContextEntryRow.task_id == task_id)
                .order_by(col(ContextEntryRow.sequence_number).desc())
                .limit(1),
            ).one_or_none()
        return _to_entry(row) if row is not None else None


def _encode_json(payload: dict[str, Any], *, what: str) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as error:
        raise EventLogError(f"Entry {what} is not JSON-serializable: {error}") from error


def _decode_object(raw: str | None, *, entry_id: str, what: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        raise EventLogError(f"Entry {entry_id} has unreadable {what}: {error}") from error
    if not isinstance(parsed, dict):
        raise EventLogError(f"Entry {entry_id} {what} must be a JSON object.")
    return parsed


def _to_entry(row: ContextEntryRow) -> ContextEntry:
    try:
        actor_type = ActorType(row.actor_type)
        trigger_type = TriggerType(row.trigger_type)
    except ValueError as error:
        raise EventLogError(
            f"Entry {row.entry_id} has unknown actor or trigger: {error}",
        ) from error
    return ContextEntry(
        entry_id=row.entry_id,
        task_id=row.task_id,
        sequence_number=row.sequence_number,
        timestamp=to_utc_aware_datetime(row.created_at),
        actor=Actor(type=actor_type, id=row.actor_id, version=row.actor_version),
        operation=row.operation,
        data=_decode_object(row.data_json, entry_id=row.entry_id, what="data"),
        reasoning=row.reasoning,
        confidence=row.confidence,
        trigger=Trigger(
            type=trigger_type,
            source=row.trigger_source,
            details=_decode_object(
                row.trigger_details_json,
                entry_id=row.entry_id,
                what="trigger details",
            ),
        ),
    )
