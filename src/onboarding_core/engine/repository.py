"""Coarse task store: one status row per task."""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from onboarding_core.engine.errors import TaskNotFoundError
from onboarding_core.engine.models import TaskCreate, TaskStatus, TaskView
from onboarding_core.storage.alembic_runner import upgrade_head
from onboarding_core.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from onboarding_core.storage.sqlmodel_models import DEFAULT_BUSINESS_ID, TaskRow


class TaskRepository:
    """Task persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        business_id: str = DEFAULT_BUSINESS_ID,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.business_id = business_id
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

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Create a task in ``created`` status."""

        now = utc_now()
        with Session(self.engine) as session:
            row = TaskRow(
                task_id=payload.task_id or str(uuid4()),
                business_id=payload.business_id or self.business_id,
                task_type=payload.task_type,
                status=TaskStatus.CREATED.value,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
        return _to_task_view(row) if row is not None else None

    def list_by_status(self, status: TaskStatus) -> list[TaskView]:
        """All tasks currently in ``status``, oldest update first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.status == status.value)
                .order_by(col(TaskRow.updated_at).asc(), col(TaskRow.task_id).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(TaskRow).order_by(col(TaskRow.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        expected_status: TaskStatus | None = None,
    ) -> bool:
        """Set the coarse status.

        With ``expected_status`` the update only applies when the row still has
        that status; ``False`` means another writer changed it first.
        """

        now = utc_now()
        with Session(self.engine) as session:
            statement = sa_update(TaskRow).where(col(TaskRow.task_id) == task_id)
            if expected_status is not None:
                statement = statement.where(col(TaskRow.status) == expected_status.value)
            result = session.exec(
                statement.values(
                    status=status.value,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount == 1:
                session.commit()
                return True
            session.rollback()
            exists = session.exec(
                select(TaskRow.task_id).where(TaskRow.task_id == task_id),
            ).one_or_none()
        if exists is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return False


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        business_id=row.business_id,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
