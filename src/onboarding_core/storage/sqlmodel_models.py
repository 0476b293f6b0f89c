"""SQLModel ORM tables for task and context-entry storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

DEFAULT_BUSINESS_ID = "default_business"


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_status_updated", "status", "updated_at"),)

    task_id: str = Field(primary_key=True)
    business_id: str = Field(default=DEFAULT_BUSINESS_ID, index=True)
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ContextEntryRow(SQLModel, table=True):
    __tablename__ = "context_entries"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("task_id", "sequence_number", name="uq_context_entries_task_sequence"),
    )

    id: int | None = Field(default=None, primary_key=True)
    entry_id: str = Field(unique=True)
    task_id: str = Field(index=True)
    sequence_number: int
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    actor_type: str = Field(index=True)
    actor_id: str
    actor_version: str | None = None
    operation: str = Field(index=True)
    data_json: str = Field(sa_column=Column(Text, nullable=False))
    reasoning: str = Field(sa_column=Column(Text, nullable=False))
    confidence: float = Field(sa_column=Column(Float, nullable=False))
    trigger_type: str
    trigger_source: str
    trigger_details_json: str | None = Field(default=None, sa_column=Column(Text))
