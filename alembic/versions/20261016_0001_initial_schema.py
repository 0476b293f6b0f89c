"""Initial task and context-entry schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("business_id", sa.String(), server_default="default_business", nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_business_id", "tasks", ["business_id"])
    op.create_index("ix_tasks_task_type", "tasks", ["task_type"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("idx_tasks_status_updated", "tasks", ["status", "updated_at"])

    op.create_table(
        "context_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("actor_version", sa.String(), nullable=True),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("data_json", sa.Text(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("trigger_type", sa.String(), nullable=False),
        sa.Column("trigger_source", sa.String(), nullable=False),
        sa.Column("trigger_details_json", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id"),
        sa.UniqueConstraint(
            "task_id",
            "sequence_number",
            name="uq_context_entries_task_sequence",
        ),
    )
    op.create_index("ix_context_entries_task_id", "context_entries", ["task_id"])
    op.create_index("ix_context_entries_actor_type", "context_entries", ["actor_type"])
    op.create_index("ix_context_entries_operation", "context_entries", ["operation"])


def downgrade() -> None:
    op.drop_index("ix_context_entries_operation", table_name="context_entries")
    op.drop_index("ix_context_entries_actor_type", table_name="context_entries")
    op.drop_index("ix_context_entries_task_id", table_name="context_entries")
    op.drop_table("context_entries")
    op.drop_index("idx_tasks_status_updated", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_task_type", table_name="tasks")
    op.drop_index("ix_tasks_business_id", table_name="tasks")
    op.drop_table("tasks")
