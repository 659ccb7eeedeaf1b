"""Initial schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Scheduled tasks, their server bindings, and execution history.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Task definitions
    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("command", sa.Text(), nullable=False),
        sa.Column("cron_expression", sa.String(100), nullable=False),
        sa.Column("timezone", sa.String(100), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.Column("timeout_seconds", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_execution_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_execution_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scheduled_tasks_next_execution_time",
        "scheduled_tasks",
        ["next_execution_time"],
    )

    # Task to server bindings
    op.create_table(
        "task_servers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("server_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["task_id"], ["scheduled_tasks.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "server_id", name="uq_task_servers_pair"),
    )
    op.create_index("ix_task_servers_task_id", "task_servers", ["task_id"])
    op.create_index("ix_task_servers_server_id", "task_servers", ["server_id"])

    # Execution history
    op.create_table(
        "task_executions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("server_id", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("output", sa.Text(), nullable=True),
        sa.Column("error_output", sa.Text(), nullable=True),
        sa.Column("exit_code", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(
            ["task_id"], ["scheduled_tasks.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_task_executions_task_started",
        "task_executions",
        ["task_id", "started_at"],
    )
    op.create_index(
        "ix_task_executions_server_started",
        "task_executions",
        ["server_id", "started_at"],
    )
    # At most one non-terminal execution per (task, server)
    op.create_index(
        "uq_task_executions_active",
        "task_executions",
        ["task_id", "server_id"],
        unique=True,
        sqlite_where=sa.text("completed_at IS NULL"),
        postgresql_where=sa.text("completed_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_task_executions_active", table_name="task_executions")
    op.drop_index("ix_task_executions_server_started", table_name="task_executions")
    op.drop_index("ix_task_executions_task_started", table_name="task_executions")
    op.drop_table("task_executions")
    op.drop_index("ix_task_servers_server_id", table_name="task_servers")
    op.drop_index("ix_task_servers_task_id", table_name="task_servers")
    op.drop_table("task_servers")
    op.drop_index(
        "ix_scheduled_tasks_next_execution_time", table_name="scheduled_tasks"
    )
    op.drop_table("scheduled_tasks")
