"""create_workflow_tables

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19 09:12:44.201377

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

workflow_kind = sa.Enum("MORNING", "EVENING", name="workflowkind")
workflow_state = sa.Enum("PENDING", "NOTIFIED", "SNOOZED", "STARTED", "COMPLETED", "CANCELLED", name="workflowstate")
run_outcome = sa.Enum("SUCCESS", "ERROR", "SKIPPED", name="runoutcome")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "schedule_configs",
        sa.Column("kind", workflow_kind, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("time_of_day", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("timezone", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("channel_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("kind"),
    )

    op.create_table(
        "workflow_instances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", workflow_kind, nullable=False),
        sa.Column("workflow_date", sa.Date(), nullable=False),
        sa.Column("state", workflow_state, nullable=False),
        sa.Column("snooze_until", sa.DateTime(), nullable=True),
        sa.Column("snooze_count", sa.Integer(), nullable=False),
        sa.Column("notified_at", sa.DateTime(), nullable=True),
        sa.Column("last_notified_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "workflow_date", name="uq_workflow_kind_date"),
    )
    op.create_index(op.f("ix_workflow_instances_kind"), "workflow_instances", ["kind"], unique=False)
    op.create_index(op.f("ix_workflow_instances_workflow_date"), "workflow_instances", ["workflow_date"], unique=False)
    op.create_index(op.f("ix_workflow_instances_state"), "workflow_instances", ["state"], unique=False)

    op.create_table(
        "workflow_activity_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("workflow_date", sa.Date(), nullable=False),
        sa.Column("action", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("status", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("message", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("error_details", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_workflow_activity_log_kind"), "workflow_activity_log", ["kind"], unique=False)
    op.create_index(
        op.f("ix_workflow_activity_log_workflow_date"), "workflow_activity_log", ["workflow_date"], unique=False
    )
    op.create_index(op.f("ix_workflow_activity_log_action"), "workflow_activity_log", ["action"], unique=False)
    op.create_index(op.f("ix_workflow_activity_log_created_at"), "workflow_activity_log", ["created_at"], unique=False)

    op.create_table(
        "scheduler_run_status",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("last_run", sa.DateTime(), nullable=False),
        sa.Column("duration_ms", sa.Float(), nullable=False),
        sa.Column("instances_processed", sa.Integer(), nullable=False),
        sa.Column("outcome", run_outcome, nullable=False),
        sa.Column("error_message", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_scheduler_run_status_created_at"), "scheduler_run_status", ["created_at"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_scheduler_run_status_created_at"), table_name="scheduler_run_status")
    op.drop_table("scheduler_run_status")
    op.drop_index(op.f("ix_workflow_activity_log_created_at"), table_name="workflow_activity_log")
    op.drop_index(op.f("ix_workflow_activity_log_action"), table_name="workflow_activity_log")
    op.drop_index(op.f("ix_workflow_activity_log_workflow_date"), table_name="workflow_activity_log")
    op.drop_index(op.f("ix_workflow_activity_log_kind"), table_name="workflow_activity_log")
    op.drop_table("workflow_activity_log")
    op.drop_index(op.f("ix_workflow_instances_state"), table_name="workflow_instances")
    op.drop_index(op.f("ix_workflow_instances_workflow_date"), table_name="workflow_instances")
    op.drop_index(op.f("ix_workflow_instances_kind"), table_name="workflow_instances")
    op.drop_table("workflow_instances")
    op.drop_table("schedule_configs")
    workflow_kind.drop(op.get_bind(), checkfirst=True)
    workflow_state.drop(op.get_bind(), checkfirst=True)
    run_outcome.drop(op.get_bind(), checkfirst=True)
