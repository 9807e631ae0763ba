"""Workflow engine: templates, instances, tasks, history, notifications, jobs

Revision ID: a1d0c5f10001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1d0c5f10001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "workflow_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("workflow_type", sa.String(30), nullable=False, server_default="DOCUMENT_APPROVAL"),
        sa.Column("default_sla_hours", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(150), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "workflow_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("step_type", sa.String(30), nullable=False, server_default="APPROVAL"),
        sa.Column("approval_policy", sa.String(20), nullable=False, server_default="QUORUM"),
        sa.Column("required_approvals", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sla_hours", sa.Integer()),
        sa.Column("auto_approve_condition", sa.String(500)),
        sa.UniqueConstraint("template_id", "step_order", name="uq_workflow_step_order"),
    )

    op.create_table(
        "workflow_step_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("step_id", sa.Integer(), sa.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("role", sa.String(30), nullable=False),
        sa.UniqueConstraint("step_id", "role", name="uq_step_role"),
    )

    op.create_table(
        "workflow_step_approvers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("step_id", sa.Integer(), sa.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("principal_id", sa.String(150), nullable=False),
        sa.UniqueConstraint("step_id", "principal_id", name="uq_step_approver"),
    )

    op.create_table(
        "workflow_instances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("workflow_templates.id"), nullable=False, index=True),
        sa.Column("template_snapshot", sa.JSON(), nullable=False),
        sa.Column("document_id", sa.String(64), nullable=False, index=True),
        sa.Column("document_attributes", sa.JSON()),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING", index=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="NORMAL"),
        sa.Column("current_step_order", sa.Integer()),
        sa.Column("initiated_by", sa.String(150), nullable=False, index=True),
        sa.Column("start_date", sa.DateTime(timezone=True)),
        sa.Column("due_date", sa.DateTime(timezone=True)),
        sa.Column("end_date", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )

    op.create_table(
        "workflow_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("instance_id", sa.Integer(), sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_id", sa.Integer(), sa.ForeignKey("workflow_steps.id", ondelete="SET NULL")),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("step_name", sa.String(200), server_default=""),
        sa.Column("assignee", sa.String(150), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("action", sa.String(10)),
        sa.Column("comments", sa.Text()),
        sa.Column("completed_by", sa.String(150)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("due_date", sa.DateTime(timezone=True)),
        sa.Column("overdue_notified_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_workflow_task_instance_step", "workflow_tasks", ["instance_id", "step_order"])
    op.create_index("ix_workflow_task_assignee_status", "workflow_tasks", ["assignee", "status"])

    op.create_table(
        "workflow_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("instance_id", sa.Integer(), sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("details", sa.Text(), server_default=""),
        sa.Column("performed_by", sa.String(150), nullable=False),
        sa.Column("step_order", sa.Integer()),
        sa.Column("task_id", sa.Integer()),
        sa.Column("action_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_workflow_history_instance_date", "workflow_history", ["instance_id", "action_date"])

    op.create_table(
        "role_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("principal_id", sa.String(150), nullable=False, index=True),
        sa.Column("role", sa.String(30), nullable=False, index=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("principal_id", "role", name="uq_role_assignment"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient", sa.String(150), nullable=False, index=True),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), server_default=""),
        sa.Column("severity", sa.String(20), server_default="info"),
        sa.Column("instance_id", sa.Integer(), sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"), index=True),
        sa.Column("task_id", sa.Integer()),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notification_recipient_read", "notifications", ["recipient", "is_read"])

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.String(500), server_default=""),
        sa.Column("interval_seconds", sa.Integer(), nullable=False, server_default="600"),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("is_enabled", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("last_run_at", sa.DateTime(timezone=True)),
        sa.Column("last_run_status", sa.String(20)),
        sa.Column("last_run_duration_ms", sa.Integer()),
        sa.Column("last_run_result", sa.JSON()),
        sa.Column("run_count", sa.Integer(), server_default="0"),
        sa.Column("error_count", sa.Integer(), server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_index("ix_notification_recipient_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("role_assignments")
    op.drop_index("ix_workflow_history_instance_date", table_name="workflow_history")
    op.drop_table("workflow_history")
    op.drop_index("ix_workflow_task_assignee_status", table_name="workflow_tasks")
    op.drop_index("ix_workflow_task_instance_step", table_name="workflow_tasks")
    op.drop_table("workflow_tasks")
    op.drop_table("workflow_instances")
    op.drop_table("workflow_step_approvers")
    op.drop_table("workflow_step_roles")
    op.drop_table("workflow_steps")
    op.drop_table("workflow_templates")
