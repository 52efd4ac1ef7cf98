"""Create approval workflow tables

Revision ID: 0001_create_approval_tables
Revises:
Create Date: 2026-10-19

Projects, per-project approval settings, artifacts with their approval
workflows and steps, history, rejection feedback and SLA tracking.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_create_approval_tables"
down_revision = None
branch_labels = None
depends_on = None

ARTIFACT_TYPES = ("test_case", "script", "bug_analysis", "chat_suggestion", "self_healing_fix")
ARTIFACT_STATES = ("draft", "pending_review", "in_review", "approved", "rejected", "archived")
RISK_LEVELS = ("low", "medium", "high", "critical")
HISTORY_ACTIONS = (
    "created",
    "submitted",
    "auto_approved",
    "claimed",
    "approval_step_completed",
    "approved",
    "rejected",
    "revised",
    "archived",
)
FEEDBACK_CATEGORIES = (
    "accuracy",
    "incomplete",
    "style_violation",
    "security_concern",
    "performance",
    "scope_creep",
    "duplicate",
    "other",
)
STEP_STATUSES = ("in_progress", "approved", "rejected")
SLA_STATUSES = ("within_sla", "approaching_sla", "breached", "completed")

ENUM_TYPES = {
    "artifact_type": ARTIFACT_TYPES,
    "artifact_state": ARTIFACT_STATES,
    "risk_level": RISK_LEVELS,
    "approval_step_status": STEP_STATUSES,
    "artifact_history_action": HISTORY_ACTIONS,
    "feedback_category": FEEDBACK_CATEGORIES,
    "feedback_severity": RISK_LEVELS,
    "sla_status": SLA_STATUSES,
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created once up front; columns only reference them
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUM_TYPES.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "approval_settings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "project_id",
            sa.String(36),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("low_risk_threshold", sa.Integer, nullable=False, server_default="25"),
        sa.Column("medium_risk_threshold", sa.Integer, nullable=False, server_default="50"),
        sa.Column("high_risk_threshold", sa.Integer, nullable=False, server_default="75"),
        sa.Column("low_risk_sla_hours", sa.Integer, nullable=False, server_default="1"),
        sa.Column("medium_risk_sla_hours", sa.Integer, nullable=False, server_default="4"),
        sa.Column("high_risk_sla_hours", sa.Integer, nullable=False, server_default="24"),
        sa.Column("critical_risk_sla_hours", sa.Integer, nullable=False, server_default="48"),
        sa.Column("auto_approve_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("auto_approve_max_risk", _enum("risk_level"), nullable=False, server_default="low"),
        sa.Column("auto_approve_min_confidence", sa.Float, nullable=False, server_default="90"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False, index=True),
        sa.Column("type", _enum("artifact_type"), nullable=False, index=True),
        sa.Column("state", _enum("artifact_state"), nullable=False, server_default="draft", index=True),
        sa.Column("risk_level", _enum("risk_level"), nullable=False, index=True),
        sa.Column("risk_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risk_factors", sa.JSON, nullable=False),
        sa.Column("ai_confidence_score", sa.Float, nullable=True),
        sa.Column("source_agent", sa.String(100), nullable=False),
        sa.Column("created_by_id", sa.String(128), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("content", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "previous_version_id",
            sa.String(36),
            sa.ForeignKey("artifacts.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_artifacts_project_state", "artifacts", ["project_id", "state"])
    op.create_index("ix_artifacts_state_submitted", "artifacts", ["state", "submitted_at"])

    op.create_table(
        "approval_workflows",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "artifact_id",
            sa.String(36),
            sa.ForeignKey("artifacts.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("required_approvals", sa.Integer, nullable=False, server_default="1"),
        sa.Column("current_approvals", sa.Integer, nullable=False, server_default="0"),
        sa.Column("requires_admin", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("requires_lead", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_approved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_approve_reason", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "approval_steps",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "workflow_id",
            sa.String(36),
            sa.ForeignKey("approval_workflows.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("step_order", sa.Integer, nullable=False, server_default="1"),
        sa.Column("assigned_to_id", sa.String(128), nullable=False, index=True),
        sa.Column(
            "status",
            _enum("approval_step_status"),
            nullable=False,
            server_default="in_progress",
        ),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("action_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # Single active reviewer per workflow
    op.create_index(
        "uq_approval_steps_active_per_workflow",
        "approval_steps",
        ["workflow_id"],
        unique=True,
        sqlite_where=sa.text("status = 'in_progress'"),
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "artifact_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "artifact_id",
            sa.String(36),
            sa.ForeignKey("artifacts.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("from_state", _enum("artifact_state"), nullable=True),
        sa.Column("to_state", _enum("artifact_state"), nullable=False),
        sa.Column("action", _enum("artifact_history_action"), nullable=False, index=True),
        sa.Column("actor_id", sa.String(128), nullable=True, index=True),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("action_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_artifact_history_artifact_ts", "artifact_history", ["artifact_id", "action_at"])

    op.create_table(
        "approval_feedback",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "artifact_id",
            sa.String(36),
            sa.ForeignKey("artifacts.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("category", _enum("feedback_category"), nullable=False, index=True),
        sa.Column("severity", _enum("feedback_severity"), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("suggested_fix", sa.Text, nullable=True),
        sa.Column("affected_section", sa.String(200), nullable=True),
        sa.Column("corrected_content", sa.Text, nullable=True),
        sa.Column("created_by_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "sla_tracking",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "artifact_id",
            sa.String(36),
            sa.ForeignKey("artifacts.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("risk_level", _enum("risk_level"), nullable=False),
        sa.Column("deadline_hours", sa.Integer, nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column(
            "status",
            _enum("sla_status"),
            nullable=False,
            server_default="within_sla",
            index=True,
        ),
        sa.Column("warning_threshold", sa.Integer, nullable=False, server_default="75"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("sla_tracking")
    op.drop_table("approval_feedback")
    op.drop_index("ix_artifact_history_artifact_ts", table_name="artifact_history")
    op.drop_table("artifact_history")
    op.drop_index("uq_approval_steps_active_per_workflow", table_name="approval_steps")
    op.drop_table("approval_steps")
    op.drop_table("approval_workflows")
    op.drop_index("ix_artifacts_state_submitted", table_name="artifacts")
    op.drop_index("ix_artifacts_project_state", table_name="artifacts")
    op.drop_table("artifacts")
    op.drop_table("approval_settings")
    op.drop_table("projects")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in reversed(list(ENUM_TYPES)):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
