"""Add operational and issue detection tables

Revision ID: a1c4e7f0b2d5
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c4e7f0b2d5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Operational tables read by the detection context
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "shifts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_shifts_job_id", "shifts", ["job_id"])
    op.create_index("ix_shifts_worker_id", "shifts", ["worker_id"])
    op.create_index("ix_shifts_status", "shifts", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_worker_id", "payments", ["worker_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "compliance_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("report_type", sa.String(), nullable=True),
        sa.Column("compliance_status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_compliance_records_compliance_status", "compliance_records", ["compliance_status"])

    # Create issue_alerts table
    op.create_table(
        "issue_alerts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("issue_type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("affected_module", sa.String(), nullable=False),
        sa.Column("affected_entity_type", sa.String(), nullable=True),
        sa.Column("affected_entity_id", sa.String(), nullable=True),
        sa.Column("detection_method", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_issue_alerts_issue_type", "issue_alerts", ["issue_type"])
    op.create_index("ix_issue_alerts_status", "issue_alerts", ["status"])
    op.create_index("ix_issue_alerts_affected_entity_id", "issue_alerts", ["affected_entity_id"])

    # Create issue_recommendations table
    op.create_table(
        "issue_recommendations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("alert_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("recommendation_type", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("estimated_impact", sa.String(), nullable=True),
        sa.Column("required_capabilities", sa.JSON(), nullable=False),
        sa.Column("automatable", sa.Boolean(), nullable=False),
        sa.Column("action_metadata", sa.JSON(), nullable=False),
        sa.Column("estimated_duration", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["alert_id"], ["issue_alerts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_issue_recommendations_alert_id", "issue_recommendations", ["alert_id"])

    # Create issue_actions table
    op.create_table(
        "issue_actions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("alert_id", sa.String(), nullable=False),
        sa.Column("recommendation_id", sa.String(), nullable=True),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("initiated_by", sa.String(), nullable=False),
        sa.Column("action_details", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["alert_id"], ["issue_alerts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recommendation_id"], ["issue_recommendations.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_issue_actions_alert_id", "issue_actions", ["alert_id"])


def downgrade() -> None:
    op.drop_index("ix_issue_actions_alert_id", table_name="issue_actions")
    op.drop_table("issue_actions")

    op.drop_index("ix_issue_recommendations_alert_id", table_name="issue_recommendations")
    op.drop_table("issue_recommendations")

    op.drop_index("ix_issue_alerts_affected_entity_id", table_name="issue_alerts")
    op.drop_index("ix_issue_alerts_status", table_name="issue_alerts")
    op.drop_index("ix_issue_alerts_issue_type", table_name="issue_alerts")
    op.drop_table("issue_alerts")

    op.drop_index("ix_compliance_records_compliance_status", table_name="compliance_records")
    op.drop_table("compliance_records")

    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_worker_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_shifts_status", table_name="shifts")
    op.drop_index("ix_shifts_worker_id", table_name="shifts")
    op.drop_index("ix_shifts_job_id", table_name="shifts")
    op.drop_table("shifts")

    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_table("jobs")
