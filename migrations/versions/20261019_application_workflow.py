"""application workflow tables

Revision ID: 20261019_application_workflow
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_application_workflow"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "applications",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("partner_id", sa.String(64), nullable=True),
        sa.Column("student_id", sa.String(64), nullable=True),
        sa.Column("university", sa.String(255), nullable=True),
        sa.Column("program", sa.String(255), nullable=True),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(64), nullable=False, server_default="draft"),
        sa.Column("next_actor", sa.String(20), nullable=True),
        sa.Column("next_action", sa.Text(), nullable=True),
        sa.Column("documents_required", sa.JSON(), nullable=False),
        sa.Column("active_document_request_id", sa.String(64), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("hold_reason", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("resume_reason", sa.Text(), nullable=True),
        sa.Column("previous_status", sa.String(64), nullable=True),
        sa.Column("held_by", sa.String(64), nullable=True),
        sa.Column("held_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resumed_by", sa.String(64), nullable=True),
        sa.Column("resumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("released_by", sa.String(64), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("stage BETWEEN 1 AND 5", name="ck_application_stage_range"),
        sa.CheckConstraint("version >= 1", name="ck_application_version_positive"),
        sa.CheckConstraint(
            "next_actor IS NULL OR next_actor IN ('Admin', 'Partner', 'University', 'Immigration')",
            name="ck_application_next_actor",
        ),
    )
    op.create_index("ix_applications_partner_id", "applications", ["partner_id"])
    op.create_index("ix_applications_student_id", "applications", ["student_id"])
    op.create_index("ix_applications_stage_status", "applications", ["stage", "status"])
    op.create_index("ix_applications_next_actor", "applications", ["next_actor"])

    op.create_table(
        "application_stage_history",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("application_id", sa.String(64), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(64), nullable=False),
        sa.Column("actor", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("application_id", "sequence", name="uq_stage_history_application_sequence"),
    )
    op.create_index(
        "ix_application_stage_history_application_id", "application_stage_history", ["application_id"]
    )

    op.create_table(
        "application_documents",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("application_id", sa.String(64), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("document_type", sa.String(100), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("uploaded_by", sa.String(64), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("reviewed_by", sa.String(64), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'resubmission_required')",
            name="ck_application_document_status",
        ),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_application_documents_application_id", "application_documents", ["application_id"]
    )
    op.create_index(
        "ix_application_documents_application_status",
        "application_documents",
        ["application_id", "status"],
    )


def downgrade() -> None:
    op.drop_index("ix_application_documents_application_status", table_name="application_documents")
    op.drop_index("ix_application_documents_application_id", table_name="application_documents")
    op.drop_table("application_documents")
    op.drop_index("ix_application_stage_history_application_id", table_name="application_stage_history")
    op.drop_table("application_stage_history")
    op.drop_index("ix_applications_next_actor", table_name="applications")
    op.drop_index("ix_applications_stage_status", table_name="applications")
    op.drop_index("ix_applications_student_id", table_name="applications")
    op.drop_index("ix_applications_partner_id", table_name="applications")
    op.drop_table("applications")
