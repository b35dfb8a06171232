"""initial schema: workflows, recipients, notifications, attachments

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _tenant_and_timestamps() -> list[sa.Column]:
    return [
        sa.Column("client_id", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "workflows",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("external_token", sa.String(length=36), nullable=False),
        sa.Column("source_document_ref", sa.String(length=1000), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("completed_document_ref", sa.String(length=500), nullable=True),
        sa.Column("audit_document_ref", sa.String(length=500), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_tenant_and_timestamps(),
    )
    op.create_index("ix_workflows_external_token", "workflows", ["external_token"], unique=True)
    op.create_index("ix_workflows_status", "workflows", ["status"])
    op.create_index("ix_workflows_client_id", "workflows", ["client_id"])

    op.create_table(
        "recipients",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "workflow_id", sa.String(length=36),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("mobile", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("access_token", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("form_data", sa.JSON(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("wants_completed_document", sa.Boolean(), nullable=False),
        sa.Column("wants_audit_document", sa.Boolean(), nullable=False),
        *_tenant_and_timestamps(),
        sa.UniqueConstraint("workflow_id", "order_index", name="uq_recipients_workflow_order"),
    )
    op.create_index("ix_recipients_workflow_id", "recipients", ["workflow_id"])
    op.create_index("ix_recipients_access_token", "recipients", ["access_token"], unique=True)
    op.create_index("ix_recipients_status", "recipients", ["status"])
    op.create_index("ix_recipients_client_id", "recipients", ["client_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "workflow_id", sa.String(length=36),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "recipient_id", sa.String(length=36),
            sa.ForeignKey("recipients.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("channel", sa.String(length=10), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_tenant_and_timestamps(),
    )
    op.create_index("ix_notifications_workflow_id", "notifications", ["workflow_id"])
    op.create_index("ix_notifications_channel", "notifications", ["channel"])
    op.create_index("ix_notifications_client_id", "notifications", ["client_id"])

    op.create_table(
        "attachments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "workflow_id", sa.String(length=36),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "recipient_id", sa.String(length=36),
            sa.ForeignKey("recipients.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("stored_ref", sa.String(length=500), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("uploaded_by", sa.String(length=255), nullable=False),
        *_tenant_and_timestamps(),
    )
    op.create_index("ix_attachments_workflow_id", "attachments", ["workflow_id"])
    op.create_index("ix_attachments_recipient_id", "attachments", ["recipient_id"])
    op.create_index("ix_attachments_client_id", "attachments", ["client_id"])


def downgrade() -> None:
    op.drop_table("attachments")
    op.drop_table("notifications")
    op.drop_table("recipients")
    op.drop_table("workflows")
