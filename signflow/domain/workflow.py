"""SQLAlchemy ORM models for workflows and their ordered recipients."""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signflow.db.base import Base
from signflow.domain.mixins import TenantMixin, TimestampMixin

WORKFLOW_ACTIVE = "active"
WORKFLOW_COMPLETED = "completed"

RECIPIENT_PENDING = "pending"
RECIPIENT_COMPLETED = "completed"


def new_access_token() -> str:
    """Opaque, unguessable per-recipient token (used instead of the row id)."""
    return secrets.token_urlsafe(24)


class Workflow(Base, TenantMixin, TimestampMixin):
    """One document routed through an ordered list of recipients."""

    __tablename__ = "workflows"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_token: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, index=True,
        default=lambda: str(uuid.uuid4()),
    )
    source_document_ref: Mapped[str] = mapped_column(String(1000), nullable=False)

    # "active" | "completed" (terminal)
    status: Mapped[str] = mapped_column(
        String(20), default=WORKFLOW_ACTIVE, nullable=False, index=True
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[Any]] = mapped_column("metadata", JSON, nullable=True)

    completed_document_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    audit_document_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    recipients: Mapped[List["Recipient"]] = relationship(
        back_populates="workflow",
        lazy="noload",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Recipient.order_index",
    )


class Recipient(Base, TenantMixin, TimestampMixin):
    """One party in a workflow's mandatory sequential order."""

    __tablename__ = "recipients"
    __table_args__ = (
        UniqueConstraint("workflow_id", "order_index", name="uq_recipients_workflow_order"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workflow_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # PRESCRIBER | PATIENT | PHARMACY | INSURANCE | CUSTOM
    role: Mapped[str] = mapped_column(String(50), default="PRESCRIBER", nullable=False)

    access_token: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True, default=new_access_token
    )

    # "pending" | "completed" (terminal)
    status: Mapped[str] = mapped_column(
        String(20), default=RECIPIENT_PENDING, nullable=False, index=True
    )
    form_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Distribution preferences for the finished documents
    wants_completed_document: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    wants_audit_document: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    workflow: Mapped["Workflow"] = relationship(back_populates="recipients", lazy="noload")
