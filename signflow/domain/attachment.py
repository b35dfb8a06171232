"""SQLAlchemy ORM model for files uploaded alongside a workflow."""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from signflow.db.base import Base
from signflow.domain.mixins import TenantMixin, TimestampMixin


class Attachment(Base, TenantMixin, TimestampMixin):
    """Side artifact; only the audit compiler reads these."""

    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workflow_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("recipients.id", ondelete="SET NULL"), nullable=True, index=True
    )

    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    # recipient name or "admin"
    uploaded_by: Mapped[str] = mapped_column(String(255), default="unknown", nullable=False)
