"""SQLAlchemy ORM model for outbound notification attempts.

Rows are written once (pending) and updated once (sent | failed). They are an
observational trail only and never feed back into workflow state.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from signflow.db.base import Base
from signflow.domain.mixins import TenantMixin, TimestampMixin

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"

NOTIFICATION_PENDING = "pending"
NOTIFICATION_SENT = "sent"
NOTIFICATION_FAILED = "failed"


class Notification(Base, TenantMixin, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workflow_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("recipients.id", ondelete="SET NULL"), nullable=True
    )

    # "email" | "sms"
    channel: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    # "pending" | "sent" | "failed"
    status: Mapped[str] = mapped_column(String(20), default=NOTIFICATION_PENDING, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
