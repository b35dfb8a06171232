"""Notification repository — write-once, update-once outbound attempt rows."""

from __future__ import annotations

from signflow.domain.notification import (
    NOTIFICATION_FAILED,
    NOTIFICATION_PENDING,
    NOTIFICATION_SENT,
    Notification,
)
from signflow.repositories.base import BaseRepository, utcnow


class NotificationRepository(BaseRepository[Notification]):
    model = Notification

    async def record_pending(
        self,
        *,
        workflow_id: str,
        channel: str,
        address: str,
        body: str,
        subject: str | None = None,
        recipient_id: str | None = None,
    ) -> Notification:
        return await self.create(
            workflow_id=workflow_id,
            recipient_id=recipient_id,
            channel=channel,
            address=address,
            subject=subject,
            body=body,
            status=NOTIFICATION_PENDING,
        )

    async def mark_sent(self, notification_id: str, external_id: str | None) -> Notification | None:
        return await self.update(
            notification_id,
            status=NOTIFICATION_SENT,
            external_id=external_id,
            sent_at=utcnow(),
        )

    async def mark_failed(self, notification_id: str, error: str) -> Notification | None:
        return await self.update(notification_id, status=NOTIFICATION_FAILED, error=error[:2000])

    async def list_by_workflow(self, workflow_id: str) -> list[Notification]:
        result = await self._session.execute(
            self._base_query()
            .where(Notification.workflow_id == workflow_id)
            .order_by(Notification.created_at.asc())
        )
        return list(result.scalars().all())
