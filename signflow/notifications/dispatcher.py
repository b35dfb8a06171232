"""Records and sends notifications without ever failing the caller.

Every attempt gets a ``Notification`` row written as pending, then updated to
sent or failed. Gateway failures are logged and recorded; they never reach
the workflow state machine.
"""


import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signflow.core.exceptions import NotificationDispatchError
from signflow.domain.notification import CHANNEL_EMAIL, CHANNEL_SMS, Notification
from signflow.notifications import messages
from signflow.notifications.gateways import NotificationGateway
from signflow.repositories.notification import NotificationRepository

logger = logging.getLogger(__name__)

DOCUMENT_COMPLETED = "completed"
DOCUMENT_AUDIT = "audit"


class NotificationDispatcher:
    def __init__(self, session: AsyncSession, client_id: str, gateway: NotificationGateway):
        self._repo = NotificationRepository(session, client_id)
        self._gateway = gateway

    async def notify_turn(self, workflow: Any, recipient: Any, url: str) -> list[Notification]:
        """Tell *recipient* it is their turn: email if they have an address, SMS if a mobile."""
        sent: list[Notification] = []
        if recipient.email:
            sent.append(
                await self.send(
                    workflow_id=workflow.id,
                    recipient_id=recipient.id,
                    channel=CHANNEL_EMAIL,
                    address=recipient.email,
                    subject=messages.TURN_SUBJECT,
                    body=messages.turn_email_body(recipient.name, url),
                )
            )
        if recipient.mobile:
            sent.append(
                await self.send(
                    workflow_id=workflow.id,
                    recipient_id=recipient.id,
                    channel=CHANNEL_SMS,
                    address=recipient.mobile,
                    subject=None,
                    body=messages.turn_sms_body(recipient.name, url),
                )
            )
        if not sent:
            logger.warning(
                "Recipient %s of workflow %s has no email or mobile; nobody was notified",
                recipient.id, workflow.id,
            )
        return sent

    async def send_document(
        self, workflow: Any, recipient: Any, kind: str, url: str,
    ) -> Notification | None:
        """Email a finished-document link. Document links go by email only."""
        if not recipient.email:
            logger.info(
                "Recipient %s wants the %s document but has no email address",
                recipient.id, kind,
            )
            return None
        if kind == DOCUMENT_AUDIT:
            subject = messages.AUDIT_DOCUMENT_SUBJECT
            body = messages.audit_document_body(recipient.name, url)
        else:
            subject = messages.COMPLETED_DOCUMENT_SUBJECT
            body = messages.completed_document_body(recipient.name, url)
        return await self.send(
            workflow_id=workflow.id,
            recipient_id=recipient.id,
            channel=CHANNEL_EMAIL,
            address=recipient.email,
            subject=subject,
            body=body,
        )

    async def send(
        self,
        *,
        workflow_id: str,
        recipient_id: str | None,
        channel: str,
        address: str,
        subject: str | None,
        body: str,
    ) -> Notification | None:
        try:
            record = await self._repo.record_pending(
                workflow_id=workflow_id,
                recipient_id=recipient_id,
                channel=channel,
                address=address,
                subject=subject,
                body=body,
            )
        except SQLAlchemyError as exc:
            logger.error("Could not record %s notification for workflow %s: %s", channel, workflow_id, exc)
            return None

        try:
            external_id = await self._gateway.dispatch(channel, address, subject, body, record.id)
        except NotificationDispatchError as exc:
            return await self._failed(record, exc.message)
        except Exception as exc:
            return await self._failed(record, f"{type(exc).__name__}: {exc}")

        logger.info("Notification %s sent via %s to %s", record.id, channel, address)
        return await self._repo.mark_sent(record.id, external_id)

    async def _failed(self, record: Notification, error: str) -> Notification | None:
        logger.warning(
            "Notification %s via %s to %s failed: %s",
            record.id, record.channel, record.address, error,
        )
        return await self._repo.mark_failed(record.id, error)
