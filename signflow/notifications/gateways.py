"""Outbound message gateways (email relay, Twilio SMS, log-only).

Gateways are stateless and raise :class:`NotificationDispatchError` when a
message cannot be handed off. Recording and failure isolation belong to
:class:`signflow.notifications.dispatcher.NotificationDispatcher`.
"""


import logging
from typing import Protocol

import httpx

from signflow.core.config import Settings, settings
from signflow.core.exceptions import NotificationDispatchError
from signflow.domain.notification import CHANNEL_EMAIL, CHANNEL_SMS

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class NotificationGateway(Protocol):
    async def dispatch(
        self,
        channel: str,
        address: str,
        subject: str | None,
        body: str,
        correlation_id: str,
    ) -> str | None:
        """Hand a message off; return the provider's message id if any."""
        ...


class LoggingGateway:
    """Development gateway: logs the message and reports success."""

    async def dispatch(self, channel, address, subject, body, correlation_id):
        logger.info(
            "[%s] %s notification to %s (subject=%r, %d chars)",
            correlation_id, channel, address, subject, len(body),
        )
        return f"logged-{correlation_id}"


class EmailRelayGateway:
    """POSTs ``{email, subject, body}`` as JSON to an HTTP email relay."""

    def __init__(
        self,
        relay_url: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._relay_url = relay_url
        self._timeout = timeout
        self._transport = transport

    async def dispatch(self, channel, address, subject, body, correlation_id):
        payload = {"email": address, "subject": subject or "", "body": body}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._relay_url, json=payload)
        except httpx.HTTPError as exc:
            raise NotificationDispatchError(f"Email relay unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise NotificationDispatchError(
                f"Email relay error: {response.status_code} - {response.text[:500]}"
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = data.get("messageId") if isinstance(data, dict) else None
        logger.info("[%s] Email relayed to %s", correlation_id, address)
        return message_id or "email-sent"


class TwilioSmsGateway:
    """Sends SMS through the Twilio Messages REST endpoint."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._timeout = timeout
        self._transport = transport

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json"

    async def dispatch(self, channel, address, subject, body, correlation_id):
        form = {"To": address, "From": self._from_number, "Body": body}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.messages_url,
                    data=form,
                    auth=(self._account_sid, self._auth_token),
                )
        except httpx.HTTPError as exc:
            raise NotificationDispatchError(f"Twilio unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise NotificationDispatchError(
                f"Twilio error: {response.status_code} - {response.text[:500]}"
            )
        sid = response.json().get("sid")
        logger.info("[%s] SMS sent to %s (sid=%s)", correlation_id, address, sid)
        return sid


class ChannelRouter:
    """Routes each message to the gateway configured for its channel."""

    def __init__(
        self,
        *,
        email: NotificationGateway | None = None,
        sms: NotificationGateway | None = None,
        fallback: NotificationGateway | None = None,
    ):
        self._fallback = fallback or LoggingGateway()
        self._routes: dict[str, NotificationGateway] = {}
        if email is not None:
            self._routes[CHANNEL_EMAIL] = email
        if sms is not None:
            self._routes[CHANNEL_SMS] = sms

    def gateway_for(self, channel: str) -> NotificationGateway:
        return self._routes.get(channel, self._fallback)

    async def dispatch(self, channel, address, subject, body, correlation_id):
        return await self.gateway_for(channel).dispatch(
            channel, address, subject, body, correlation_id,
        )


def build_gateway(cfg: Settings = settings) -> ChannelRouter:
    """Gateway stack for the current configuration; unconfigured channels only log."""
    email = None
    if cfg.email_enabled:
        email = EmailRelayGateway(cfg.email_relay_url, timeout=cfg.notification_timeout)
    else:
        logger.info("EMAIL_RELAY_URL not set; email notifications will only be logged")

    sms = None
    if cfg.sms_enabled:
        sms = TwilioSmsGateway(
            cfg.twilio_account_sid,
            cfg.twilio_auth_token,
            cfg.twilio_from_number,
            timeout=cfg.notification_timeout,
        )
    else:
        logger.info("Twilio credentials not set; SMS notifications will only be logged")

    return ChannelRouter(email=email, sms=sms)
