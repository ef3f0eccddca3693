"""
email.py — Email channel via the SendGrid v3 Mail Send API.

Delivery mechanism:
    POST https://api.sendgrid.com/v3/mail/send
        auth: Bearer <SENDGRID_API_KEY>
        body: personalizations / from / subject / content[text, html]

    SendGrid answers 202 Accepted with an ``X-Message-Id`` header, kept as
    the provider reference.

Email is the slow, rich channel: subject, plain-text part and HTML part
all come from the template engine.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from backend.app.alerts.channels.base import MODE_LIVE, HttpChannelProvider
from backend.app.alerts.models import Channel, Device, RenderedMessage, SendOutcome
from backend.app.core.config import Settings
from backend.app.core.errors import ProviderError

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridEmailProvider(HttpChannelProvider):
    """Live email transport."""

    channel = Channel.EMAIL
    mode = MODE_LIVE
    name = "sendgrid"

    def __init__(
        self,
        *,
        api_key: str,
        from_email: str,
        from_name: str = "Rockfall Alert System",
        timeout_seconds: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._api_key = api_key
        self._from = {"email": from_email, "name": from_name}

    @classmethod
    def from_settings(cls, settings: Settings) -> "SendGridEmailProvider":
        return cls(
            api_key=settings.SENDGRID_API_KEY or "",
            from_email=settings.SENDGRID_FROM_EMAIL,
            from_name=settings.SENDGRID_FROM_NAME,
            timeout_seconds=settings.EMAIL_TIMEOUT_SECONDS,
        )

    def build_mail(self, device: Device, message: RenderedMessage) -> Dict[str, Any]:
        content = [{"type": "text/plain", "value": message.body}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})
        return {
            "personalizations": [
                {"to": [{"email": device.email, "name": device.owner_name}]}
            ],
            "from": self._from,
            "subject": message.title or "Rockfall Alert",
            "content": content,
        }

    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        if not device.email:
            return SendOutcome.failed("No email address on file")

        try:
            client = await self._get_client()
            response = await client.post(
                SENDGRID_SEND_URL,
                json=self.build_mail(device, message),
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
            self._raise_for_status(response)
        except ProviderError as exc:
            logger.error("[EMAIL] SendGrid rejected %s: %s", device.email, exc.message)
            return SendOutcome.failed(exc.message)
        except httpx.HTTPError as exc:
            logger.error("[EMAIL] SendGrid transport error for %s: %s", device.id, exc)
            return SendOutcome.failed(f"SendGrid transport error: {exc}")

        message_id = response.headers.get("X-Message-Id")
        logger.info(
            "[EMAIL] → %s (%s): %s",
            device.email, device.owner_name, message.title,
        )
        return SendOutcome.ok(message_id)
