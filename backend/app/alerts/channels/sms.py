"""
sms.py — SMS channel via the Twilio Programmable Messaging REST API.

Delivery mechanism:
    POST https://api.twilio.com/2010-04-01/Accounts/{AccountSid}/Messages.json
        auth: HTTP basic (AccountSid, AuthToken)
        form: To, From, Body

    Twilio answers 201 with the message resource; its ``sid`` (SM…) is kept
    as the provider reference for later delivery receipts.

Bodies longer than Twilio's 1600-character limit are cut here, since the
template engine never truncates. Carriers split the rest into segments.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from backend.app.alerts.channels.base import MODE_LIVE, HttpChannelProvider
from backend.app.alerts.models import Channel, Device, RenderedMessage, SendOutcome
from backend.app.core.config import Settings
from backend.app.core.errors import ProviderError

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

TWILIO_MAX_BODY = 1600
SMS_SEGMENT_UCS2 = 67  # per-segment chars once emoji force UCS-2


def fit_sms_body(body: str, limit: int = TWILIO_MAX_BODY) -> str:
    """Cut ``body`` to ``limit`` characters, ending with an ellipsis."""
    if len(body) <= limit:
        return body
    return body[: limit - 3] + "..."


class TwilioSmsProvider(HttpChannelProvider):
    """Live SMS transport."""

    channel = Channel.SMS
    mode = MODE_LIVE
    name = "twilio"

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._url = TWILIO_MESSAGES_URL.format(sid=account_sid)
        self._auth = (account_sid, auth_token)
        self._from = from_number

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioSmsProvider":
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID or "",
            auth_token=settings.TWILIO_AUTH_TOKEN or "",
            from_number=settings.TWILIO_FROM_NUMBER or "",
            timeout_seconds=settings.SMS_TIMEOUT_SECONDS,
        )

    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        if not device.phone_number:
            return SendOutcome.failed("No phone number on file")

        body = fit_sms_body(message.body)
        try:
            client = await self._get_client()
            response = await client.post(
                self._url,
                auth=self._auth,
                data={"To": device.phone_number, "From": self._from, "Body": body},
                timeout=self._timeout,
            )
            self._raise_for_status(response)
            sid = response.json().get("sid")
        except ProviderError as exc:
            logger.error("[SMS] Twilio rejected %s: %s", device.phone_number, exc.message)
            return SendOutcome.failed(exc.message)
        except httpx.HTTPError as exc:
            logger.error("[SMS] Twilio transport error for %s: %s", device.id, exc)
            return SendOutcome.failed(f"Twilio transport error: {exc}")

        logger.info(
            "[SMS] → %s (%s): %d chars, ~%d segments, sid=%s",
            device.phone_number, device.owner_name, len(body),
            1 + (len(body) - 1) // SMS_SEGMENT_UCS2, sid,
        )
        return SendOutcome.ok(sid)
