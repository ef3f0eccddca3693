"""
base.py — Channel provider contract and provider wiring.

Every channel exposes one coroutine:

    send(device, message: RenderedMessage) → SendOutcome

Two provider variants exist per channel:

    live       — talks to the real transport (FCM / Web Push, Twilio,
                 SendGrid) and reports the transport's own verdict
    simulated  — SimulatedProvider: random latency + fixed success rate

Which variant a channel gets is decided once, in ``build_providers``.
Missing or malformed credentials select the simulated variant with a
logged warning; startup never fails on provider configuration, and live
providers never fall back to simulation themselves.
"""

from __future__ import annotations

import logging
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from backend.app.alerts.models import Channel, Device, RenderedMessage, SendOutcome
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import ProviderError

logger = logging.getLogger(__name__)

_TWILIO_SID_RE = re.compile(r"^AC[0-9a-fA-F]{32}$")

MODE_LIVE = "live"
MODE_SIMULATED = "simulated"


class ChannelProvider(ABC):
    """One notification channel."""

    channel: Channel
    mode: str = MODE_LIVE
    name: str = "provider"

    @abstractmethod
    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        """Deliver ``message`` to ``device``; report, don't raise, on rejection."""

    async def close(self) -> None:
        return None

    def describe(self) -> Dict[str, str]:
        return {"channel": self.channel.value, "mode": self.mode, "provider": self.name}


class HttpChannelProvider(ChannelProvider):
    """Live provider backed by an httpx.AsyncClient with a per-call timeout."""

    def __init__(
        self,
        *,
        timeout_seconds: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout_seconds
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            detail = response.json()
        except ValueError:
            detail = response.text
        raise ProviderError(
            self.name,
            f"HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
        )


@dataclass
class ChannelProviders:
    """Explicit provider set injected into the dispatch service."""
    push: ChannelProvider
    sms: ChannelProvider
    email: ChannelProvider

    def for_channel(self, channel: Channel) -> ChannelProvider:
        return {
            Channel.PUSH: self.push,
            Channel.SMS: self.sms,
            Channel.EMAIL: self.email,
        }[channel]

    def modes(self) -> Dict[str, str]:
        return {
            Channel.PUSH.value: self.push.mode,
            Channel.SMS.value: self.sms.mode,
            Channel.EMAIL.value: self.email.mode,
        }

    def describe(self) -> Dict[str, Dict[str, str]]:
        return {
            Channel.PUSH.value: self.push.describe(),
            Channel.SMS.value: self.sms.describe(),
            Channel.EMAIL.value: self.email.describe(),
        }

    async def close(self) -> None:
        for provider in (self.push, self.sms, self.email):
            await provider.close()


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def twilio_credentials_valid(settings: Settings) -> bool:
    return bool(
        settings.TWILIO_ACCOUNT_SID
        and settings.TWILIO_AUTH_TOKEN
        and settings.TWILIO_FROM_NUMBER
        and _TWILIO_SID_RE.match(settings.TWILIO_ACCOUNT_SID)
    )


def sendgrid_credentials_valid(settings: Settings) -> bool:
    return bool(settings.SENDGRID_API_KEY and settings.SENDGRID_API_KEY.startswith("SG."))


def vapid_credentials_valid(settings: Settings) -> bool:
    return bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY)


def fcm_credentials_valid(settings: Settings) -> bool:
    return bool(settings.FCM_PROJECT_ID and settings.FCM_ACCESS_TOKEN)


def build_providers(
    settings: Optional[Settings] = None,
    *,
    rng: Optional[random.Random] = None,
) -> ChannelProviders:
    """
    Pick a live or simulated provider per channel from configuration.

    ``rng`` seeds every simulated provider (tests pass a seeded Random).
    """
    from backend.app.alerts.channels.email import SendGridEmailProvider
    from backend.app.alerts.channels.push import (
        FcmPushProvider,
        PushRouter,
        WebPushProvider,
    )
    from backend.app.alerts.channels.simulated import SimulatedProvider
    from backend.app.alerts.channels.sms import TwilioSmsProvider

    settings = settings or get_settings()
    rng = rng or random.Random()

    def simulated(channel: Channel, rate: float) -> SimulatedProvider:
        return SimulatedProvider(
            channel,
            success_rate=rate,
            delay_scale=settings.SIMULATION_DELAY_SCALE,
            rng=rng,
        )

    # ── Push ──
    web = WebPushProvider.from_settings(settings) if vapid_credentials_valid(settings) else None
    fcm = FcmPushProvider.from_settings(settings) if fcm_credentials_valid(settings) else None
    if web or fcm:
        if web is None or fcm is None:
            logger.warning(
                "Only %s push configured — other endpoint kinds will be simulated",
                "Web Push" if web else "FCM",
            )
        push: ChannelProvider = PushRouter(
            web=web,
            fcm=fcm,
            fallback=simulated(Channel.PUSH, settings.SIMULATED_PUSH_SUCCESS_RATE),
        )
    else:
        logger.warning("Push not configured (VAPID / FCM) — push notifications will be simulated")
        push = simulated(Channel.PUSH, settings.SIMULATED_PUSH_SUCCESS_RATE)

    # ── SMS ──
    if twilio_credentials_valid(settings):
        sms: ChannelProvider = TwilioSmsProvider.from_settings(settings)
    else:
        if settings.TWILIO_ACCOUNT_SID:
            logger.warning("Twilio credentials incomplete or malformed — SMS will be simulated")
        else:
            logger.warning("Twilio not configured — SMS will be simulated")
        sms = simulated(Channel.SMS, settings.SIMULATED_SMS_SUCCESS_RATE)

    # ── Email ──
    if sendgrid_credentials_valid(settings):
        email: ChannelProvider = SendGridEmailProvider.from_settings(settings)
    else:
        if settings.SENDGRID_API_KEY:
            logger.warning("SendGrid API key malformed — emails will be simulated")
        else:
            logger.warning("SendGrid not configured — emails will be simulated")
        email = simulated(Channel.EMAIL, settings.SIMULATED_EMAIL_SUCCESS_RATE)

    providers = ChannelProviders(push=push, sms=sms, email=email)
    logger.info("Channel providers ready: %s", providers.modes())
    return providers
