"""
push.py — Push notification channel (browser Web Push + mobile FCM).

Delivery mechanism:
    • Browser devices: Web Push Protocol (RFC 8030) with VAPID auth via
      pywebpush, to the subscription endpoint the browser registered
    • Mobile devices: Firebase Cloud Messaging HTTP v1 API
          POST https://fcm.googleapis.com/v1/projects/{project}/messages:send
    • Payload: title, body and data {alertId, severity, zoneId,
      vibrationPattern, timestamp}

═══════════════════════════════════════════════════════════════════════════
ENDPOINT ROUTING
═══════════════════════════════════════════════════════════════════════════

    device.push_subscription + VAPID configured  →  WebPushProvider
    device.push_token        + FCM configured    →  FcmPushProvider
    otherwise                                    →  simulated fallback
                                                    (if wired by factory)

Devices that turned vibration off get the alert without a vibration
pattern; the alert itself is never suppressed by that flag.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import httpx
from pywebpush import WebPushException, webpush

from backend.app.alerts.channels.base import (
    MODE_LIVE,
    ChannelProvider,
    HttpChannelProvider,
)
from backend.app.alerts.models import Channel, Device, RenderedMessage, SendOutcome
from backend.app.core.config import Settings
from backend.app.core.errors import ProviderError

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project}/messages:send"

# Web Push message lifetime at the push service (seconds)
WEB_PUSH_TTL = 3600


def _payload_data(device: Device, message: RenderedMessage) -> Dict[str, Any]:
    data = dict(message.data)
    if not device.preferences.enable_vibration:
        data.pop("vibrationPattern", None)
    return data


# ═══════════════════════════════════════════════════════════════════════════
# Web Push (VAPID)
# ═══════════════════════════════════════════════════════════════════════════

class WebPushProvider(ChannelProvider):
    """Browser push through pywebpush; the blocking call runs in a thread."""

    channel = Channel.PUSH
    mode = MODE_LIVE
    name = "webpush"

    def __init__(
        self,
        *,
        vapid_private_key: str,
        vapid_subject: str,
        timeout_seconds: float = 10.0,
        sender: Callable[..., Any] = webpush,
    ):
        self._private_key = vapid_private_key
        self._claims = {"sub": vapid_subject}
        self._timeout = timeout_seconds
        self._sender = sender

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebPushProvider":
        return cls(
            vapid_private_key=settings.VAPID_PRIVATE_KEY or "",
            vapid_subject=settings.VAPID_SUBJECT,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )

    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        if not device.push_subscription:
            return SendOutcome.failed("Device has no web push subscription")

        payload = json.dumps({
            "title": message.title,
            "body": message.body,
            **_payload_data(device, message),
        })

        try:
            response = await asyncio.to_thread(
                self._sender,
                subscription_info=device.push_subscription,
                data=payload,
                vapid_private_key=self._private_key,
                vapid_claims=dict(self._claims),
                ttl=WEB_PUSH_TTL,
                timeout=self._timeout,
            )
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            logger.error("[PUSH] Web Push to %s rejected (%s): %s", device.id, status, exc)
            return SendOutcome.failed(f"Web Push rejected: {exc}")
        except Exception as exc:
            logger.error("[PUSH] Web Push to %s failed: %s", device.id, exc)
            return SendOutcome.failed(str(exc))

        headers = getattr(response, "headers", None) or {}
        logger.info(
            "[PUSH] Web Push %s → %s (%s)",
            message.data.get("alertId"), device.id, device.owner_name,
        )
        return SendOutcome.ok(headers.get("Location"))


# ═══════════════════════════════════════════════════════════════════════════
# FCM HTTP v1
# ═══════════════════════════════════════════════════════════════════════════

class FcmPushProvider(HttpChannelProvider):
    """Mobile push via the FCM HTTP v1 API (OAuth2 bearer token)."""

    channel = Channel.PUSH
    mode = MODE_LIVE
    name = "fcm"

    def __init__(
        self,
        *,
        project_id: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._url = FCM_SEND_URL.format(project=project_id)
        self._access_token = access_token

    @classmethod
    def from_settings(cls, settings: Settings) -> "FcmPushProvider":
        return cls(
            project_id=settings.FCM_PROJECT_ID or "",
            access_token=settings.FCM_ACCESS_TOKEN or "",
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )

    def build_message(self, device: Device, message: RenderedMessage) -> Dict[str, Any]:
        data = _payload_data(device, message)
        # FCM data values must be strings
        str_data = {
            k: v if isinstance(v, str) else json.dumps(v)
            for k, v in data.items()
        }
        android: Dict[str, Any] = {"priority": "high"}
        if "vibrationPattern" in data:
            android["notification"] = {
                "vibrate_timings": [f"{ms / 1000:.3f}s" for ms in data["vibrationPattern"]],
            }
        return {
            "message": {
                "token": device.push_token,
                "notification": {"title": message.title or "", "body": message.body},
                "data": str_data,
                "android": android,
                "apns": {"headers": {"apns-priority": "10"}},
            }
        }

    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        if not device.push_token:
            return SendOutcome.failed("Device has no FCM token")

        try:
            client = await self._get_client()
            response = await client.post(
                self._url,
                json=self.build_message(device, message),
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=self._timeout,
            )
            self._raise_for_status(response)
            ref = response.json().get("name")
        except ProviderError as exc:
            logger.error("[PUSH] FCM to %s rejected: %s", device.id, exc.message)
            return SendOutcome.failed(exc.message)
        except httpx.HTTPError as exc:
            logger.error("[PUSH] FCM to %s failed: %s", device.id, exc)
            return SendOutcome.failed(f"FCM transport error: {exc}")

        logger.info(
            "[PUSH] FCM %s → %s (%s)",
            message.data.get("alertId"), device.id, device.owner_name,
        )
        return SendOutcome.ok(ref)


# ═══════════════════════════════════════════════════════════════════════════
# Router
# ═══════════════════════════════════════════════════════════════════════════

class PushRouter(ChannelProvider):
    """Routes each device to the push transport matching its endpoint."""

    channel = Channel.PUSH
    mode = MODE_LIVE
    name = "push-router"

    def __init__(
        self,
        *,
        web: Optional[WebPushProvider] = None,
        fcm: Optional[FcmPushProvider] = None,
        fallback: Optional[ChannelProvider] = None,
    ):
        self.web = web
        self.fcm = fcm
        self.fallback = fallback

    def route(self, device: Device) -> Optional[ChannelProvider]:
        if device.push_subscription and self.web is not None:
            return self.web
        if device.push_token and self.fcm is not None:
            return self.fcm
        return self.fallback

    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        provider = self.route(device)
        if provider is None:
            return SendOutcome.failed("No push transport configured for this device's endpoint")
        return await provider.send(device, message)

    async def close(self) -> None:
        for provider in (self.web, self.fcm, self.fallback):
            if provider is not None:
                await provider.close()

    def describe(self) -> Dict[str, str]:
        transports = [p.name for p in (self.web, self.fcm, self.fallback) if p is not None]
        return {
            "channel": self.channel.value,
            "mode": self.mode,
            "provider": "+".join(transports),
        }
