"""
test_channels.py — Channel providers and provider wiring.

Covers:
    • SimulatedProvider (success / failure, references, determinism)
    • TwilioSmsProvider, SendGridEmailProvider, FcmPushProvider over
      httpx.MockTransport (request shape, success, HTTP rejection)
    • WebPushProvider with an injected sender
    • PushRouter endpoint routing
    • build_providers degradation to simulation

No test touches the network.

Run with:
    pytest tests/test_channels.py -v
"""

from __future__ import annotations

import json
import random
from types import SimpleNamespace
from urllib.parse import parse_qs

import httpx
import pytest
from pywebpush import WebPushException

from backend.app.alerts.channels.base import (
    MODE_LIVE,
    MODE_SIMULATED,
    build_providers,
)
from backend.app.alerts.channels.email import SendGridEmailProvider
from backend.app.alerts.channels.push import FcmPushProvider, PushRouter, WebPushProvider
from backend.app.alerts.channels.simulated import SimulatedProvider
from backend.app.alerts.channels.sms import TwilioSmsProvider, fit_sms_body
from backend.app.alerts.models import (
    Channel,
    Device,
    Preferences,
    RenderedMessage,
)
from backend.app.core.config import Settings

TWILIO_SID = "AC" + "0123456789abcdef" * 2

SUBSCRIPTION = {
    "endpoint": "https://push.example.com/send/abc",
    "keys": {"p256dh": "BNcRd", "auth": "tBHI"},
}


def _make_device(**overrides) -> Device:
    fields = dict(
        id="D1",
        owner_name="Asha",
        phone_number="+15551230001",
        email="asha@mine.example",
        push_token="fcm-token-1",
    )
    fields.update(overrides)
    return Device(**fields)


def _make_message(**overrides) -> RenderedMessage:
    fields = dict(
        title="⚠️ HIGH RISK ALERT: East Wall",
        body="Elevated rockfall risk detected.",
        html="<p>Elevated</p>",
        data={"alertId": "ALR-1", "severity": "high", "vibrationPattern": [300, 200, 300]},
    )
    fields.update(overrides)
    return RenderedMessage(**fields)


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Simulated provider
# ═══════════════════════════════════════════════════════════════════════════

class TestSimulatedProvider:

    @pytest.mark.asyncio
    async def test_always_succeeds_at_rate_one(self):
        provider = SimulatedProvider(Channel.SMS, success_rate=1.0, delay_scale=0)
        outcome = await provider.send(_make_device(), _make_message())
        assert outcome.success
        assert outcome.provider_ref.startswith("sim-sms-")

    @pytest.mark.asyncio
    async def test_always_fails_at_rate_zero(self):
        provider = SimulatedProvider(Channel.EMAIL, success_rate=0.0, delay_scale=0)
        outcome = await provider.send(_make_device(), _make_message())
        assert not outcome.success
        assert outcome.error == "Simulated email delivery failure"

    @pytest.mark.asyncio
    async def test_seeded_rng_is_reproducible(self):
        async def run(seed):
            provider = SimulatedProvider(
                Channel.PUSH, success_rate=0.5, delay_scale=0, rng=random.Random(seed),
            )
            return [(await provider.send(_make_device(), _make_message())).success for _ in range(20)]

        assert await run(7) == await run(7)

    def test_default_rates(self):
        assert SimulatedProvider(Channel.PUSH).success_rate == 0.95
        assert SimulatedProvider(Channel.SMS).success_rate == 0.98
        assert SimulatedProvider(Channel.EMAIL).success_rate == 0.99

    def test_invalid_rate_rejected(self):
        with pytest.raises(ValueError):
            SimulatedProvider(Channel.SMS, success_rate=1.5)

    def test_mode_is_simulated(self):
        assert SimulatedProvider(Channel.SMS).describe()["mode"] == MODE_SIMULATED


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Twilio SMS
# ═══════════════════════════════════════════════════════════════════════════

class TestTwilioSmsProvider:

    def _provider(self, handler) -> TwilioSmsProvider:
        return TwilioSmsProvider(
            account_sid=TWILIO_SID,
            auth_token="secret",
            from_number="+15550000000",
            client=_mock_client(handler),
        )

    @pytest.mark.asyncio
    async def test_posts_form_and_returns_sid(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            seen["auth"] = request.headers.get("Authorization", "")
            return httpx.Response(201, json={"sid": "SM123", "status": "queued"})

        outcome = await self._provider(handler).send(_make_device(), _make_message())
        assert outcome.success and outcome.provider_ref == "SM123"
        assert seen["url"].endswith(f"/Accounts/{TWILIO_SID}/Messages.json")
        assert seen["form"]["To"] == ["+15551230001"]
        assert seen["form"]["From"] == ["+15550000000"]
        assert seen["auth"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_http_error_becomes_failed_outcome(self):
        def handler(request):
            return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To'"})

        outcome = await self._provider(handler).send(_make_device(), _make_message())
        assert not outcome.success
        assert "HTTP 400" in outcome.error

    @pytest.mark.asyncio
    async def test_transport_error_becomes_failed_outcome(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        outcome = await self._provider(handler).send(_make_device(), _make_message())
        assert not outcome.success
        assert "transport error" in outcome.error

    @pytest.mark.asyncio
    async def test_missing_phone_fails_without_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        outcome = await self._provider(handler).send(_make_device(phone_number=None), _make_message())
        assert outcome.error == "No phone number on file"

    def test_long_bodies_cut(self):
        body = fit_sms_body("x" * 2000)
        assert len(body) == 1600 and body.endswith("...")
        assert fit_sms_body("short") == "short"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: SendGrid email
# ═══════════════════════════════════════════════════════════════════════════

class TestSendGridEmailProvider:

    @pytest.mark.asyncio
    async def test_sends_text_and_html(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(202, headers={"X-Message-Id": "msg-42"})

        provider = SendGridEmailProvider(
            api_key="SG.key", from_email="alerts@mine.example", client=_mock_client(handler),
        )
        outcome = await provider.send(_make_device(), _make_message())
        assert outcome.success and outcome.provider_ref == "msg-42"
        assert seen["auth"] == "Bearer SG.key"
        body = seen["body"]
        assert body["personalizations"][0]["to"][0]["email"] == "asha@mine.example"
        assert body["subject"] == "⚠️ HIGH RISK ALERT: East Wall"
        assert [c["type"] for c in body["content"]] == ["text/plain", "text/html"]

    @pytest.mark.asyncio
    async def test_rejection(self):
        provider = SendGridEmailProvider(
            api_key="SG.key",
            from_email="alerts@mine.example",
            client=_mock_client(lambda r: httpx.Response(401, text="unauthorized")),
        )
        outcome = await provider.send(_make_device(), _make_message())
        assert not outcome.success and "HTTP 401" in outcome.error


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Push (FCM, Web Push, router)
# ═══════════════════════════════════════════════════════════════════════════

class TestFcmPushProvider:

    @pytest.mark.asyncio
    async def test_sends_message_with_string_data(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"name": "projects/p/messages/1"})

        provider = FcmPushProvider(
            project_id="rockfall-prod", access_token="tok", client=_mock_client(handler),
        )
        outcome = await provider.send(_make_device(), _make_message())
        assert outcome.success and outcome.provider_ref == "projects/p/messages/1"
        assert "/projects/rockfall-prod/messages:send" in seen["url"]
        message = seen["body"]["message"]
        assert message["token"] == "fcm-token-1"
        assert all(isinstance(v, str) for v in message["data"].values())
        assert message["android"]["notification"]["vibrate_timings"][0] == "0.300s"

    def test_vibration_disabled_drops_pattern(self):
        provider = FcmPushProvider(project_id="p", access_token="t")
        device = _make_device(preferences=Preferences(enable_vibration=False))
        built = provider.build_message(device, _make_message())["message"]
        assert "vibrationPattern" not in built["data"]
        assert "notification" not in built["android"]

    @pytest.mark.asyncio
    async def test_missing_token(self):
        provider = FcmPushProvider(project_id="p", access_token="t")
        outcome = await provider.send(_make_device(push_token=None), _make_message())
        assert not outcome.success


class TestWebPushProvider:

    @pytest.mark.asyncio
    async def test_calls_sender_with_vapid(self):
        calls = []

        def sender(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(headers={"Location": "https://push.example.com/m/1"})

        provider = WebPushProvider(
            vapid_private_key="priv", vapid_subject="mailto:ops@mine.example", sender=sender,
        )
        device = _make_device(push_subscription=SUBSCRIPTION)
        outcome = await provider.send(device, _make_message())
        assert outcome.success and outcome.provider_ref == "https://push.example.com/m/1"
        call = calls[0]
        assert call["subscription_info"] == SUBSCRIPTION
        assert call["vapid_claims"] == {"sub": "mailto:ops@mine.example"}
        assert json.loads(call["data"])["title"] == "⚠️ HIGH RISK ALERT: East Wall"

    @pytest.mark.asyncio
    async def test_push_service_rejection(self):
        def sender(**kwargs):
            raise WebPushException("410 Gone")

        provider = WebPushProvider(vapid_private_key="k", vapid_subject="mailto:x", sender=sender)
        outcome = await provider.send(_make_device(push_subscription=SUBSCRIPTION), _make_message())
        assert not outcome.success
        assert "Web Push rejected" in outcome.error


class TestPushRouter:

    def test_routes_by_endpoint(self):
        web = WebPushProvider(vapid_private_key="k", vapid_subject="mailto:x")
        fcm = FcmPushProvider(project_id="p", access_token="t")
        fallback = SimulatedProvider(Channel.PUSH, delay_scale=0)
        router = PushRouter(web=web, fcm=fcm, fallback=fallback)
        assert router.route(_make_device(push_subscription=SUBSCRIPTION)) is web
        assert router.route(_make_device()) is fcm

    def test_falls_back_for_unconfigured_kind(self):
        fallback = SimulatedProvider(Channel.PUSH, delay_scale=0)
        router = PushRouter(fcm=FcmPushProvider(project_id="p", access_token="t"), fallback=fallback)
        assert router.route(_make_device(push_token=None, push_subscription=SUBSCRIPTION)) is fallback

    @pytest.mark.asyncio
    async def test_no_transport_fails(self):
        router = PushRouter()
        outcome = await router.send(_make_device(), _make_message())
        assert not outcome.success


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Provider wiring
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildProviders:

    def test_no_credentials_all_simulated(self):
        providers = build_providers(Settings())
        assert providers.modes() == {
            "push": MODE_SIMULATED, "sms": MODE_SIMULATED, "email": MODE_SIMULATED,
        }

    def test_valid_twilio_goes_live(self):
        settings = Settings(
            TWILIO_ACCOUNT_SID=TWILIO_SID,
            TWILIO_AUTH_TOKEN="secret",
            TWILIO_FROM_NUMBER="+15550000000",
        )
        providers = build_providers(settings)
        assert providers.sms.mode == MODE_LIVE
        assert providers.email.mode == MODE_SIMULATED

    def test_malformed_twilio_sid_simulated(self):
        settings = Settings(
            TWILIO_ACCOUNT_SID="not-a-sid",
            TWILIO_AUTH_TOKEN="secret",
            TWILIO_FROM_NUMBER="+15550000000",
        )
        assert build_providers(settings).sms.mode == MODE_SIMULATED

    def test_sendgrid_key_prefix_checked(self):
        assert build_providers(Settings(SENDGRID_API_KEY="SG.abc")).email.mode == MODE_LIVE
        assert build_providers(Settings(SENDGRID_API_KEY="abc")).email.mode == MODE_SIMULATED

    def test_vapid_only_builds_router_with_fallback(self):
        settings = Settings(VAPID_PUBLIC_KEY="pub", VAPID_PRIVATE_KEY="priv")
        push = build_providers(settings).push
        assert isinstance(push, PushRouter)
        assert push.web is not None and push.fcm is None
        assert push.fallback.mode == MODE_SIMULATED

    def test_simulation_rates_from_settings(self):
        settings = Settings(SIMULATED_SMS_SUCCESS_RATE=0.5)
        assert build_providers(settings).sms.success_rate == 0.5
