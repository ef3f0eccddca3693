"""
test_api.py — HTTP surface: device registry, alert endpoints, health.

The app is built with an in-memory store and zero-latency simulated
providers that always succeed.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.channels.base import ChannelProviders
from backend.app.alerts.channels.simulated import SimulatedProvider
from backend.app.alerts.models import Channel, Device
from backend.app.alerts.store.memory import InMemoryAlertStore
from backend.app.core.config import Settings
from backend.app.main import create_app


# ============================================================================
# FIXTURES
# ============================================================================


def _simulated_providers() -> ChannelProviders:
    return ChannelProviders(
        push=SimulatedProvider(Channel.PUSH, success_rate=1.0, delay_scale=0),
        sms=SimulatedProvider(Channel.SMS, success_rate=1.0, delay_scale=0),
        email=SimulatedProvider(Channel.EMAIL, success_rate=1.0, delay_scale=0),
    )


@pytest.fixture
def store():
    return InMemoryAlertStore()


@pytest.fixture
def client(store):
    settings = Settings(
        ZONE_ADJACENCY={"zone-1": ["zone-2"], "zone-2": ["zone-1"]},
        VAPID_PUBLIC_KEY="BPublicKey",
    )
    app = create_app(settings, store=store, providers=_simulated_providers())
    with TestClient(app) as test_client:
        yield test_client


def _register(client: TestClient, device_id: str, zone: str, **extra) -> dict:
    body = {
        "id": device_id,
        "owner_name": f"Miner {device_id}",
        "phone_number": "+15551230001",
        "push_token": f"fcm-{device_id}",
        "zone_assignment": zone,
        **extra,
    }
    response = client.post("/api/v1/devices", json=body)
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# DEVICE REGISTRY
# ============================================================================


class TestDevices:

    def test_register_and_fetch(self, client):
        created = _register(client, "D1", "zone-1", preferences={"enableSMS": False})
        assert created["preferences"]["enable_sms"] is False

        fetched = client.get("/api/v1/devices/D1").json()
        assert fetched["owner_name"] == "Miner D1"
        assert fetched["has_push_token"] is True

    def test_generated_id(self, client):
        response = client.post("/api/v1/devices", json={"owner_name": "Anon"})
        assert response.status_code == 201
        assert response.json()["id"].startswith("DEV-")

    def test_invalid_device_type(self, client):
        response = client.post(
            "/api/v1/devices", json={"owner_name": "X", "device_type": "pager"},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_invalid_preferences(self, client):
        response = client.post(
            "/api/v1/devices",
            json={"owner_name": "X", "preferences": {"quietHours": {"start": "9pm", "end": "6am"}}},
        )
        assert response.status_code == 422

    def test_unknown_device_404(self, client):
        response = client.get("/api/v1/devices/nope")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_list_filters(self, client):
        _register(client, "D1", "zone-1")
        _register(client, "D2", "zone-2")
        client.put("/api/v1/devices/D2/status", json={"is_active": False})

        assert client.get("/api/v1/devices").json()["total"] == 2
        assert client.get("/api/v1/devices", params={"zone_id": "zone-2"}).json()["total"] == 1
        active = client.get("/api/v1/devices", params={"active_only": True}).json()
        assert [d["id"] for d in active["devices"]] == ["D1"]

    def test_patch_preferences_is_partial(self, client):
        _register(client, "D1", "zone-1", preferences={"enableSMS": False})
        response = client.patch(
            "/api/v1/devices/D1/preferences",
            json={"quietHours": {"enabled": True, "start": "22:00", "end": "06:00"}},
        )
        prefs = response.json()["preferences"]
        assert prefs["quiet_hours"] == {"start": "22:00", "end": "06:00"}
        assert prefs["enable_sms"] is False

    def test_subscribe_and_heartbeat(self, client):
        _register(client, "D1", "zone-1", device_type="web")
        sub = {"endpoint": "https://push.example.com/x", "keys": {"p256dh": "k", "auth": "a"}}
        assert client.post("/api/v1/devices/D1/subscribe", json=sub).json()["has_push_subscription"]

        beat = client.post(
            "/api/v1/devices/D1/heartbeat",
            json={"battery_level": 41, "network_status": "low-signal"},
        ).json()
        assert beat["battery_level"] == 41
        assert beat["network_status"] == "low-signal"

    def test_heartbeat_rejects_unknown_network_status(self, client):
        _register(client, "D1", "zone-1")
        response = client.post("/api/v1/devices/D1/heartbeat", json={"network_status": "5g"})
        assert response.status_code == 422

    def test_delete_soft_then_permanent(self, client, store):
        _register(client, "D1", "zone-1")
        assert client.delete("/api/v1/devices/D1").json()["is_active"] is False
        assert client.get("/api/v1/devices/D1").status_code == 200

        assert client.delete("/api/v1/devices/D1", params={"permanent": True}).json()["deleted"]
        assert client.get("/api/v1/devices/D1").status_code == 404

    def test_push_public_key(self, client):
        body = client.get("/api/v1/devices/push-public-key").json()
        assert body["public_key"] == "BPublicKey"
        assert body["enabled"] is False


# ============================================================================
# ALERTS
# ============================================================================


class TestAlertEndpoints:

    def test_evaluate_high_reaches_neighbour_zone(self, client):
        _register(client, "D1", "zone-1")
        _register(client, "D2", "zone-2")
        _register(client, "D3", "zone-3")

        body = client.post(
            "/api/v1/alerts/evaluate",
            json={"zone_id": "zone-1", "zone_name": "North Bench", "risk_score": 7.8},
        ).json()

        assert body["alert"]["severity"] == "high"
        assert {d["device_id"] for d in body["deliveries"]} == {"D1", "D2"}
        assert body["dispatch"]["total_sent"] == 4

    def test_evaluate_below_threshold(self, client):
        body = client.post(
            "/api/v1/alerts/evaluate", json={"zone_id": "zone-1", "risk_score": 2.0},
        ).json()
        assert body["alert"] is None

    def test_evaluate_rejects_out_of_range_score(self, client):
        response = client.post(
            "/api/v1/alerts/evaluate", json={"zone_id": "zone-1", "risk_score": 11},
        )
        assert response.status_code == 422

    def test_batch_evaluation(self, client):
        _register(client, "D1", "zone-1")
        body = client.post(
            "/api/v1/alerts/evaluate/batch",
            json={"zones": {"zone-1": "North Bench"}, "scores": {"zone-1": 9.2, "zone-2": 1.0}},
        ).json()
        assert body["alerts_triggered"] == 1
        assert body["max_risk_score"] == 9.2

    def test_manual_dispatch_and_lookup(self, client):
        _register(client, "D1", "zone-1")
        result = client.post(
            "/api/v1/alerts/dispatch",
            json={"zone_id": "zone-1", "severity": "medium", "message": "Bench 4 cracks"},
        ).json()
        alert_id = result["alert"]["id"]
        assert result["alert"]["alert_type"] == "manual"

        stored = client.get(f"/api/v1/alerts/{alert_id}").json()
        assert stored["alert"]["message"] == "Bench 4 cracks"
        assert stored["delivery_count"] == 2
        assert stored["per_channel_success"]["push"] == 1

        deliveries = client.get(f"/api/v1/alerts/{alert_id}/deliveries").json()
        assert deliveries["total"] == 2

    def test_dispatch_invalid_severity(self, client):
        response = client.post(
            "/api/v1/alerts/dispatch",
            json={"zone_id": "zone-1", "severity": "extreme", "message": "x"},
        )
        assert response.status_code == 400

    def test_redispatch_increments_attempts(self, client):
        _register(client, "D1", "zone-1")
        alert_id = client.post(
            "/api/v1/alerts/dispatch",
            json={"zone_id": "zone-1", "severity": "high", "message": "x"},
        ).json()["alert"]["id"]

        again = client.post(f"/api/v1/alerts/{alert_id}/redispatch").json()
        assert {d["delivery_attempts"] for d in again["deliveries"]} == {2}

    def test_unknown_alert(self, client):
        assert client.get("/api/v1/alerts/ALR-NOPE").status_code == 404
        assert client.post("/api/v1/alerts/ALR-NOPE/redispatch").status_code == 404

    def test_test_alert_and_drill(self, client):
        _register(client, "D1", "zone-1")
        test = client.post("/api/v1/alerts/test", json={"device_ids": ["D1"]}).json()
        assert test["alert"]["alert_type"] == "test"
        assert test["summary"]["total_sent"] == 2

        drill = client.post("/api/v1/alerts/simulate-emergency", json={}).json()
        assert drill["alert"]["severity"] == "critical"

    def test_channels(self, client):
        channels = client.get("/api/v1/alerts/channels").json()["channels"]
        assert {c["mode"] for c in channels.values()} == {"simulated"}


# ============================================================================
# HEALTH & MIDDLEWARE
# ============================================================================


class TestHealth:

    def test_health_degraded_when_simulated(self, client):
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        names = {c["name"] for c in body["components"]}
        assert {"store", "channel:push", "channel:sms", "channel:email"} <= names

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness_serves_when_degraded(self, client):
        assert client.get("/health/ready").status_code == 200

    def test_request_id_header(self, client):
        response = client.get("/", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
        assert "X-Process-Time" in response.headers
        assert response.json()["channels"]["sms"] == "simulated"
