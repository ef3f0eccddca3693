"""
FastAPI route: Device registry for alert recipients.

Endpoints:
    GET    /api/v1/devices                      — list (zone / active filters)
    POST   /api/v1/devices                      — register or replace a device
    GET    /api/v1/devices/push-public-key      — VAPID key for browser clients
    GET    /api/v1/devices/{id}                 — one device
    PATCH  /api/v1/devices/{id}/preferences     — partial preference update
    POST   /api/v1/devices/{id}/subscribe       — attach a Web Push subscription
    POST   /api/v1/devices/{id}/heartbeat       — last-seen / battery / network
    PUT    /api/v1/devices/{id}/status          — activate / deactivate
    DELETE /api/v1/devices/{id}                 — deactivate, or remove
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.app.alerts.models import Device, Preferences, _now
from backend.app.alerts.store.base import AlertStore
from backend.app.api.deps import get_app_settings, get_store
from backend.app.core.config import Settings
from backend.app.core.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/api/v1/devices", tags=["devices"])

_DEVICE_TYPES = ("android", "ios", "web")
_NETWORK_STATUSES = ("online", "offline", "low-signal")


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class PushSubscription(BaseModel):
    endpoint: str = Field(..., min_length=1)
    keys: Dict[str, str] = Field(
        ..., examples=[{"p256dh": "BNc...", "auth": "tBH..."}],
    )


class DeviceRegistration(BaseModel):
    id: Optional[str] = Field(None, description="Omitted → generated")
    owner_name: str = Field(..., min_length=1, examples=["R. Kumar"])
    device_type: str = Field("android", examples=["android"])
    phone_number: Optional[str] = Field(None, examples=["+919876543210"])
    email: Optional[str] = Field(None, examples=["r.kumar@mine.example"])
    push_token: Optional[str] = None
    push_subscription: Optional[PushSubscription] = None
    zone_assignment: Optional[str] = Field(None, examples=["zone-2"])
    preferences: Dict[str, Any] = Field(
        default_factory=dict,
        examples=[{
            "enablePushNotifications": True,
            "enableSMS": True,
            "quietHours": {"enabled": True, "start": "22:00", "end": "06:00"},
            "minimumSeverity": "medium",
        }],
    )


class HeartbeatRequest(BaseModel):
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    network_status: Optional[str] = Field(None, examples=["online"])
    location: Optional[Dict[str, float]] = Field(
        None, examples=[{"lat": 23.79, "lon": 86.43}],
    )


class StatusRequest(BaseModel):
    is_active: bool


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

async def _require_device(store: AlertStore, device_id: str) -> Device:
    device = await store.get_device(device_id)
    if device is None:
        raise NotFoundError("Device", device_id=device_id)
    return device


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", summary="List registered devices")
async def list_devices(
    zone_id: Optional[str] = Query(None, description="Only devices assigned to this zone"),
    active_only: bool = Query(False),
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    devices = await store.get_devices()
    if zone_id is not None:
        devices = [d for d in devices if d.zone_assignment == zone_id]
    if active_only:
        devices = [d for d in devices if d.is_active]
    return {"total": len(devices), "devices": [d.to_dict() for d in devices]}


@router.post("", status_code=201, summary="Register a device")
async def register_device(
    request: DeviceRegistration,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    device_type = request.device_type.lower()
    if device_type not in _DEVICE_TYPES:
        raise ValidationError(
            f"device_type must be one of {list(_DEVICE_TYPES)}", field="device_type",
        )
    try:
        preferences = Preferences.from_mapping(request.preferences)
    except ValueError as e:
        raise ValidationError(str(e), field="preferences") from e

    device = Device(
        id=request.id or f"DEV-{uuid.uuid4().hex[:10].upper()}",
        owner_name=request.owner_name,
        device_type=device_type,
        phone_number=request.phone_number,
        email=request.email,
        push_token=request.push_token,
        push_subscription=(
            request.push_subscription.model_dump() if request.push_subscription else None
        ),
        zone_assignment=request.zone_assignment,
        preferences=preferences,
        last_seen=_now(),
    )
    saved = await store.save_device(device)
    await store.log("info", "device", "Device registered", {
        "device_id": saved.id, "zone": saved.zone_assignment,
    })
    return saved.to_dict()


@router.get("/push-public-key", summary="VAPID public key for Web Push")
async def push_public_key(
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    return {
        "public_key": settings.VAPID_PUBLIC_KEY,
        "enabled": bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY),
    }


@router.get("/{device_id}", summary="Get one device")
async def get_device(
    device_id: str,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    return (await _require_device(store, device_id)).to_dict()


@router.patch("/{device_id}/preferences", summary="Update notification preferences")
async def update_preferences(
    device_id: str,
    changes: Dict[str, Any],
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    device = await _require_device(store, device_id)
    try:
        device.preferences = device.preferences.merged(changes)
    except ValueError as e:
        raise ValidationError(str(e), field="preferences") from e
    saved = await store.save_device(device)
    return saved.to_dict()


@router.post("/{device_id}/subscribe", summary="Attach a Web Push subscription")
async def subscribe(
    device_id: str,
    subscription: PushSubscription,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    device = await _require_device(store, device_id)
    device.push_subscription = subscription.model_dump()
    saved = await store.save_device(device)
    await store.log("info", "device", "Push subscription stored", {"device_id": device_id})
    return saved.to_dict()


@router.post("/{device_id}/heartbeat", summary="Report device liveness")
async def heartbeat(
    device_id: str,
    request: HeartbeatRequest,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    device = await _require_device(store, device_id)
    if request.network_status is not None:
        if request.network_status not in _NETWORK_STATUSES:
            raise ValidationError(
                f"network_status must be one of {list(_NETWORK_STATUSES)}",
                field="network_status",
            )
        device.network_status = request.network_status
    if request.battery_level is not None:
        device.battery_level = request.battery_level
    if request.location is not None:
        device.location = request.location
    device.last_seen = _now()
    saved = await store.save_device(device)
    return saved.to_dict()


@router.put("/{device_id}/status", summary="Activate or deactivate a device")
async def set_status(
    device_id: str,
    request: StatusRequest,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    device = await _require_device(store, device_id)
    device.is_active = request.is_active
    saved = await store.save_device(device)
    return saved.to_dict()


@router.delete("/{device_id}", summary="Deactivate or remove a device")
async def delete_device(
    device_id: str,
    permanent: bool = Query(False, description="Remove instead of deactivating"),
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    device = await _require_device(store, device_id)
    if permanent:
        await store.delete_device(device_id)
        return {"device_id": device_id, "deleted": True}
    device.is_active = False
    await store.save_device(device)
    return {"device_id": device_id, "deleted": False, "is_active": False}
