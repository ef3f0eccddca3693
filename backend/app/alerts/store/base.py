"""
base.py — The data-access contract consumed by the dispatch engine.

Every backend must raise ``DataAccessError`` when it cannot reach its
storage; the orchestrator treats that as fatal to the whole pass.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from backend.app.alerts.models import (
    Alert,
    DeliveryRecord,
    DeliveryStatus,
    Device,
    RiskAssessmentSnapshot,
)


@runtime_checkable
class AlertStore(Protocol):
    """Async persistence for devices, alerts, deliveries and system logs."""

    # ── Devices ──
    async def get_devices(self) -> List[Device]: ...

    async def get_devices_by_zone(self, zone_id: str) -> List[Device]: ...

    async def get_device(self, device_id: str) -> Optional[Device]: ...

    async def save_device(self, device: Device) -> Device: ...

    async def delete_device(self, device_id: str) -> bool: ...

    # ── Alerts ──
    async def create_alert(self, alert: Alert) -> Alert: ...

    async def get_alert(self, alert_id: str) -> Optional[Alert]: ...

    # ── Deliveries ──
    async def create_alert_delivery(self, record: DeliveryRecord) -> DeliveryRecord: ...

    async def update_delivery_status(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        error: Optional[str] = None,
        *,
        provider_ref: Optional[str] = None,
    ) -> Optional[DeliveryRecord]: ...

    async def get_deliveries(self, alert_id: str) -> List[DeliveryRecord]: ...

    # ── Assessments & logs ──
    async def create_risk_assessment(
        self, snapshot: RiskAssessmentSnapshot
    ) -> RiskAssessmentSnapshot: ...

    async def log(
        self,
        level: str,
        category: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    # ── Health ──
    async def ping(self) -> bool: ...
