"""
memory.py — Process-local store (default backend, tests, local dev).

Records are copied on the way in and out so callers never share
mutable state with the store.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from backend.app.alerts.models import (
    Alert,
    DeliveryRecord,
    DeliveryStatus,
    Device,
    RiskAssessmentSnapshot,
    _now,
)

logger = logging.getLogger(__name__)

# Cap on retained system log entries
MAX_LOG_ENTRIES = 5000


class InMemoryAlertStore:
    """Dict-backed implementation of the AlertStore contract."""

    def __init__(self) -> None:
        self._devices: Dict[str, Device] = {}
        self._alerts: Dict[str, Alert] = {}
        self._deliveries: Dict[str, DeliveryRecord] = {}
        self._assessments: List[RiskAssessmentSnapshot] = []
        self.system_logs: List[Dict[str, Any]] = []

    # ── Devices ──

    async def get_devices(self) -> List[Device]:
        return [copy.copy(d) for d in self._devices.values()]

    async def get_devices_by_zone(self, zone_id: str) -> List[Device]:
        return [
            copy.copy(d) for d in self._devices.values()
            if d.zone_assignment == zone_id
        ]

    async def get_device(self, device_id: str) -> Optional[Device]:
        device = self._devices.get(device_id)
        return copy.copy(device) if device else None

    async def save_device(self, device: Device) -> Device:
        self._devices[device.id] = copy.copy(device)
        return device

    async def delete_device(self, device_id: str) -> bool:
        return self._devices.pop(device_id, None) is not None

    # ── Alerts ──

    async def create_alert(self, alert: Alert) -> Alert:
        self._alerts[alert.id] = alert
        return alert

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    # ── Deliveries ──

    async def create_alert_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        self._deliveries[record.id] = copy.copy(record)
        return record

    async def update_delivery_status(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        error: Optional[str] = None,
        *,
        provider_ref: Optional[str] = None,
    ) -> Optional[DeliveryRecord]:
        stored = self._deliveries.get(delivery_id)
        if stored is None:
            return None
        stored.status = status
        stored.error_message = error
        if provider_ref:
            stored.provider_ref = provider_ref
        now = _now()
        if status == DeliveryStatus.SENT:
            stored.sent_at = now
        elif status == DeliveryStatus.DELIVERED:
            stored.delivered_at = now
        elif status == DeliveryStatus.READ:
            stored.read_at = now
        return copy.copy(stored)

    async def get_deliveries(self, alert_id: str) -> List[DeliveryRecord]:
        records = [
            copy.copy(r) for r in self._deliveries.values()
            if r.alert_id == alert_id
        ]
        records.sort(key=lambda r: r.created_at)
        return records

    # ── Assessments & logs ──

    async def create_risk_assessment(
        self, snapshot: RiskAssessmentSnapshot
    ) -> RiskAssessmentSnapshot:
        self._assessments.append(snapshot)
        return snapshot

    async def log(
        self,
        level: str,
        category: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.system_logs.append({
            "level": level,
            "category": category,
            "message": message,
            "context": context or {},
            "created_at": _now().isoformat(),
        })
        if len(self.system_logs) > MAX_LOG_ENTRIES:
            del self.system_logs[: len(self.system_logs) - MAX_LOG_ENTRIES]

    @property
    def assessments(self) -> List[RiskAssessmentSnapshot]:
        return list(self._assessments)

    async def ping(self) -> bool:
        return True
