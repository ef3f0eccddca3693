"""
tracker.py — Lifecycle of DeliveryRecords during a dispatch pass.

Each (device, channel) job owns exactly one record:

    create_pending()  → row written as ``pending`` before the provider call
    complete()        → ``sent`` or ``failed`` once the provider answered

Re-dispatching an alert never touches old rows. New rows carry
``delivery_attempts`` = highest earlier attempt for the same
(alert, device, channel) + 1.

Store exceptions surface as ``DataAccessError``; nothing else is wrapped.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from backend.app.alerts.models import (
    Channel,
    DeliveryRecord,
    DeliveryStatus,
    SendOutcome,
    _now,
)
from backend.app.alerts.store.base import AlertStore
from backend.app.core.errors import data_access

logger = logging.getLogger(__name__)

AttemptKey = Tuple[str, Channel]


class DeliveryTracker:
    """Writes delivery records through the store."""

    def __init__(self, store: AlertStore):
        self._store = store

    async def prior_attempts(self, alert_id: str) -> Dict[AttemptKey, int]:
        """Highest attempt number per (device_id, channel) for ``alert_id``."""
        attempts: Dict[AttemptKey, int] = {}
        with data_access("get_deliveries", alert_id=alert_id):
            records = await self._store.get_deliveries(alert_id)
        for record in records:
            key = (record.device_id, record.channel)
            attempts[key] = max(attempts.get(key, 0), record.delivery_attempts)
        return attempts

    async def create_pending(
        self,
        alert_id: str,
        device_id: str,
        channel: Channel,
        *,
        attempt: Optional[int] = None,
    ) -> DeliveryRecord:
        if attempt is None:
            previous = await self.prior_attempts(alert_id)
            attempt = previous.get((device_id, channel), 0) + 1
        record = DeliveryRecord(
            alert_id=alert_id,
            device_id=device_id,
            channel=channel,
            delivery_attempts=attempt,
        )
        with data_access("create_alert_delivery", alert_id=alert_id):
            await self._store.create_alert_delivery(record)
        return record

    async def update(
        self,
        record: DeliveryRecord,
        status: DeliveryStatus,
        error: Optional[str] = None,
        *,
        provider_ref: Optional[str] = None,
    ) -> DeliveryRecord:
        with data_access("update_delivery_status", delivery_id=record.id):
            await self._store.update_delivery_status(
                record.id, status, error, provider_ref=provider_ref,
            )
        record.status = status
        record.error_message = error
        if provider_ref:
            record.provider_ref = provider_ref
        if status == DeliveryStatus.SENT:
            record.sent_at = _now()
        return record

    async def complete(self, record: DeliveryRecord, outcome: SendOutcome) -> DeliveryRecord:
        """Move a pending record to ``sent`` / ``failed`` from a provider outcome."""
        if outcome.success:
            return await self.update(
                record, DeliveryStatus.SENT, provider_ref=outcome.provider_ref,
            )
        return await self.update(
            record, DeliveryStatus.FAILED, outcome.error or "Unknown provider failure",
        )
