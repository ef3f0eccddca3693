"""
targeting.py — Resolve which devices an alert must reach.

═══════════════════════════════════════════════════════════════════════════
TARGETING RULES
═══════════════════════════════════════════════════════════════════════════

    explicit device ids given   →  exactly those devices (tests, drills)
    severity low / medium       →  devices assigned to alert.zone_id
    severity high               →  zone + every adjacent zone
    severity critical           →  every registered device, site-wide

Widening by severity mirrors how an evacuation spreads past the failing
bench: neighbours share haul roads and escape routes.

Zone adjacency is data, injected through ``ZoneAdjacency`` (default map
from the ZONE_ADJACENCY setting), never a table inside the resolver.

Result order is first-seen order with duplicates removed by device id.
If the store cannot be read the whole dispatch fails; there is no
cached or partial fallback.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from backend.app.alerts.models import Alert, Device, Severity
from backend.app.alerts.store.base import AlertStore
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import DataAccessError

logger = logging.getLogger(__name__)


class ZoneAdjacency:
    """Lookup zone id → neighbouring zone ids."""

    def __init__(self, mapping: Optional[Mapping[str, Iterable[str]]] = None):
        self._neighbors: Dict[str, List[str]] = {
            zone: [n for n in neighbors if n != zone]
            for zone, neighbors in (mapping or {}).items()
        }

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ZoneAdjacency":
        settings = settings or get_settings()
        return cls(settings.ZONE_ADJACENCY)

    def neighbors(self, zone_id: str) -> List[str]:
        return list(self._neighbors.get(zone_id, ()))

    def to_dict(self) -> Dict[str, List[str]]:
        return {zone: list(n) for zone, n in self._neighbors.items()}


def _dedupe(devices: Iterable[Device]) -> List[Device]:
    seen = set()
    unique: List[Device] = []
    for device in devices:
        if device.id in seen:
            continue
        seen.add(device.id)
        unique.append(device)
    return unique


class DeviceTargetResolver:
    """Computes the device set for one alert."""

    def __init__(self, store: AlertStore, adjacency: Optional[ZoneAdjacency] = None):
        self._store = store
        self._adjacency = adjacency or ZoneAdjacency()

    @property
    def adjacency(self) -> ZoneAdjacency:
        return self._adjacency

    async def resolve(
        self,
        alert: Alert,
        explicit_device_ids: Sequence[str] = (),
    ) -> List[Device]:
        """
        Devices that should receive ``alert``.

        Raises
        ------
        DataAccessError
            The device store could not be read.
        """
        try:
            if explicit_device_ids:
                return await self._resolve_explicit(explicit_device_ids)

            if alert.severity == Severity.CRITICAL:
                devices = await self._store.get_devices()
                logger.info(
                    "[TARGET] Alert %s is critical → site-wide broadcast to %d devices",
                    alert.id, len(devices),
                )
                return _dedupe(devices)

            zones = [alert.zone_id]
            if alert.severity == Severity.HIGH:
                zones.extend(self._adjacency.neighbors(alert.zone_id))

            devices: List[Device] = []
            for zone_id in zones:
                devices.extend(await self._store.get_devices_by_zone(zone_id))
        except DataAccessError:
            raise
        except Exception as e:
            raise DataAccessError("resolve_targets", str(e), alert_id=alert.id) from e

        targets = _dedupe(devices)
        logger.info(
            "[TARGET] Alert %s (%s) zones=%s → %d devices",
            alert.id, alert.severity.value, zones, len(targets),
        )
        return targets

    async def _resolve_explicit(self, device_ids: Sequence[str]) -> List[Device]:
        by_id = {d.id: d for d in await self._store.get_devices()}
        targets: List[Device] = []
        for device_id in device_ids:
            device = by_id.get(device_id)
            if device is None:
                logger.warning("[TARGET] Unknown device id %s ignored", device_id)
                continue
            targets.append(device)
        return _dedupe(targets)
