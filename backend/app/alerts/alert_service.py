"""
alert_service.py — Core alert dispatch orchestration engine.

This is the central coordinator that:
    1. Receives an Alert (risk monitor, operator, test / drill trigger)
    2. Resolves the target devices (explicit ids, zone, adjacency, site)
    3. Applies each device's preference gate
    4. Picks the channels per device (toggles, critical overrides)
    5. Renders, sends and records every (device, channel) job concurrently
    6. Produces a delivery summary for the caller

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Alert              │  from evaluate_risk / manual / test / drill
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Target          │  DeviceTargetResolver.resolve()
    │     Resolution      │  store failure → DataAccessError, pass aborted
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Preference      │  PreferenceFilter.admits()
    │     Filter          │  inactive / minimum severity / quiet hours
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Channel         │  push → sms → email per device
    │     Selection       │  channel_enabled(): toggles, critical overrides
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Fan-out         │  one job per (device, channel), at most
    │     (bounded)       │  DISPATCH_MAX_CONCURRENCY in flight:
    │                     │    pending record → render → send → sent/failed
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  5. Summary         │  targeted / admitted / per-channel counts
    │                     │  written to the store's system log
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE ISOLATION
═══════════════════════════════════════════════════════════════════════════

    Failure                          Effect
    ──────────────────────────────   ─────────────────────────────────────
    provider rejects / raises        that record → failed, siblings go on
    device lacks the endpoint        record → failed before any provider
    (no phone, email, push target)   call, with a descriptive error
    malformed alert                  every record → failed, no provider call
    store unreachable                DataAccessError, whole pass aborted

There is no retry inside a pass. A caller-driven redispatch of the same
alert id writes new records with an incremented ``delivery_attempts``.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Dict, List, Optional, Sequence, Tuple

from backend.app.alerts.channels.base import ChannelProviders
from backend.app.alerts.models import (
    CHANNEL_ORDER,
    Alert,
    Channel,
    DeliveryRecord,
    DeliveryStatus,
    Device,
    DispatchResult,
    DispatchSummary,
    SendOutcome,
    Severity,
    _now,
)
from backend.app.alerts.preferences import PreferenceFilter, channel_enabled
from backend.app.alerts.risk_evaluator import ALERT_TITLES, recommended_actions
from backend.app.alerts.store.base import AlertStore
from backend.app.alerts.targeting import DeviceTargetResolver, ZoneAdjacency
from backend.app.alerts.templates import TemplateEngine
from backend.app.alerts.tracker import AttemptKey, DeliveryTracker
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import NotFoundError, data_access
from backend.app.core.logging_config import log_context

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\+?[1-9]\d{6,14}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Nominal scores for operator-issued alerts that carry no sensor score
_NOMINAL_SCORES: Dict[Severity, float] = {
    Severity.CRITICAL: 9.5,
    Severity.HIGH: 8.0,
    Severity.MEDIUM: 6.0,
    Severity.LOW: 3.0,
}

EMERGENCY_DRILL_ACTIONS: Tuple[str, ...] = (
    "IMMEDIATE EVACUATION of all personnel",
    "Establish safety perimeter",
    "Contact emergency services",
    "Deploy emergency response team",
)


# ═══════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════

def validate_alert(alert: Alert) -> Optional[str]:
    """Descriptive error for a malformed alert, or None."""
    if not alert.id:
        return "Alert has no id"
    if not alert.zone_id:
        return "Alert has no zone_id"
    if not 0.0 <= alert.risk_score <= 10.0:
        return f"Alert risk_score {alert.risk_score} outside 0–10"
    if alert.risk_probability is not None and not 0.0 <= alert.risk_probability <= 1.0:
        return f"Alert risk_probability {alert.risk_probability} outside 0–1"
    return None


def validate_endpoint(device: Device, channel: Channel) -> Optional[str]:
    """Descriptive error when ``device`` cannot be reached on ``channel``."""
    if channel == Channel.PUSH:
        if not device.has_push_endpoint:
            return "Device has no push token or subscription"
        if device.push_subscription and not device.push_subscription.get("endpoint"):
            return "Push subscription has no endpoint"
    elif channel == Channel.SMS:
        if not device.phone_number:
            return "No phone number on file"
        if not _PHONE_RE.match(device.phone_number.replace(" ", "").replace("-", "")):
            return f"Malformed phone number {device.phone_number!r}"
    elif channel == Channel.EMAIL:
        if not device.email:
            return "No email address on file"
        if not _EMAIL_RE.match(device.email):
            return f"Malformed email address {device.email!r}"
    return None


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch Service
# ═══════════════════════════════════════════════════════════════════════════

class AlertDispatchService:
    """
    Dispatch orchestrator.

    All collaborators are injected; ``from_settings`` wires the defaults
    (adjacency, site time zone, emergency contact, concurrency) from
    configuration.
    """

    def __init__(
        self,
        store: AlertStore,
        providers: ChannelProviders,
        *,
        resolver: Optional[DeviceTargetResolver] = None,
        preference_filter: Optional[PreferenceFilter] = None,
        templates: Optional[TemplateEngine] = None,
        tracker: Optional[DeliveryTracker] = None,
        max_concurrency: int = 10,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.providers = providers
        self.resolver = resolver or DeviceTargetResolver(store)
        self.preference_filter = preference_filter or PreferenceFilter()
        self.templates = templates or TemplateEngine()
        self.tracker = tracker or DeliveryTracker(store)
        self.max_concurrency = max_concurrency

    @classmethod
    def from_settings(
        cls,
        store: AlertStore,
        providers: ChannelProviders,
        settings: Optional[Settings] = None,
    ) -> "AlertDispatchService":
        settings = settings or get_settings()
        return cls(
            store,
            providers,
            resolver=DeviceTargetResolver(store, ZoneAdjacency.from_settings(settings)),
            preference_filter=PreferenceFilter(timezone_name=settings.SITE_TIMEZONE),
            templates=TemplateEngine(
                timezone_name=settings.SITE_TIMEZONE,
                emergency_contact=settings.EMERGENCY_CONTACT,
            ),
            max_concurrency=settings.DISPATCH_MAX_CONCURRENCY,
        )

    # ── Single job ──

    async def _deliver(
        self,
        semaphore: asyncio.Semaphore,
        alert: Alert,
        device: Device,
        channel: Channel,
        attempt: int,
        rejection: Optional[str],
    ) -> DeliveryRecord:
        async with semaphore:
            record = await self.tracker.create_pending(
                alert.id, device.id, channel, attempt=attempt,
            )

            if rejection:
                logger.warning(
                    "[%s] Alert %s → %s rejected before send: %s",
                    channel.value.upper(), alert.id, device.id, rejection,
                )
                return await self.tracker.update(record, DeliveryStatus.FAILED, rejection)

            provider = self.providers.for_channel(channel)
            start = time.monotonic()
            try:
                message = self.templates.render(alert.severity, channel, alert)
                outcome = await provider.send(device, message)
            except Exception as exc:
                logger.error(
                    "[%s] Provider %s raised for %s: %s",
                    channel.value.upper(), provider.name, device.id, exc,
                )
                outcome = SendOutcome.failed(f"{type(exc).__name__}: {exc}")

            logger.debug(
                "[%s] Alert %s → %s: %s",
                channel.value.upper(), alert.id, device.id,
                "sent" if outcome.success else outcome.error,
                extra={
                    "device_id": device.id,
                    "channel": channel.value,
                    "provider_mode": provider.mode,
                    "duration_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )
            return await self.tracker.complete(record, outcome)

    # ── Main dispatch ──

    async def dispatch(
        self,
        alert: Alert,
        device_ids: Sequence[str] = (),
    ) -> DispatchResult:
        """
        Deliver ``alert`` to every admitted device on every enabled channel.

        Parameters
        ----------
        alert : Alert
            The alert; persisted first if the store does not know it yet.
        device_ids : sequence of str
            Explicit targets. Empty → zone / adjacency / site-wide rules.

        Returns
        -------
        DispatchResult
            Records of this pass plus the aggregate summary.

        Raises
        ------
        DataAccessError
            The store failed at any point; no partial result is returned.
        """
        started = _now()
        with log_context(alert_id=alert.id, severity=alert.severity.value):
            logger.info(
                "Dispatching alert %s [%s] zone=%s explicit=%d",
                alert.id, alert.severity.value, alert.zone_id, len(device_ids),
            )

            with data_access("create_alert", alert_id=alert.id):
                if await self.store.get_alert(alert.id) is None:
                    await self.store.create_alert(alert)

            targets = await self.resolver.resolve(alert, device_ids)
            admitted = [d for d in targets if self.preference_filter.admits(d, alert)]
            previous = await self.tracker.prior_attempts(alert.id)
            alert_error = validate_alert(alert)

            semaphore = asyncio.Semaphore(self.max_concurrency)
            jobs = []
            for device in admitted:
                for channel in CHANNEL_ORDER:
                    if not channel_enabled(device, channel, alert):
                        continue
                    key: AttemptKey = (device.id, channel)
                    rejection = alert_error or validate_endpoint(device, channel)
                    jobs.append(self._deliver(
                        semaphore, alert, device, channel,
                        previous.get(key, 0) + 1, rejection,
                    ))

            results = await asyncio.gather(*jobs, return_exceptions=True)

            records: List[DeliveryRecord] = []
            errors: List[BaseException] = []
            for result in results:
                if isinstance(result, BaseException):
                    errors.append(result)
                else:
                    records.append(result)

            if errors:
                first = errors[0]
                logger.error(
                    "Dispatch of %s aborted: %d job(s) raised, first: %s",
                    alert.id, len(errors), first,
                )
                raise first

            summary = DispatchSummary.from_records(
                records, total_targeted=len(targets), admitted=len(admitted),
            )
            completed = _now()

            logger.info(
                "Alert %s dispatch complete: targeted=%d admitted=%d sent=%d failed=%d (%.2fs)",
                alert.id, summary.total_targeted, summary.admitted,
                summary.total_sent, summary.total_failed,
                (completed - started).total_seconds(),
            )
            with data_access("log", alert_id=alert.id):
                await self.store.log("info", "alert", "Alert dispatched", {
                    "alert_id": alert.id,
                    "severity": alert.severity.value,
                    "zone_id": alert.zone_id,
                    **summary.to_dict(),
                })

        return DispatchResult(
            alert=alert,
            records=records,
            summary=summary,
            started_at=started,
            completed_at=completed,
        )

    # ── Caller-initiated variants ──

    async def redispatch(
        self,
        alert_id: str,
        device_ids: Sequence[str] = (),
    ) -> DispatchResult:
        """Run a new pass for a stored alert; attempt counters increment."""
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        logger.info("Re-dispatching alert %s", alert_id)
        return await self.dispatch(alert, device_ids)

    async def dispatch_manual(
        self,
        *,
        zone_id: str,
        severity: Severity,
        message: str,
        zone_name: Optional[str] = None,
        title: Optional[str] = None,
        risk_score: Optional[float] = None,
        risk_probability: Optional[float] = None,
        actions: Optional[Sequence[str]] = None,
        device_ids: Sequence[str] = (),
        alert_type: str = "manual",
    ) -> DispatchResult:
        """Operator-issued alert; always dispatched."""
        severity = Severity.parse(severity)
        alert = Alert(
            severity=severity,
            zone_id=zone_id,
            zone_name=zone_name or f"Zone {zone_id}",
            title=title or ALERT_TITLES.get(severity, "Rockfall Advisory"),
            message=message,
            risk_score=_NOMINAL_SCORES[severity] if risk_score is None else risk_score,
            risk_probability=risk_probability,
            recommended_actions=tuple(actions) if actions else recommended_actions(severity),
            alert_type=alert_type,
        )
        return await self.dispatch(alert, device_ids)

    async def send_test_alert(
        self,
        device_ids: Sequence[str] = (),
        *,
        severity: Severity = Severity.MEDIUM,
        zone_id: str = "test-zone",
        zone_name: str = "Test Zone",
        message: str = "This is a test alert from the system",
    ) -> DispatchResult:
        """Drill message through the normal path, tagged ``test``."""
        return await self.dispatch_manual(
            zone_id=zone_id,
            zone_name=zone_name,
            severity=severity,
            message=message,
            title=f"TEST: {ALERT_TITLES.get(Severity.parse(severity), 'Rockfall Advisory')}",
            device_ids=device_ids,
            alert_type="test",
        )

    async def simulate_emergency(
        self,
        *,
        zone_id: str = "simulation-zone",
        zone_name: str = "Simulation Zone",
        scenario: str = "rockfall",
    ) -> DispatchResult:
        """Site-wide critical drill."""
        return await self.dispatch_manual(
            zone_id=zone_id,
            zone_name=zone_name,
            severity=Severity.CRITICAL,
            message=(
                f"EMERGENCY SIMULATION: {scenario} detected in {zone_name}. "
                "This is a drill - follow emergency procedures."
            ),
            risk_score=9.8,
            actions=EMERGENCY_DRILL_ACTIONS,
            alert_type="emergency",
        )
