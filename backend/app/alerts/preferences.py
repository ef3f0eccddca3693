"""
preferences.py — Per-device admission gate.

A device is admitted for an alert unless:

    1. it is deactivated                          (applies to every severity)
    2. alert rank < device.minimum_severity rank  (non-critical only)
    3. the site-local time is inside quiet hours  (non-critical only)

Quiet hours are compared at minute granularity with both ends inclusive.
A window whose start is after its end wraps midnight:

    22:00 → 06:00   inside = [22:00, 24:00) ∪ [00:00, 06:00]

Channel toggles (push / SMS / email) are not part of admission; they only
decide which channels the orchestrator attempts for an admitted device.
"""

from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from backend.app.alerts.models import (
    Alert,
    Channel,
    Device,
    QuietHours,
    Severity,
    _now,
)

logger = logging.getLogger(__name__)


def is_within_quiet_hours(quiet_hours: Optional[QuietHours], at: time) -> bool:
    """True when ``at`` falls inside the window (minute granularity)."""
    if quiet_hours is None:
        return False
    minute = at.hour * 60 + at.minute
    start, end = quiet_hours.start_minute, quiet_hours.end_minute
    if quiet_hours.wraps_midnight:
        return minute >= start or minute <= end
    return start <= minute <= end


def channel_enabled(device: Device, channel: Channel, alert: Alert) -> bool:
    """
    Whether ``channel`` is attempted for an admitted device.

    Critical alerts force push and SMS on. Email stays opt-in even then:
    it goes out only with ``enable_email`` or an address on file.
    """
    prefs = device.preferences
    if alert.severity == Severity.CRITICAL:
        if channel in (Channel.PUSH, Channel.SMS):
            return True
        return prefs.enable_email or bool(device.email)

    if channel == Channel.PUSH:
        return prefs.enable_push
    if channel == Channel.SMS:
        return prefs.enable_sms
    return prefs.enable_email


class PreferenceFilter:
    """Admission gate with an injectable clock and site time zone."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _now,
        timezone_name: str = "UTC",
    ):
        self._clock = clock
        self._tz = ZoneInfo(timezone_name)

    def local_time(self) -> time:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(self._tz)
        return now.time()

    def admits(self, device: Device, alert: Alert) -> bool:
        if not device.is_active:
            logger.debug("[FILTER] %s rejected: inactive", device.id)
            return False

        if alert.severity == Severity.CRITICAL:
            return True

        prefs = device.preferences
        if alert.severity.rank < prefs.minimum_severity.rank:
            logger.debug(
                "[FILTER] %s rejected: %s below minimum %s",
                device.id, alert.severity.value, prefs.minimum_severity.value,
            )
            return False

        if is_within_quiet_hours(prefs.quiet_hours, self.local_time()):
            logger.debug("[FILTER] %s rejected: quiet hours", device.id)
            return False

        return True
