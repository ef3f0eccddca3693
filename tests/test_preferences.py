"""
test_preferences.py — Preference normalization and admission gate.

Covers:
    • Preferences.from_mapping (aliases, JSON strings, quiet hours forms)
    • Partial updates via Preferences.merged
    • Quiet hours (inclusive ends, midnight wrap)
    • Admission (inactive, minimum severity, quiet hours, critical bypass)
    • Channel toggles and the critical email rule

Run with:
    pytest tests/test_preferences.py -v
"""

from __future__ import annotations

from datetime import datetime, time, timezone

import pytest

from backend.app.alerts.models import (
    Alert,
    Channel,
    Device,
    Preferences,
    QuietHours,
    Severity,
)
from backend.app.alerts.preferences import (
    PreferenceFilter,
    channel_enabled,
    is_within_quiet_hours,
)


def _make_alert(severity: Severity = Severity.MEDIUM) -> Alert:
    return Alert(
        severity=severity,
        zone_id="zone-1",
        zone_name="North Bench",
        message="test",
        risk_score=7.0,
    )


def _make_device(prefs: Preferences = Preferences(), **overrides) -> Device:
    fields = dict(
        id="D1",
        owner_name="Miner",
        phone_number="+15551230001",
        push_token="fcm-token",
        preferences=prefs,
    )
    fields.update(overrides)
    return Device(**fields)


def _clock(hour: int, minute: int = 0):
    return lambda: datetime(2026, 3, 14, hour, minute, tzinfo=timezone.utc)


NIGHT_SHIFT_OFF = Preferences(quiet_hours=QuietHours("22:00", "06:00"))


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Normalization
# ═══════════════════════════════════════════════════════════════════════════

class TestPreferencesFromMapping:

    def test_none_gives_defaults(self):
        prefs = Preferences.from_mapping(None)
        assert prefs == Preferences()
        assert prefs.enable_push and prefs.enable_sms and not prefs.enable_email
        assert prefs.minimum_severity == Severity.MEDIUM

    def test_camel_case_aliases(self):
        prefs = Preferences.from_mapping({
            "enablePushNotifications": False,
            "enableSMS": False,
            "enableEmail": True,
            "enableVibration": False,
            "minimumSeverity": "high",
        })
        assert not prefs.enable_push
        assert not prefs.enable_sms
        assert prefs.enable_email
        assert not prefs.enable_vibration
        assert prefs.minimum_severity == Severity.HIGH

    def test_json_string(self):
        prefs = Preferences.from_mapping('{"smsNotifications": false, "min_severity": "low"}')
        assert not prefs.enable_sms
        assert prefs.minimum_severity == Severity.LOW

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            Preferences.from_mapping("{not json")

    def test_quiet_hours_enabled(self):
        prefs = Preferences.from_mapping(
            {"quietHours": {"enabled": True, "start": "22:00", "end": "06:00"}}
        )
        assert prefs.quiet_hours == QuietHours("22:00", "06:00")

    def test_quiet_hours_disabled_means_no_window(self):
        prefs = Preferences.from_mapping(
            {"quietHours": {"enabled": False, "start": "22:00", "end": "06:00"}}
        )
        assert prefs.quiet_hours is None

    def test_quiet_hours_half_filled_means_no_window(self):
        prefs = Preferences.from_mapping({"quietHours": {"start": "22:00"}})
        assert prefs.quiet_hours is None

    def test_malformed_quiet_hours_raise(self):
        with pytest.raises(ValueError):
            Preferences.from_mapping({"quietHours": {"start": "25:00", "end": "06:00"}})

    def test_unknown_severity_raises(self):
        with pytest.raises(ValueError):
            Preferences.from_mapping({"minimumSeverity": "apocalyptic"})

    def test_contact_field_names_are_not_toggles(self):
        prefs = Preferences.from_mapping({"email": "a@b.c", "sms": False, "push": False})
        assert prefs == Preferences()


class TestPreferencesMerged:

    def test_only_given_keys_change(self):
        base = Preferences(enable_sms=False, quiet_hours=QuietHours("22:00", "06:00"))
        updated = base.merged({"enableEmail": True})
        assert updated.enable_email
        assert not updated.enable_sms
        assert updated.quiet_hours == QuietHours("22:00", "06:00")

    def test_null_quiet_hours_clears_window(self):
        base = Preferences(quiet_hours=QuietHours("22:00", "06:00"))
        assert base.merged({"quietHours": None}).quiet_hours is None

    def test_email_address_does_not_switch_email_off(self):
        base = Preferences(enable_email=True)
        assert base.merged({"email": "a@b.c"}).enable_email


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Quiet hours
# ═══════════════════════════════════════════════════════════════════════════

class TestQuietHours:

    def test_no_window(self):
        assert not is_within_quiet_hours(None, time(3, 0))

    def test_same_day_window_inclusive(self):
        window = QuietHours("12:00", "13:00")
        assert is_within_quiet_hours(window, time(12, 0))
        assert is_within_quiet_hours(window, time(13, 0))
        assert not is_within_quiet_hours(window, time(13, 1))
        assert not is_within_quiet_hours(window, time(11, 59))

    def test_wrapping_window(self):
        window = QuietHours("22:00", "06:00")
        assert window.wraps_midnight
        assert is_within_quiet_hours(window, time(23, 30))
        assert is_within_quiet_hours(window, time(0, 0))
        assert is_within_quiet_hours(window, time(6, 0))
        assert not is_within_quiet_hours(window, time(6, 1))
        assert not is_within_quiet_hours(window, time(21, 59))

    def test_seconds_ignored(self):
        window = QuietHours("12:00", "13:00")
        assert is_within_quiet_hours(window, time(13, 0, 59))


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Admission
# ═══════════════════════════════════════════════════════════════════════════

class TestPreferenceFilter:

    def test_inactive_always_rejected(self):
        f = PreferenceFilter(clock=_clock(12))
        device = _make_device(is_active=False)
        assert not f.admits(device, _make_alert(Severity.CRITICAL))

    def test_below_minimum_severity_rejected(self):
        f = PreferenceFilter(clock=_clock(12))
        device = _make_device(Preferences(minimum_severity=Severity.HIGH))
        assert not f.admits(device, _make_alert(Severity.MEDIUM))
        assert f.admits(device, _make_alert(Severity.HIGH))

    def test_low_rejected_by_default_minimum(self):
        f = PreferenceFilter(clock=_clock(12))
        assert not f.admits(_make_device(), _make_alert(Severity.LOW))

    def test_quiet_hours_reject_non_critical(self):
        f = PreferenceFilter(clock=_clock(23))
        device = _make_device(NIGHT_SHIFT_OFF)
        assert not f.admits(device, _make_alert(Severity.HIGH))

    def test_quiet_hours_bypassed_by_critical(self):
        f = PreferenceFilter(clock=_clock(23))
        device = _make_device(
            Preferences(quiet_hours=QuietHours("22:00", "06:00"), minimum_severity=Severity.CRITICAL)
        )
        assert f.admits(device, _make_alert(Severity.CRITICAL))

    def test_outside_quiet_hours_admitted(self):
        f = PreferenceFilter(clock=_clock(14))
        assert f.admits(_make_device(NIGHT_SHIFT_OFF), _make_alert(Severity.MEDIUM))

    def test_site_timezone_applied(self):
        # 20:00 UTC is 01:30 in Asia/Kolkata
        f = PreferenceFilter(clock=_clock(20), timezone_name="Asia/Kolkata")
        assert f.local_time() == time(1, 30)
        assert not f.admits(_make_device(NIGHT_SHIFT_OFF), _make_alert(Severity.MEDIUM))


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Channel toggles
# ═══════════════════════════════════════════════════════════════════════════

class TestChannelEnabled:

    def test_defaults(self):
        device = _make_device()
        alert = _make_alert(Severity.MEDIUM)
        assert channel_enabled(device, Channel.PUSH, alert)
        assert channel_enabled(device, Channel.SMS, alert)
        assert not channel_enabled(device, Channel.EMAIL, alert)

    def test_toggles_respected_below_critical(self):
        device = _make_device(Preferences(enable_push=False, enable_sms=False))
        alert = _make_alert(Severity.HIGH)
        assert not channel_enabled(device, Channel.PUSH, alert)
        assert not channel_enabled(device, Channel.SMS, alert)

    def test_critical_forces_push_and_sms(self):
        device = _make_device(Preferences(enable_push=False, enable_sms=False))
        alert = _make_alert(Severity.CRITICAL)
        assert channel_enabled(device, Channel.PUSH, alert)
        assert channel_enabled(device, Channel.SMS, alert)

    def test_critical_email_needs_opt_in_or_address(self):
        alert = _make_alert(Severity.CRITICAL)
        assert not channel_enabled(_make_device(), Channel.EMAIL, alert)
        assert channel_enabled(_make_device(email="a@mine.example"), Channel.EMAIL, alert)
        assert channel_enabled(
            _make_device(Preferences(enable_email=True)), Channel.EMAIL, alert
        )

    def test_email_address_alone_not_enough_below_critical(self):
        device = _make_device(email="a@mine.example")
        assert not channel_enabled(device, Channel.EMAIL, _make_alert(Severity.HIGH))
