"""
models.py — Shared data structures for the rockfall alert dispatch engine.

Defines:
    • Severity        — alert tiers with rank ordering
    • Channel         — delivery channel enum (fixed attempt order)
    • DeliveryStatus  — per-record lifecycle state
    • Preferences     — normalized per-device notification preferences
    • Device          — a registered notification endpoint
    • Alert           — one notifiable event (immutable)
    • DeliveryRecord  — one channel attempt to one device for one alert
    • RenderedMessage / SendOutcome — provider input / output
    • DispatchSummary / DispatchResult — what a dispatch pass returns

═══════════════════════════════════════════════════════════════════════════
SEVERITY TIERS
═══════════════════════════════════════════════════════════════════════════

    Severity    Rank   Targeting                  Preference bypass
    ────────    ────   ────────────────────────   ───────────────────────
    low         1      zone only                  none
    medium      2      zone only                  none
    high        3      zone + adjacent zones      none
    critical    4      every device site-wide     minimum severity,
                                                  quiet hours, push/SMS
                                                  toggles (never inactive)

═══════════════════════════════════════════════════════════════════════════
DELIVERY RECORD LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    pending ──send()──▶ sent ──receipt──▶ delivered ──receipt──▶ read
       │
       └────────────▶ failed

    pending → sent/failed happens inside one dispatch pass; delivered and
    read are set later by provider receipts.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# HH:MM, 24-hour clock
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Severity(str, Enum):
    """Alert severity tier — compare with ``rank``, not string order."""
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Union["Severity", str]) -> "Severity":
        """Strict parse; raises ValueError for unknown tiers."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown severity: {value!r}") from None

    @classmethod
    def coerce(
        cls,
        value: Union["Severity", str, None],
        default: "Severity",
    ) -> "Severity":
        """Lenient parse; unknown or missing values become ``default``."""
        if value is None:
            return default
        try:
            return cls.parse(value)
        except ValueError:
            return default


_SEVERITY_RANK: Dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Channel(str, Enum):
    """Notification channels."""
    PUSH  = "push"
    SMS   = "sms"
    EMAIL = "email"


# Per-device attempt order
CHANNEL_ORDER: Tuple[Channel, ...] = (Channel.PUSH, Channel.SMS, Channel.EMAIL)


class DeliveryStatus(str, Enum):
    """Delivery state per device per channel."""
    PENDING   = "pending"    # record created, provider not answered yet
    SENT      = "sent"       # provider accepted
    DELIVERED = "delivered"  # receipt from provider
    READ      = "read"       # receipt from handset
    FAILED    = "failed"     # provider rejected, errored or validation failed


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _generate_delivery_id() -> str:
    return f"DLV-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_hhmm(value: str) -> Tuple[int, int]:
    """'22:30' → (22, 30); raises ValueError on anything else."""
    match = _HHMM_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM (24h)")
    return int(match.group(1)), int(match.group(2))


# ═══════════════════════════════════════════════════════════════════════════
# Preferences
# ═══════════════════════════════════════════════════════════════════════════

# Historical key spellings accepted at the registration boundary
_PREFERENCE_KEYS: Dict[str, Tuple[str, ...]] = {
    "enable_push": (
        "enable_push", "enablePushNotifications", "enablePush",
        "pushNotifications",
    ),
    "enable_sms": ("enable_sms", "enableSMS", "enableSms", "smsNotifications"),
    "enable_email": (
        "enable_email", "enableEmail", "emailNotifications",
    ),
    "enable_vibration": ("enable_vibration", "enableVibration", "vibration"),
    "quiet_hours": ("quiet_hours", "quietHours"),
    "minimum_severity": (
        "minimum_severity", "minimumSeverity", "minSeverity", "min_severity",
    ),
}


def _pick(data: Mapping[str, Any], field_name: str) -> Any:
    for key in _PREFERENCE_KEYS[field_name]:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class QuietHours:
    """A daily window, HH:MM both ends inclusive; may wrap midnight."""
    start: str
    end: str

    def __post_init__(self) -> None:
        parse_hhmm(self.start)
        parse_hhmm(self.end)

    @property
    def start_minute(self) -> int:
        h, m = parse_hhmm(self.start)
        return h * 60 + m

    @property
    def end_minute(self) -> int:
        h, m = parse_hhmm(self.end)
        return h * 60 + m

    @property
    def wraps_midnight(self) -> bool:
        return self.start_minute > self.end_minute

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class Preferences:
    """
    Normalized notification preferences of one device.

    Built once at the registration/update boundary through
    :meth:`from_mapping`; everything downstream reads these fields only.
    """
    enable_push: bool = True
    enable_sms: bool = True
    enable_email: bool = False
    enable_vibration: bool = True
    quiet_hours: Optional[QuietHours] = None
    minimum_severity: Severity = Severity.MEDIUM

    @classmethod
    def from_mapping(
        cls,
        data: Union["Preferences", Mapping[str, Any], str, None],
    ) -> "Preferences":
        """
        Normalize a loosely-typed preferences object.

        Accepts an existing Preferences, a dict with any of the historical
        key spellings, a JSON string of such a dict, or None (defaults).
        Raises ValueError on malformed quiet hours or severity.
        """
        if isinstance(data, Preferences):
            return data
        if data is None or data == "":
            return cls()
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise ValueError(f"Preferences are not valid JSON: {e}") from e
        if not isinstance(data, Mapping):
            raise ValueError("Preferences must be an object")

        defaults = cls()
        quiet = _pick(data, "quiet_hours")
        quiet_hours: Optional[QuietHours] = None
        if isinstance(quiet, QuietHours):
            quiet_hours = quiet
        elif isinstance(quiet, Mapping):
            # {"enabled": false, ...} and half-filled windows mean "no window"
            enabled = _as_bool(quiet.get("enabled"), True)
            if enabled and quiet.get("start") and quiet.get("end"):
                quiet_hours = QuietHours(str(quiet["start"]), str(quiet["end"]))
        elif quiet is not None:
            raise ValueError("quietHours must be an object with start/end")

        minimum = _pick(data, "minimum_severity")
        return cls(
            enable_push=_as_bool(_pick(data, "enable_push"), defaults.enable_push),
            enable_sms=_as_bool(_pick(data, "enable_sms"), defaults.enable_sms),
            enable_email=_as_bool(_pick(data, "enable_email"), defaults.enable_email),
            enable_vibration=_as_bool(
                _pick(data, "enable_vibration"), defaults.enable_vibration
            ),
            quiet_hours=quiet_hours,
            minimum_severity=(
                Severity.parse(minimum) if minimum is not None
                else defaults.minimum_severity
            ),
        )

    def merged(self, data: Mapping[str, Any]) -> "Preferences":
        """Partial update: keys present in ``data`` override, the rest stay."""
        values = self.to_dict()
        for field_name, aliases in _PREFERENCE_KEYS.items():
            for key in aliases:
                if key in data:
                    values[field_name] = data[key]
                    break
        return Preferences.from_mapping(values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enable_push": self.enable_push,
            "enable_sms": self.enable_sms,
            "enable_email": self.enable_email,
            "enable_vibration": self.enable_vibration,
            "quiet_hours": self.quiet_hours.to_dict() if self.quiet_hours else None,
            "minimum_severity": self.minimum_severity.value,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Devices & Alerts
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Device:
    """
    A registered notification endpoint bound to one person.

    Attributes
    ----------
    id : str
        Device identifier.
    owner_name : str
        Display name of the miner / staff member.
    device_type : str
        ``android`` | ``ios`` | ``web``.
    phone_number : str | None
        E.164 number for SMS.
    email : str | None
        Address for email alerts.
    push_token : str | None
        FCM registration token (mobile).
    push_subscription : dict | None
        Web Push subscription ``{endpoint, keys: {p256dh, auth}}`` (browser).
    zone_assignment : str | None
        Zone the person works in.
    is_active : bool
        False after deactivation; inactive devices never receive alerts.
    """
    id: str
    owner_name: str
    device_type: str = "android"
    phone_number: Optional[str] = None
    email: Optional[str] = None
    push_token: Optional[str] = None
    push_subscription: Optional[Dict[str, Any]] = None
    zone_assignment: Optional[str] = None
    is_active: bool = True
    preferences: Preferences = field(default_factory=Preferences)
    last_seen: Optional[datetime] = None
    battery_level: Optional[float] = None
    network_status: str = "online"  # online | offline | low-signal
    location: Optional[Dict[str, float]] = None
    created_at: datetime = field(default_factory=_now)

    @property
    def has_push_endpoint(self) -> bool:
        return bool(self.push_token or self.push_subscription)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_name": self.owner_name,
            "device_type": self.device_type,
            "phone_number": self.phone_number,
            "email": self.email,
            "has_push_token": bool(self.push_token),
            "has_push_subscription": bool(self.push_subscription),
            "zone_assignment": self.zone_assignment,
            "is_active": self.is_active,
            "preferences": self.preferences.to_dict(),
            "last_seen": _iso(self.last_seen),
            "battery_level": self.battery_level,
            "network_status": self.network_status,
            "location": self.location,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class Alert:
    """
    One notifiable event. Immutable once created.

    ``risk_probability`` is whatever the caller supplied (0–1) or None;
    it is never derived from the score.
    """
    severity: Severity
    zone_id: str
    zone_name: str
    message: str
    risk_score: float
    id: str = field(default_factory=_generate_id)
    title: str = ""
    risk_probability: Optional[float] = None
    recommended_actions: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=_now)
    alert_type: str = "risk"  # risk | test | manual | emergency
    predicted_timeline: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "title": self.title,
            "message": self.message,
            "risk_score": round(self.risk_score, 2),
            "risk_probability": self.risk_probability,
            "recommended_actions": list(self.recommended_actions),
            "timestamp": self.timestamp.isoformat(),
            "alert_type": self.alert_type,
            "predicted_timeline": self.predicted_timeline,
        }


@dataclass
class DeliveryRecord:
    """One attempt of one channel to one device for one alert."""
    alert_id: str
    device_id: str
    channel: Channel
    id: str = field(default_factory=_generate_delivery_id)
    status: DeliveryStatus = DeliveryStatus.PENDING
    delivery_attempts: int = 1
    error_message: Optional[str] = None
    provider_ref: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "device_id": self.device_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "delivery_attempts": self.delivery_attempts,
            "error_message": self.error_message,
            "provider_ref": self.provider_ref,
            "created_at": self.created_at.isoformat(),
            "sent_at": _iso(self.sent_at),
            "delivered_at": _iso(self.delivered_at),
            "read_at": _iso(self.read_at),
        }


@dataclass
class RiskAssessmentSnapshot:
    """Scores of every zone at one evaluation tick."""
    zone_scores: Dict[str, float]
    id: str = field(default_factory=lambda: f"RSK-{uuid.uuid4().hex[:12].upper()}")
    alerts_generated: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "zone_scores": dict(self.zone_scores),
            "alerts_generated": list(self.alerts_generated),
            "created_at": self.created_at.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Provider contract
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RenderedMessage:
    """
    Channel-ready content.

    push  → title, body, data
    sms   → body
    email → title (subject), body (plain text), html
    """
    body: str
    title: Optional[str] = None
    html: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendOutcome:
    """What a channel provider reports for one send."""
    success: bool
    provider_ref: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, provider_ref: Optional[str] = None) -> "SendOutcome":
        return cls(success=True, provider_ref=provider_ref)

    @classmethod
    def failed(cls, error: str) -> "SendOutcome":
        return cls(success=False, error=error)


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch result
# ═══════════════════════════════════════════════════════════════════════════

def _zero_counts() -> Dict[Channel, int]:
    return {channel: 0 for channel in CHANNEL_ORDER}


@dataclass
class DispatchSummary:
    """Aggregate counts reported back to the operator / UI."""
    total_targeted: int = 0
    admitted: int = 0
    per_channel_success: Dict[Channel, int] = field(default_factory=_zero_counts)
    per_channel_failure: Dict[Channel, int] = field(default_factory=_zero_counts)

    @property
    def total_sent(self) -> int:
        return sum(self.per_channel_success.values())

    @property
    def total_failed(self) -> int:
        return sum(self.per_channel_failure.values())

    @classmethod
    def from_records(
        cls,
        records: List[DeliveryRecord],
        *,
        total_targeted: int = 0,
        admitted: int = 0,
    ) -> "DispatchSummary":
        summary = cls(total_targeted=total_targeted, admitted=admitted)
        for record in records:
            if record.status == DeliveryStatus.FAILED:
                summary.per_channel_failure[record.channel] += 1
            elif record.status != DeliveryStatus.PENDING:
                summary.per_channel_success[record.channel] += 1
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_targeted": self.total_targeted,
            "admitted": self.admitted,
            "per_channel_success": {
                c.value: n for c, n in self.per_channel_success.items()
            },
            "per_channel_failure": {
                c.value: n for c, n in self.per_channel_failure.items()
            },
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
        }


@dataclass
class DispatchResult:
    """Everything one dispatch pass produced."""
    alert: Alert
    records: List[DeliveryRecord] = field(default_factory=list)
    summary: DispatchSummary = field(default_factory=DispatchSummary)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "summary": self.summary.to_dict(),
            "deliveries": [r.to_dict() for r in self.records],
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }
