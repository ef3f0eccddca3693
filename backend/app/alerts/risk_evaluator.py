"""
risk_evaluator.py — Turn a zone's risk score into a classified Alert.

═══════════════════════════════════════════════════════════════════════════
THRESHOLD LADDER (0–10 score scale)
═══════════════════════════════════════════════════════════════════════════

    score < high                 →  no alert
    high ≤ score < critical      →  MEDIUM   "Elevated Rockfall Risk"
    critical ≤ score < emergency →  HIGH     "HIGH RISK: Rockfall Warning"
    score ≥ emergency            →  CRITICAL "EMERGENCY: Immediate Evacuation
                                              Required"

The three thresholds are configurable (RISK_THRESHOLD_HIGH / _CRITICAL /
_EMERGENCY) and must ascend.

Evaluation is pure: persisting the alert and dispatching it belong to the
caller (RiskMonitor / AlertDispatchService). Probability is carried
through from the caller untouched, never derived from the score.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from backend.app.alerts.models import Alert, Severity
from backend.app.core.config import Settings, get_settings


# ═══════════════════════════════════════════════════════════════════════════
# Thresholds
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RiskThresholds:
    """Three ascending cut-offs on the 0–10 risk scale."""
    high: float = 6.0
    critical: float = 7.5
    emergency: float = 8.5

    def __post_init__(self) -> None:
        if not (self.high <= self.critical <= self.emergency):
            raise ValueError(
                f"Thresholds must ascend: high={self.high} "
                f"critical={self.critical} emergency={self.emergency}"
            )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RiskThresholds":
        settings = settings or get_settings()
        return cls(
            high=settings.RISK_THRESHOLD_HIGH,
            critical=settings.RISK_THRESHOLD_CRITICAL,
            emergency=settings.RISK_THRESHOLD_EMERGENCY,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "high": self.high,
            "critical": self.critical,
            "emergency": self.emergency,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Tier content
# ═══════════════════════════════════════════════════════════════════════════

ALERT_TITLES: Dict[Severity, str] = {
    Severity.CRITICAL: "EMERGENCY: Immediate Evacuation Required",
    Severity.HIGH: "HIGH RISK: Rockfall Warning",
    Severity.MEDIUM: "Elevated Rockfall Risk",
}

_ALERT_BODIES: Dict[Severity, str] = {
    Severity.CRITICAL: (
        "CRITICAL ROCKFALL RISK detected in {zone}. Risk Score: {score:.1f}/10. "
        "IMMEDIATE EVACUATION REQUIRED."
    ),
    Severity.HIGH: (
        "High rockfall risk detected in {zone}. Risk Score: {score:.1f}/10. "
        "Restrict access to essential personnel only."
    ),
    Severity.MEDIUM: (
        "Elevated rockfall risk in {zone}. Risk Score: {score:.1f}/10. "
        "Increase monitoring frequency."
    ),
}

RECOMMENDED_ACTIONS: Dict[Severity, Tuple[str, ...]] = {
    Severity.CRITICAL: (
        "EVACUATE ALL PERSONNEL IMMEDIATELY",
        "Activate emergency response protocol",
        "Contact emergency services",
        "Establish safety perimeter (minimum 500m)",
        "Deploy emergency response team",
        "Notify mine management immediately",
    ),
    Severity.HIGH: (
        "Restrict access to essential personnel only",
        "Increase monitoring frequency to every 5 minutes",
        "Deploy additional sensors if available",
        "Prepare evacuation routes",
        "Alert emergency response team",
        "Review and update safety protocols",
    ),
    Severity.MEDIUM: (
        "Increase monitoring frequency to every 15 minutes",
        "Review safety procedures with personnel",
        "Check equipment and escape routes",
        "Consider reducing personnel in area",
        "Monitor weather conditions",
        "Prepare contingency plans",
    ),
}

# (minimum score, label), checked top-down
_TIMELINES: Tuple[Tuple[float, str], ...] = (
    (9.0, "Immediate (0-15 minutes)"),
    (8.0, "Very Short (15-60 minutes)"),
    (7.0, "Short Term (1-6 hours)"),
    (6.0, "Medium Term (6-24 hours)"),
)
_LONG_TERM = "Long Term (24+ hours)"


# ═══════════════════════════════════════════════════════════════════════════
# Evaluation
# ═══════════════════════════════════════════════════════════════════════════

def classify_severity(
    risk_score: float,
    thresholds: RiskThresholds,
) -> Optional[Severity]:
    """Highest tier crossed, or None below the ``high`` threshold."""
    if risk_score >= thresholds.emergency:
        return Severity.CRITICAL
    if risk_score >= thresholds.critical:
        return Severity.HIGH
    if risk_score >= thresholds.high:
        return Severity.MEDIUM
    return None


def estimate_timeline(risk_score: float) -> str:
    """Rough time-to-failure label for operators."""
    for floor, label in _TIMELINES:
        if risk_score >= floor:
            return label
    return _LONG_TERM


def alert_body(severity: Severity, zone_name: str, risk_score: float) -> str:
    template = _ALERT_BODIES.get(severity, _ALERT_BODIES[Severity.MEDIUM])
    return template.format(zone=zone_name, score=risk_score)


def recommended_actions(severity: Severity) -> Tuple[str, ...]:
    return RECOMMENDED_ACTIONS.get(severity, RECOMMENDED_ACTIONS[Severity.MEDIUM])


def evaluate_risk(
    zone_id: str,
    zone_name: str,
    risk_score: float,
    thresholds: RiskThresholds,
    *,
    risk_probability: Optional[float] = None,
    alert_type: str = "risk",
) -> Optional[Alert]:
    """
    Classify a zone's current risk score.

    Returns
    -------
    Alert | None
        None when the score is below ``thresholds.high``; otherwise an
        Alert whose severity is the highest tier crossed.

    Raises
    ------
    ValueError
        Score outside 0–10 (or NaN), or probability outside 0–1.
    """
    if risk_score is None or math.isnan(risk_score) or not 0.0 <= risk_score <= 10.0:
        raise ValueError(f"risk_score must be within 0–10, got {risk_score!r}")
    if risk_probability is not None and not 0.0 <= risk_probability <= 1.0:
        raise ValueError(
            f"risk_probability must be within 0–1, got {risk_probability!r}"
        )

    severity = classify_severity(risk_score, thresholds)
    if severity is None:
        return None

    zone_name = zone_name or f"Zone {zone_id}"
    return Alert(
        severity=severity,
        zone_id=zone_id,
        zone_name=zone_name,
        title=ALERT_TITLES[severity],
        message=alert_body(severity, zone_name, risk_score),
        risk_score=risk_score,
        risk_probability=risk_probability,
        recommended_actions=recommended_actions(severity),
        alert_type=alert_type,
        predicted_timeline=estimate_timeline(risk_score),
    )
