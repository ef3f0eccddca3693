"""
test_risk_evaluator.py — Risk score → severity classification.

Covers:
    • Threshold ladder (below high, medium, high, critical boundaries)
    • Alert content (titles, bodies, actions, timeline)
    • Probability carried through untouched
    • Input validation (score / probability ranges, NaN)
    • Threshold configuration

Run with:
    pytest tests/test_risk_evaluator.py -v
"""

from __future__ import annotations

import math

import pytest

from backend.app.alerts.models import Severity
from backend.app.alerts.risk_evaluator import (
    ALERT_TITLES,
    RECOMMENDED_ACTIONS,
    RiskThresholds,
    classify_severity,
    estimate_timeline,
    evaluate_risk,
)
from backend.app.core.config import Settings


DEFAULT = RiskThresholds()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Classification
# ═══════════════════════════════════════════════════════════════════════════

class TestClassifySeverity:
    """Highest tier crossed wins."""

    def test_below_high_threshold_no_alert(self):
        assert classify_severity(5.99, DEFAULT) is None

    def test_zero_score_no_alert(self):
        assert classify_severity(0.0, DEFAULT) is None

    def test_at_high_threshold_is_medium(self):
        assert classify_severity(6.0, DEFAULT) == Severity.MEDIUM

    def test_at_critical_threshold_is_high(self):
        assert classify_severity(7.5, DEFAULT) == Severity.HIGH

    def test_between_critical_and_emergency_is_high(self):
        assert classify_severity(7.8, DEFAULT) == Severity.HIGH

    def test_at_emergency_threshold_is_critical(self):
        assert classify_severity(8.5, DEFAULT) == Severity.CRITICAL

    def test_maximum_score_is_critical(self):
        assert classify_severity(10.0, DEFAULT) == Severity.CRITICAL

    def test_custom_thresholds(self):
        thresholds = RiskThresholds(high=7.5, critical=8.5, emergency=9.0)
        assert classify_severity(7.0, thresholds) is None
        assert classify_severity(8.0, thresholds) == Severity.MEDIUM
        assert classify_severity(8.7, thresholds) == Severity.HIGH
        assert classify_severity(9.0, thresholds) == Severity.CRITICAL


class TestRiskThresholds:

    def test_must_ascend(self):
        with pytest.raises(ValueError):
            RiskThresholds(high=8.0, critical=7.0, emergency=9.0)

    def test_equal_thresholds_allowed(self):
        thresholds = RiskThresholds(high=7.0, critical=7.0, emergency=7.0)
        assert classify_severity(7.0, thresholds) == Severity.CRITICAL

    def test_from_settings(self):
        settings = Settings(
            RISK_THRESHOLD_HIGH=5.0,
            RISK_THRESHOLD_CRITICAL=6.0,
            RISK_THRESHOLD_EMERGENCY=7.0,
        )
        thresholds = RiskThresholds.from_settings(settings)
        assert thresholds.to_dict() == {"high": 5.0, "critical": 6.0, "emergency": 7.0}


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Alert Construction
# ═══════════════════════════════════════════════════════════════════════════

class TestEvaluateRisk:

    def test_below_threshold_returns_none(self):
        assert evaluate_risk("zone-1", "North Bench", 3.2, DEFAULT) is None

    def test_high_alert_content(self):
        alert = evaluate_risk("zone-2", "East Wall", 7.8, DEFAULT)
        assert alert is not None
        assert alert.severity == Severity.HIGH
        assert alert.zone_id == "zone-2"
        assert alert.zone_name == "East Wall"
        assert alert.title == ALERT_TITLES[Severity.HIGH]
        assert "East Wall" in alert.message
        assert "7.8/10" in alert.message
        assert alert.recommended_actions == RECOMMENDED_ACTIONS[Severity.HIGH]
        assert alert.alert_type == "risk"

    def test_critical_alert_title(self):
        alert = evaluate_risk("zone-1", "North Bench", 9.2, DEFAULT)
        assert alert.severity == Severity.CRITICAL
        assert alert.title == "EMERGENCY: Immediate Evacuation Required"
        assert "IMMEDIATE EVACUATION REQUIRED" in alert.message

    def test_ids_are_unique(self):
        a = evaluate_risk("zone-1", "A", 9.0, DEFAULT)
        b = evaluate_risk("zone-1", "A", 9.0, DEFAULT)
        assert a.id != b.id
        assert a.id.startswith("ALR-")

    def test_probability_carried_through(self):
        alert = evaluate_risk("zone-1", "A", 7.0, DEFAULT, risk_probability=0.42)
        assert alert.risk_probability == 0.42

    def test_probability_never_derived(self):
        alert = evaluate_risk("zone-1", "A", 9.5, DEFAULT)
        assert alert.risk_probability is None

    def test_missing_zone_name_defaults(self):
        alert = evaluate_risk("zone-9", "", 6.5, DEFAULT)
        assert alert.zone_name == "Zone zone-9"

    def test_timeline_attached(self):
        alert = evaluate_risk("zone-1", "A", 9.2, DEFAULT)
        assert alert.predicted_timeline == "Immediate (0-15 minutes)"


class TestEvaluateRiskValidation:

    @pytest.mark.parametrize("score", [-0.1, 10.01, 42.0])
    def test_score_out_of_range(self, score):
        with pytest.raises(ValueError):
            evaluate_risk("zone-1", "A", score, DEFAULT)

    def test_nan_score(self):
        with pytest.raises(ValueError):
            evaluate_risk("zone-1", "A", math.nan, DEFAULT)

    @pytest.mark.parametrize("probability", [-0.01, 1.5])
    def test_probability_out_of_range(self, probability):
        with pytest.raises(ValueError):
            evaluate_risk("zone-1", "A", 7.0, DEFAULT, risk_probability=probability)


class TestTimeline:

    def test_labels_descend_with_score(self):
        assert estimate_timeline(9.0) == "Immediate (0-15 minutes)"
        assert estimate_timeline(8.2) == "Very Short (15-60 minutes)"
        assert estimate_timeline(7.1) == "Short Term (1-6 hours)"
        assert estimate_timeline(6.0) == "Medium Term (6-24 hours)"
        assert estimate_timeline(2.0) == "Long Term (24+ hours)"
