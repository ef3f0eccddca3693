"""
risk_monitor.py — Periodic risk assessment → alert → dispatch loop.

Each tick the sensor pipeline hands over the current score of every zone:

    for zone, score in scores:
        alert = evaluate_risk(zone, score)       # None below threshold
        if same (zone, severity) alerted within the dedup window:
            reuse the earlier alert, no dispatch
        else:
            persist + dispatch
    store the snapshot of all scores + generated alert ids

The dedup cache is process-local. Entries older than an hour are dropped
by ``cleanup_cache()``, which ``start()`` runs on a background task.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from backend.app.alerts.alert_service import AlertDispatchService
from backend.app.alerts.models import Alert, DispatchResult, RiskAssessmentSnapshot, _now
from backend.app.alerts.risk_evaluator import RiskThresholds, evaluate_risk
from backend.app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

CACHE_MAX_AGE = timedelta(hours=1)


@dataclass
class ZoneEvaluation:
    """Outcome for one zone in one tick."""
    zone_id: str
    risk_score: float
    alert: Optional[Alert] = None
    duplicate: bool = False
    dispatch: Optional[DispatchResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "risk_score": self.risk_score,
            "alert": self.alert.to_dict() if self.alert else None,
            "duplicate": self.duplicate,
            "dispatch": self.dispatch.summary.to_dict() if self.dispatch else None,
        }


@dataclass
class AssessmentResult:
    snapshot: RiskAssessmentSnapshot
    evaluations: List[ZoneEvaluation] = field(default_factory=list)

    @property
    def max_risk_score(self) -> float:
        return max((e.risk_score for e in self.evaluations), default=0.0)

    @property
    def alerts_triggered(self) -> int:
        return sum(1 for e in self.evaluations if e.alert and not e.duplicate)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment_id": self.snapshot.id,
            "max_risk_score": self.max_risk_score,
            "alerts_triggered": self.alerts_triggered,
            "zones": [e.to_dict() for e in self.evaluations],
        }


class RiskMonitor:
    """Evaluates zone scores and dispatches the resulting alerts."""

    def __init__(
        self,
        dispatcher: AlertDispatchService,
        *,
        thresholds: Optional[RiskThresholds] = None,
        dedup_window_seconds: int = 300,
        clock: Callable[[], datetime] = _now,
    ):
        self.dispatcher = dispatcher
        self.thresholds = thresholds or RiskThresholds()
        self.dedup_window = timedelta(seconds=dedup_window_seconds)
        self._clock = clock
        self._recent: Dict[str, Tuple[datetime, Alert]] = {}
        self._cleanup_task: Optional["asyncio.Task[None]"] = None

    @classmethod
    def from_settings(
        cls,
        dispatcher: AlertDispatchService,
        settings: Optional[Settings] = None,
    ) -> "RiskMonitor":
        settings = settings or get_settings()
        return cls(
            dispatcher,
            thresholds=RiskThresholds.from_settings(settings),
            dedup_window_seconds=settings.ALERT_DEDUP_WINDOW_SECONDS,
        )

    @staticmethod
    def _cache_key(alert: Alert) -> str:
        return f"{alert.zone_id}-{alert.severity.value}"

    def _recent_duplicate(self, alert: Alert) -> Optional[Alert]:
        entry = self._recent.get(self._cache_key(alert))
        if entry is None:
            return None
        seen_at, cached = entry
        if self._clock() - seen_at < self.dedup_window:
            return cached
        return None

    async def evaluate_zone(
        self,
        zone_id: str,
        risk_score: float,
        *,
        zone_name: Optional[str] = None,
        risk_probability: Optional[float] = None,
        device_ids: Tuple[str, ...] = (),
    ) -> ZoneEvaluation:
        """Single-zone trigger: classify, dedupe, dispatch."""
        evaluation = ZoneEvaluation(zone_id=zone_id, risk_score=risk_score)
        alert = evaluate_risk(
            zone_id,
            zone_name or f"Zone {zone_id}",
            risk_score,
            self.thresholds,
            risk_probability=risk_probability,
        )
        if alert is None:
            return evaluation

        cached = self._recent_duplicate(alert)
        if cached is not None:
            logger.info(
                "Duplicate %s alert for zone %s suppressed (original %s)",
                alert.severity.value, zone_id, cached.id,
            )
            evaluation.alert = cached
            evaluation.duplicate = True
            return evaluation

        key = self._cache_key(alert)
        self._recent[key] = (self._clock(), alert)
        evaluation.alert = alert
        try:
            evaluation.dispatch = await self.dispatcher.dispatch(alert, device_ids)
        except Exception:
            # A failed pass leaves no dedup entry behind
            if self._recent.get(key, (None, None))[1] is alert:
                del self._recent[key]
            raise
        return evaluation

    async def process_assessment(
        self,
        zones: Mapping[str, str],
        scores: Mapping[str, float],
        probabilities: Optional[Mapping[str, float]] = None,
    ) -> AssessmentResult:
        """
        Evaluate a full tick of zone scores.

        Parameters
        ----------
        zones : mapping zone_id → zone name
            Names for rendering; unknown zones get "Zone <id>".
        scores : mapping zone_id → risk score (0–10)
        probabilities : mapping zone_id → probability (0–1), optional
        """
        probabilities = probabilities or {}
        snapshot = RiskAssessmentSnapshot(zone_scores=dict(scores))
        result = AssessmentResult(snapshot=snapshot)

        for zone_id, score in scores.items():
            evaluation = await self.evaluate_zone(
                zone_id,
                score,
                zone_name=zones.get(zone_id),
                risk_probability=probabilities.get(zone_id),
            )
            result.evaluations.append(evaluation)
            if evaluation.alert is not None and not evaluation.duplicate:
                snapshot.alerts_generated.append(evaluation.alert.id)

        store = self.dispatcher.store
        await store.create_risk_assessment(snapshot)
        await store.log("info", "alert", "Risk assessment processed", {
            "max_risk_score": result.max_risk_score,
            "alerts_generated": len(snapshot.alerts_generated),
            "zones": len(scores),
        })
        logger.info(
            "Risk assessment %s: %d zones, max=%.1f, %d alerts",
            snapshot.id, len(scores), result.max_risk_score, result.alerts_triggered,
        )
        return result

    def cleanup_cache(self, max_age: timedelta = CACHE_MAX_AGE) -> int:
        """Drop dedup entries older than ``max_age``; returns how many."""
        cutoff = self._clock() - max_age
        stale = [k for k, (seen_at, _) in self._recent.items() if seen_at < cutoff]
        for key in stale:
            del self._recent[key]
        if stale:
            logger.debug("Dropped %d stale dedup entries", len(stale))
        return len(stale)

    # ── Background cleanup ──

    async def start(self, interval_seconds: float) -> None:
        """Run ``cleanup_cache`` every ``interval_seconds`` until ``stop``."""
        if self._cleanup_task is not None:
            return
        self._cleanup_task = asyncio.create_task(self._run_cleanup(interval_seconds))
        logger.info("Dedup cache cleanup started (every %ss)", interval_seconds)

    async def stop(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None
        logger.info("Dedup cache cleanup stopped")

    async def _run_cleanup(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.cleanup_cache()
