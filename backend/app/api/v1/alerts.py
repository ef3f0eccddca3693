"""
FastAPI route: Rockfall alert evaluation and dispatch endpoints.

Provides endpoints to:
    POST /api/v1/alerts/evaluate            — score one zone, alert if needed
    POST /api/v1/alerts/evaluate/batch      — full risk-assessment tick
    POST /api/v1/alerts/dispatch            — operator alert to zone / devices
    POST /api/v1/alerts/test                — test alert through the normal path
    POST /api/v1/alerts/simulate-emergency  — site-wide critical drill
    POST /api/v1/alerts/{id}/redispatch     — new pass for a stored alert
    GET  /api/v1/alerts/channels            — provider mode per channel
    GET  /api/v1/alerts/{id}                — stored alert + delivery summary
    GET  /api/v1/alerts/{id}/deliveries     — delivery records
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from backend.app.alerts.alert_service import AlertDispatchService
from backend.app.alerts.channels.base import ChannelProviders
from backend.app.alerts.models import DispatchSummary, Severity
from backend.app.alerts.risk_monitor import RiskMonitor
from backend.app.alerts.store.base import AlertStore
from backend.app.api.deps import get_dispatcher, get_monitor, get_providers, get_store
from backend.app.core.errors import NotFoundError

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class EvaluateRequest(BaseModel):
    """Current risk score for one zone."""
    zone_id: str = Field(..., min_length=1, examples=["zone-1"])
    zone_name: Optional[str] = Field(None, examples=["North Bench"])
    risk_score: float = Field(..., ge=0, le=10, examples=[7.8])
    risk_probability: Optional[float] = Field(None, ge=0, le=1, examples=[0.72])
    device_ids: List[str] = Field(
        default_factory=list,
        description="Explicit targets; empty → zone / adjacency / site-wide rules",
    )


class BatchEvaluateRequest(BaseModel):
    """One risk-assessment tick across zones."""
    zones: Dict[str, str] = Field(
        default_factory=dict,
        examples=[{"zone-1": "North Bench", "zone-2": "East Wall"}],
        description="zone_id → display name",
    )
    scores: Dict[str, float] = Field(
        ..., min_length=1, examples=[{"zone-1": 9.2, "zone-2": 4.1}],
    )
    probabilities: Dict[str, float] = Field(default_factory=dict)


class DispatchRequest(BaseModel):
    """Operator-issued alert."""
    zone_id: str = Field(..., min_length=1, examples=["zone-3"])
    zone_name: Optional[str] = Field(None, examples=["South Pit"])
    severity: str = Field(..., examples=["high"], description="low / medium / high / critical")
    message: str = Field(..., min_length=1, examples=["Crack widening observed on bench 4."])
    title: Optional[str] = Field(None)
    risk_score: Optional[float] = Field(None, ge=0, le=10)
    risk_probability: Optional[float] = Field(None, ge=0, le=1)
    recommended_actions: List[str] = Field(default_factory=list)
    device_ids: List[str] = Field(default_factory=list)


class TestAlertRequest(BaseModel):
    severity: str = Field("medium", examples=["medium"])
    zone_name: str = Field("Test Zone")
    message: str = Field("This is a test alert from the system")
    device_ids: List[str] = Field(default_factory=list)


class EmergencySimulationRequest(BaseModel):
    zone_name: str = Field("Simulation Zone")
    scenario: str = Field("rockfall", examples=["rockfall"])


class RedispatchRequest(BaseModel):
    device_ids: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _parse_severity(severity_str: str) -> Severity:
    """Parse a severity string to Severity enum."""
    try:
        return Severity.parse(severity_str)
    except ValueError:
        valid = [s.value for s in Severity]
        raise HTTPException(
            status_code=400,
            detail=f"Invalid severity '{severity_str}'. Must be one of: {valid}",
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/evaluate",
    summary="Evaluate one zone's risk score",
    description=(
        "Classifies the score against the configured thresholds. Scores "
        "below the lowest threshold produce no alert; otherwise the alert is "
        "stored and dispatched unless the same zone/severity was alerted "
        "within the dedup window."
    ),
)
async def evaluate_zone(
    request: EvaluateRequest,
    monitor: RiskMonitor = Depends(get_monitor),
) -> Dict[str, Any]:
    evaluation = await monitor.evaluate_zone(
        request.zone_id,
        request.risk_score,
        zone_name=request.zone_name,
        risk_probability=request.risk_probability,
        device_ids=tuple(request.device_ids),
    )
    body = evaluation.to_dict()
    if evaluation.dispatch is not None:
        body["deliveries"] = [r.to_dict() for r in evaluation.dispatch.records]
    return body


@router.post("/evaluate/batch", summary="Process a full risk-assessment tick")
async def evaluate_batch(
    request: BatchEvaluateRequest,
    monitor: RiskMonitor = Depends(get_monitor),
) -> Dict[str, Any]:
    result = await monitor.process_assessment(
        request.zones, request.scores, request.probabilities,
    )
    return result.to_dict()


@router.post("/dispatch", summary="Dispatch an operator alert")
async def dispatch_alert(
    request: DispatchRequest,
    dispatcher: AlertDispatchService = Depends(get_dispatcher),
) -> Dict[str, Any]:
    result = await dispatcher.dispatch_manual(
        zone_id=request.zone_id,
        zone_name=request.zone_name,
        severity=_parse_severity(request.severity),
        message=request.message,
        title=request.title,
        risk_score=request.risk_score,
        risk_probability=request.risk_probability,
        actions=request.recommended_actions or None,
        device_ids=request.device_ids,
    )
    return result.to_dict()


@router.post("/test", summary="Send a test alert")
async def send_test_alert(
    request: TestAlertRequest,
    dispatcher: AlertDispatchService = Depends(get_dispatcher),
) -> Dict[str, Any]:
    result = await dispatcher.send_test_alert(
        request.device_ids,
        severity=_parse_severity(request.severity),
        zone_name=request.zone_name,
        message=request.message,
    )
    return result.to_dict()


@router.post("/simulate-emergency", summary="Run a site-wide emergency drill")
async def simulate_emergency(
    request: EmergencySimulationRequest,
    dispatcher: AlertDispatchService = Depends(get_dispatcher),
) -> Dict[str, Any]:
    result = await dispatcher.simulate_emergency(
        zone_name=request.zone_name, scenario=request.scenario,
    )
    return result.to_dict()


@router.get("/channels", summary="Channel provider modes")
async def list_channels(
    providers: ChannelProviders = Depends(get_providers),
) -> Dict[str, Any]:
    return {"channels": providers.describe()}


@router.post("/{alert_id}/redispatch", summary="Re-dispatch a stored alert")
async def redispatch_alert(
    alert_id: str,
    request: Optional[RedispatchRequest] = None,
    dispatcher: AlertDispatchService = Depends(get_dispatcher),
) -> Dict[str, Any]:
    device_ids = request.device_ids if request else []
    result = await dispatcher.redispatch(alert_id, device_ids)
    return result.to_dict()


@router.get("/{alert_id}", summary="Stored alert with delivery summary")
async def get_alert(
    alert_id: str,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    alert = await store.get_alert(alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id=alert_id)
    records = await store.get_deliveries(alert_id)
    summary = DispatchSummary.from_records(records).to_dict()
    return {
        "alert": alert.to_dict(),
        "delivery_count": len(records),
        "per_channel_success": summary["per_channel_success"],
        "per_channel_failure": summary["per_channel_failure"],
    }


@router.get("/{alert_id}/deliveries", summary="Delivery records of an alert")
async def get_deliveries(
    alert_id: str,
    store: AlertStore = Depends(get_store),
) -> Dict[str, Any]:
    if await store.get_alert(alert_id) is None:
        raise NotFoundError("Alert", alert_id=alert_id)
    records = await store.get_deliveries(alert_id)
    return {
        "alert_id": alert_id,
        "total": len(records),
        "deliveries": [r.to_dict() for r in records],
    }
