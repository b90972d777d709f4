"""Order fraud-risk endpoints: analysis, alert review, profiles, blacklist admin."""

from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from order_risk.api.dependencies import FraudEngine, get_engine
from order_risk.domains.fraud.models import (
    AlertStatus,
    BlacklistType,
    OrderContext,
    Severity,
)

router = APIRouter(prefix="/api/v1/fraud", tags=["fraud"])


class AlertReviewRequest(BaseModel):
    status: AlertStatus
    reviewed_by: str
    resolution: str | None = None


class BlacklistEntryRequest(BaseModel):
    type: BlacklistType
    value: str
    reason: str
    severity: Severity
    added_by: str
    expires_at: datetime | None = None


@router.post("/orders/analyze")
async def analyze_order(
    order: OrderContext,
    engine: FraudEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.analyze(order)
    return result.model_dump(mode="json")


@router.get("/alerts")
async def list_alerts(
    engine: FraudEngine = Depends(get_engine),  # noqa: B008
    status: AlertStatus | None = None,
    severity: Severity | None = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> dict:
    alerts = await engine.alerts.list_alerts(status=status, severity=severity, limit=limit)
    return {
        "items": [a.model_dump(mode="json") for a in alerts],
        "count": len(alerts),
        "limit": limit,
    }


@router.patch("/alerts/{alert_id}")
async def review_alert(
    alert_id: str,
    review: AlertReviewRequest,
    engine: FraudEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    alert = await engine.alerts.update_status(
        alert_id,
        review.status,
        reviewed_by=review.reviewed_by,
        resolution=review.resolution,
    )
    return alert.model_dump(mode="json")


@router.get("/profiles/{customer_id}")
async def get_risk_profile(
    customer_id: str,
    engine: FraudEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    profile = await engine.aggregator.get_risk_profile(customer_id)
    if profile is None:
        raise LookupError(f"No risk profile for customer: {customer_id}")
    return profile.model_dump(mode="json")


@router.post("/blacklist", status_code=201)
async def add_blacklist_entry(
    request: BlacklistEntryRequest,
    engine: FraudEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    entry = await engine.blacklist.add_entry(
        request.type,
        request.value,
        reason=request.reason,
        severity=request.severity,
        added_by=request.added_by,
        expires_at=request.expires_at,
    )
    return entry.model_dump(mode="json")


@router.get("/config")
async def get_config(engine: FraudEngine = Depends(get_engine)) -> dict:  # noqa: B008
    """Return the thresholds and weights the engine is currently running with."""
    return asdict(engine.config)
