"""
Reports Router — stock summaries, transfer counts and the anomaly scan.
"""

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.deps import get_current_actor, get_transfer_service, scoped_location
from reporting.reconciliation import AnomalyKind
from transfers.models import Actor
from transfers.service import TransferService

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StockSummaryResponse(BaseModel):
    location_id: str
    location_name: str | None
    item_name: str
    quantity: int
    unit: str
    last_updated: datetime | None

    model_config = {"from_attributes": True}


class ItemTotalResponse(BaseModel):
    item_name: str
    unit: str
    quantity: int
    location_count: int

    model_config = {"from_attributes": True}


class AnomalyResponse(BaseModel):
    kind: AnomalyKind
    severity: str
    message: str
    location_id: str | None
    item_name: str | None
    transfer_id: str | None
    metadata: dict[str, Any]

    model_config = {"from_attributes": True}


class AnomalyReportResponse(BaseModel):
    generated_at: datetime
    counts: dict[str, int]
    anomalies: list[AnomalyResponse]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/summary", response_model=list[StockSummaryResponse])
async def stock_summary(
    location_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    return await service.summary_report(scoped_location(actor, location_id))


@router.get("/totals", response_model=list[ItemTotalResponse])
async def item_totals(
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Quantity per item across every location."""
    return await service.totals_report()


@router.get("/status-counts")
async def transfer_status_counts(
    location_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    return await service.status_counts(scoped_location(actor, location_id))


@router.get("/anomalies", response_model=AnomalyReportResponse)
async def anomalies(
    max_pending_hours: float | None = Query(None, gt=0),
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Advisory scan for negative, implausible or duplicated lines and stuck transfers."""
    max_age = timedelta(hours=max_pending_hours) if max_pending_hours else None
    report = await service.anomaly_report(max_pending_age=max_age)
    return AnomalyReportResponse(
        generated_at=report.generated_at,
        counts=report.counts(),
        anomalies=[AnomalyResponse.model_validate(a) for a in report.anomalies],
    )
