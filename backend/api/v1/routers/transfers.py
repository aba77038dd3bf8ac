"""
Transfers Router — request, confirm, reject and cancel stock transfers between farms.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.deps import get_current_actor, get_transfer_service, scoped_location
from transfers.models import Actor, Priority, SettlementStep, TransferStatus
from transfers.service import TransferService

router = APIRouter(prefix="/api/v1/transfers", tags=["transfers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class TransferResponse(BaseModel):
    id: str
    tracking_number: str
    from_location_id: str
    from_location_name: str | None
    to_location_id: str
    to_location_name: str | None
    item_name: str
    quantity: int
    unit: str
    priority: Priority
    status: TransferStatus
    notes: str | None
    created_at: datetime | None
    created_by: str
    created_by_name: str | None
    confirmed_at: datetime | None
    delivered_at: datetime | None
    rejected_at: datetime | None
    cancelled_at: datetime | None
    resolved_by: str | None
    resolved_by_name: str | None
    rejection_reason: str | None
    settlement_step: SettlementStep

    model_config = {"from_attributes": True}


class TransferCreate(BaseModel):
    from_location_id: str | None = None
    to_location_id: str
    item_name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    priority: Priority = Priority.MEDIUM
    notes: str | None = None


class TransferReject(BaseModel):
    reason: str | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[TransferResponse])
async def list_transfers(
    location_id: str | None = None,
    status: TransferStatus | None = None,
    direction: str = Query("any", pattern="^(any|incoming|outgoing)$"),
    start: datetime | None = None,
    end: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """List transfers touching a location, newest first."""
    location_id = scoped_location(actor, location_id)
    history = await service.list_transfers(location_id, status, start, end, direction)
    return history[skip : skip + limit]


@router.post("/", response_model=TransferResponse, status_code=201)
async def create_transfer(
    payload: TransferCreate,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Request a transfer from a source location. Stock moves only on confirmation."""
    from_location_id = payload.from_location_id or actor.location_id
    if from_location_id is None:
        raise HTTPException(status_code=422, detail="from_location_id is required")
    return await service.create_transfer(
        actor,
        from_location_id,
        payload.to_location_id,
        payload.item_name.strip(),
        payload.quantity,
        payload.priority,
        payload.notes,
    )


@router.get("/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    record = await service.get_transfer(transfer_id)
    location_id = scoped_location(actor, None)
    if location_id is not None and location_id not in (record.from_location_id, record.to_location_id):
        raise HTTPException(status_code=404, detail="Transfer not found")
    return record


@router.post("/{transfer_id}/confirm", response_model=TransferResponse)
async def confirm_transfer(
    transfer_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Destination accepts the transfer; stock moves from source to destination."""
    return await service.confirm_transfer(actor, transfer_id)


@router.post("/{transfer_id}/reject", response_model=TransferResponse)
async def reject_transfer(
    transfer_id: str,
    payload: TransferReject | None = None,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    reason = payload.reason if payload else None
    return await service.reject_transfer(actor, transfer_id, reason)


@router.post("/{transfer_id}/cancel", response_model=TransferResponse)
async def cancel_transfer(
    transfer_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    return await service.cancel_transfer(actor, transfer_id)


@router.post("/{transfer_id}/resume-settlement", response_model=TransferResponse)
async def resume_settlement(
    transfer_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Finish the ledger side of a confirmation that stopped part way."""
    return await service.resume_settlement(actor, transfer_id)
