"""
Inventory Router — per-location stock lines.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from api.deps import get_current_actor, get_transfer_service, scoped_location
from inventory.ledger import DEFAULT_UNIT
from transfers.models import Actor
from transfers.service import TransferService

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class InventoryLineResponse(BaseModel):
    id: str
    location_id: str
    location_name: str | None
    item_name: str
    quantity: int
    unit: str
    last_updated: datetime | None
    notes: str | None

    model_config = {"from_attributes": True}


class StockAdd(BaseModel):
    location_id: str | None = None
    item_name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit: str = DEFAULT_UNIT
    notes: str | None = None


class StockSet(BaseModel):
    quantity: int = Field(ge=0)
    notes: str | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[InventoryLineResponse])
async def list_inventory(
    location_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    return await service.get_inventory(scoped_location(actor, location_id))


@router.post("/", response_model=InventoryLineResponse, status_code=201)
async def add_stock(
    payload: StockAdd,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Receive stock at a location, merging into an existing line of the same item."""
    location_id = scoped_location(actor, payload.location_id)
    if location_id is None:
        raise HTTPException(status_code=422, detail="location_id is required")
    return await service.add_stock(location_id, payload.item_name, payload.quantity, payload.unit, payload.notes)


@router.put("/{location_id}/{item_name}", response_model=InventoryLineResponse)
async def set_stock_quantity(
    location_id: str,
    item_name: str,
    payload: StockSet,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Overwrite the quantity of an existing line (stock count correction)."""
    location_id = scoped_location(actor, location_id)
    return await service.set_stock_quantity(location_id, item_name, payload.quantity, payload.notes)


@router.delete("/{location_id}/{item_name}", status_code=204)
async def remove_stock(
    location_id: str,
    item_name: str,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    location_id = scoped_location(actor, location_id)
    if not await service.remove_stock(location_id, item_name):
        raise HTTPException(status_code=404, detail="Inventory line not found")
    return Response(status_code=204)
