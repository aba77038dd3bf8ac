"""
Locations Router — farms and depots that hold stock.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.deps import get_current_actor, get_transfer_service, settings
from transfers.models import Actor
from transfers.service import TransferService

router = APIRouter(prefix="/api/v1/locations", tags=["locations"])


class LocationResponse(BaseModel):
    id: str
    name: str
    created_at: datetime | None

    model_config = {"from_attributes": True}


class LocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


@router.get("/", response_model=list[LocationResponse])
async def list_locations(
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    return await service.list_locations()


@router.post("/", response_model=LocationResponse, status_code=201)
async def create_location(
    payload: LocationCreate,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    if not actor.is_privileged(settings.privileged_roles):
        raise HTTPException(status_code=403, detail="Only administrators can add locations")
    return await service.add_location(payload.name)
