"""
Notifications Router — incoming-transfer notices for the caller's location.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.deps import get_current_actor, get_transfer_service, scoped_location
from notifications.emitter import NotificationStatus
from transfers.models import Actor
from transfers.service import TransferService

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: str
    transfer_id: str
    type: str
    from_location_id: str
    from_location_name: str | None
    to_location_id: str
    to_location_name: str | None
    item_name: str
    quantity: int
    unit: str
    priority: str
    message: str
    status: NotificationStatus
    created_at: datetime | None
    read_at: datetime | None
    acknowledged_at: datetime | None

    model_config = {"from_attributes": True}


@router.get("/", response_model=list[NotificationResponse])
async def list_notifications(
    location_id: str | None = None,
    include_acknowledged: bool = False,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Open notifications addressed to a location, newest first."""
    location_id = scoped_location(actor, location_id)
    if location_id is None:
        raise HTTPException(status_code=422, detail="location_id is required")
    return await service.list_notifications(location_id, include_acknowledged)


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    return await service.mark_notification_read(notification_id, scoped_location(actor, None))
