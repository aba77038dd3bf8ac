"""
Notification Emitter — incoming-transfer notices for destination locations.

Lifecycle of a notification:
  - unread        created when a transfer is requested
  - read          the destination has opened it (optional)
  - acknowledged  the related transfer left `pending` via confirm or reject

notify_incoming never deduplicates: every call writes a new notification.
Retiring notifications has two matching modes:
  - acknowledge_all_for(location, item)   by destination + item name; may
                                           also retire notices of other
                                           transfers of the same item
  - acknowledge_for_transfer(transfer_id) exact, by transfer id
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from core.errors import InvalidTransition, NotFound
from docstore.base import ChangeEvent, DocumentStore, from_iso, to_iso
from transfers.models import TransferRecord

logger = structlog.get_logger()

COLLECTION = "transfer_notifications"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ACKNOWLEDGED = "acknowledged"


@dataclass
class TransferNotification:
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
    read_at: datetime | None = None
    acknowledged_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "TransferNotification":
        return cls(
            id=doc["id"],
            transfer_id=doc.get("transfer_id") or "",
            type=doc.get("type") or "incoming_transfer",
            from_location_id=doc["from_location_id"],
            from_location_name=doc.get("from_location_name"),
            to_location_id=doc["to_location_id"],
            to_location_name=doc.get("to_location_name"),
            item_name=doc["item_name"],
            quantity=int(doc.get("quantity", 0)),
            unit=doc.get("unit") or "pieces",
            priority=doc.get("priority") or "medium",
            message=doc.get("message") or "",
            status=NotificationStatus(doc.get("status") or NotificationStatus.UNREAD.value),
            created_at=from_iso(doc.get("created_at")),
            read_at=from_iso(doc.get("read_at")),
            acknowledged_at=from_iso(doc.get("acknowledged_at")),
        )


def incoming_message(transfer: TransferRecord) -> str:
    source = transfer.from_location_name or transfer.from_location_id
    return f"Incoming transfer: {transfer.item_name} ({transfer.quantity} {transfer.unit}) from {source}"


class NotificationEmitter:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def notify_incoming(self, transfer: TransferRecord) -> TransferNotification:
        record = {
            "transfer_id": transfer.id,
            "type": "incoming_transfer",
            "from_location_id": transfer.from_location_id,
            "from_location_name": transfer.from_location_name,
            "to_location_id": transfer.to_location_id,
            "to_location_name": transfer.to_location_name,
            "item_name": transfer.item_name,
            "quantity": transfer.quantity,
            "unit": transfer.unit,
            "priority": transfer.priority.value,
            "message": incoming_message(transfer),
            "status": NotificationStatus.UNREAD.value,
            "created_at": to_iso(self.store.server_timestamp()),
        }
        doc_id = await self.store.create(COLLECTION, record)
        logger.info(
            "notification.created",
            notification_id=doc_id,
            transfer_id=transfer.id,
            to_location=transfer.to_location_id,
            item_name=transfer.item_name,
        )
        return TransferNotification.from_document({**record, "id": doc_id})

    async def _acknowledge(self, docs: list[dict[str, Any]]) -> int:
        count = 0
        for doc in docs:
            if doc.get("status") == NotificationStatus.ACKNOWLEDGED.value:
                continue
            changed = await self.store.update(
                COLLECTION,
                doc["id"],
                {
                    "status": NotificationStatus.ACKNOWLEDGED.value,
                    "acknowledged_at": to_iso(self.store.server_timestamp()),
                },
            )
            if changed:
                count += 1
        return count

    async def acknowledge_all_for(self, location_id: str, item_name: str) -> int:
        """Acknowledge every open notification to location_id about item_name."""
        docs = await self.store.query(COLLECTION, to_location_id=location_id, item_name=item_name)
        count = await self._acknowledge(docs)
        logger.info("notification.acknowledged", to_location=location_id, item_name=item_name, count=count)
        return count

    async def acknowledge_for_transfer(self, transfer_id: str) -> int:
        """Acknowledge the open notifications created for one transfer."""
        docs = await self.store.query(COLLECTION, transfer_id=transfer_id)
        count = await self._acknowledge(docs)
        logger.info("notification.acknowledged", transfer_id=transfer_id, count=count)
        return count

    async def mark_read(self, notification_id: str, location_id: str | None = None) -> TransferNotification:
        """Mark an unread notification as read. Acknowledged ones are left alone."""
        doc = await self.store.get(COLLECTION, notification_id)
        if doc is None:
            raise NotFound(f"Notification {notification_id} not found", notification_id=notification_id)
        if location_id is not None and doc["to_location_id"] != location_id:
            raise InvalidTransition(
                "Notification is addressed to another location",
                notification_id=notification_id,
            )
        if doc.get("status") != NotificationStatus.UNREAD.value:
            return TransferNotification.from_document(doc)
        changes = {"status": NotificationStatus.READ.value, "read_at": to_iso(self.store.server_timestamp())}
        await self.store.update(COLLECTION, notification_id, changes)
        return TransferNotification.from_document({**doc, **changes})

    async def list_for_location(self, location_id: str, include_acknowledged: bool = False) -> list[TransferNotification]:
        """Notifications addressed to location_id, newest first."""
        docs = await self.store.query(COLLECTION, to_location_id=location_id)
        notifications = [TransferNotification.from_document(d) for d in docs]
        if not include_acknowledged:
            notifications = [n for n in notifications if n.status is not NotificationStatus.ACKNOWLEDGED]
        return sorted(notifications, key=lambda n: n.created_at or _EPOCH, reverse=True)

    async def for_transfer(self, transfer_id: str) -> list[TransferNotification]:
        docs = await self.store.query(COLLECTION, transfer_id=transfer_id)
        return [TransferNotification.from_document(d) for d in docs]

    def watch_location(self, location_id: str) -> AsyncIterator[ChangeEvent]:
        """Live change feed of notifications addressed to location_id."""
        return self.store.watch(COLLECTION, to_location_id=location_id)
