"""
Transfer domain types.

TransferRecord is persisted in the `stock_transfers` collection and owned by
the state machine. Its lifecycle:

    pending ──confirm──▶ delivered
       │
       ├──reject───▶ rejected
       └──cancel───▶ cancelled

All three outcomes are terminal. A delivered record additionally carries a
settlement cursor recording how far the ledger side of the confirmation got.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from docstore.base import from_iso, to_iso

COLLECTION = "stock_transfers"


class TransferStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransferStatus.PENDING


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SettlementStep(str, Enum):
    """Persisted cursor of the confirm sequence, in execution order."""

    NOT_STARTED = "not_started"
    MARKED = "marked"  # record marked delivered
    CREDITED = "credited"  # destination credited
    DEBITED = "debited"  # source debited
    SETTLED = "settled"  # notifications acknowledged

    @property
    def position(self) -> int:
        return list(SettlementStep).index(self)

    def reached(self, other: "SettlementStep") -> bool:
        return self.position >= other.position


@dataclass(frozen=True)
class Actor:
    """Whoever is calling the engine: a user acting for a location, or an administrator."""

    user_id: str
    location_id: str | None = None
    name: str | None = None
    role: str = "user"

    def is_privileged(self, privileged_roles: list[str] | tuple[str, ...]) -> bool:
        return self.role in privileged_roles

    @property
    def display_name(self) -> str:
        return self.name or self.user_id


_TIMESTAMP_FIELDS = ("created_at", "confirmed_at", "delivered_at", "rejected_at", "cancelled_at")


@dataclass
class TransferRecord:
    id: str
    from_location_id: str
    to_location_id: str
    item_name: str
    quantity: int
    unit: str
    priority: Priority
    status: TransferStatus
    tracking_number: str
    created_at: datetime | None
    created_by: str
    created_by_name: str | None = None
    from_location_name: str | None = None
    to_location_name: str | None = None
    notes: str | None = None
    confirmed_at: datetime | None = None
    delivered_at: datetime | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None
    resolved_by: str | None = None
    resolved_by_name: str | None = None
    rejection_reason: str | None = None
    settlement_step: SettlementStep = field(default=SettlementStep.NOT_STARTED)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_settled(self) -> bool:
        return self.settlement_step is SettlementStep.SETTLED

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc.pop("id")
        doc["priority"] = self.priority.value
        doc["status"] = self.status.value
        doc["settlement_step"] = self.settlement_step.value
        for name in _TIMESTAMP_FIELDS:
            doc[name] = to_iso(getattr(self, name))
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "TransferRecord":
        return cls(
            id=doc["id"],
            from_location_id=doc["from_location_id"],
            to_location_id=doc["to_location_id"],
            item_name=doc["item_name"],
            quantity=int(doc["quantity"]),
            unit=doc.get("unit") or "pieces",
            priority=Priority(doc.get("priority") or Priority.MEDIUM.value),
            status=TransferStatus(doc["status"]),
            tracking_number=doc.get("tracking_number") or doc["id"][:8],
            created_at=from_iso(doc.get("created_at")),
            created_by=doc.get("created_by") or "",
            created_by_name=doc.get("created_by_name"),
            from_location_name=doc.get("from_location_name"),
            to_location_name=doc.get("to_location_name"),
            notes=doc.get("notes"),
            confirmed_at=from_iso(doc.get("confirmed_at")),
            delivered_at=from_iso(doc.get("delivered_at")),
            rejected_at=from_iso(doc.get("rejected_at")),
            cancelled_at=from_iso(doc.get("cancelled_at")),
            resolved_by=doc.get("resolved_by"),
            resolved_by_name=doc.get("resolved_by_name"),
            rejection_reason=doc.get("rejection_reason"),
            settlement_step=SettlementStep(doc.get("settlement_step") or SettlementStep.NOT_STARTED.value),
        )
