"""
Inventory Ledger — quantity on hand per (location, item).

The single source of truth the transfer workflow mutates. One document in the
`stocks` collection per (location_id, item_name); item names are
case-sensitive identity keys.

Rules:
  - credit creates the line on first use, otherwise adds to it
  - debit refuses to go below zero and deletes the line when it reaches zero
  - manual edits (set_quantity) may leave a zero-quantity line in place

All mutations of one key run under a per-key asyncio.Lock, so inside one
process credits and debits of the same line are applied strictly in arrival
order. Across processes the store's last-write-wins is the only protection.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from core.errors import InsufficientStock, InvalidRequest, UnknownItem
from docstore.base import DocumentStore, from_iso, to_iso

logger = structlog.get_logger()

COLLECTION = "stocks"
DEFAULT_UNIT = "pieces"


@dataclass
class InventoryLine:
    """One item at one location."""

    id: str
    location_id: str
    item_name: str
    quantity: int
    unit: str
    last_updated: datetime | None = None
    location_name: str | None = None
    notes: str | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "InventoryLine":
        return cls(
            id=doc["id"],
            location_id=doc["location_id"],
            item_name=doc["item_name"],
            quantity=int(doc.get("quantity", 0)),
            unit=doc.get("unit") or DEFAULT_UNIT,
            last_updated=from_iso(doc.get("last_updated")),
            location_name=doc.get("location_name"),
            notes=doc.get("notes"),
        )


def _require_positive(delta: int) -> None:
    if not isinstance(delta, int) or isinstance(delta, bool) or delta <= 0:
        raise InvalidRequest(f"Quantity must be a positive integer, got {delta!r}", quantity=delta)


class InventoryLedger:
    def __init__(self, store: DocumentStore):
        self.store = store
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def _locked(self, location_id: str, item_name: str):
        """Hold the per-key lock. The lock is dropped once no caller holds or awaits it."""
        key = (location_id, item_name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    async def _find(self, location_id: str, item_name: str) -> dict[str, Any] | None:
        docs = await self.store.query(COLLECTION, location_id=location_id, item_name=item_name)
        if not docs:
            return None
        if len(docs) > 1:
            logger.warning(
                "ledger.duplicate_lines",
                location_id=location_id,
                item_name=item_name,
                line_ids=[d["id"] for d in docs],
            )
        return docs[0]

    # ── Reads ──────────────────────────────────────────────────────────────

    async def get_line(self, location_id: str, item_name: str) -> InventoryLine | None:
        doc = await self._find(location_id, item_name)
        return InventoryLine.from_document(doc) if doc else None

    async def lines(self, location_id: str | None = None) -> list[InventoryLine]:
        filters = {"location_id": location_id} if location_id else {}
        docs = await self.store.query(COLLECTION, **filters)
        return sorted(
            (InventoryLine.from_document(d) for d in docs),
            key=lambda line: (line.location_id, line.item_name),
        )

    # ── Transfer mutations ─────────────────────────────────────────────────

    async def credit(
        self,
        location_id: str,
        item_name: str,
        delta: int,
        unit: str = DEFAULT_UNIT,
        *,
        location_name: str | None = None,
        notes: str | None = None,
    ) -> InventoryLine:
        """Add delta to the line, creating it when absent."""
        _require_positive(delta)
        async with self._locked(location_id, item_name):
            now = to_iso(self.store.server_timestamp())
            doc = await self._find(location_id, item_name)
            if doc is not None:
                if doc.get("unit") and doc["unit"] != unit:
                    logger.warning(
                        "ledger.unit_mismatch",
                        location_id=location_id,
                        item_name=item_name,
                        line_unit=doc["unit"],
                        credit_unit=unit,
                    )
                changes: dict[str, Any] = {"quantity": int(doc.get("quantity", 0)) + delta, "last_updated": now}
                if notes is not None:
                    changes["notes"] = notes
                if await self.store.update(COLLECTION, doc["id"], changes):
                    line = InventoryLine.from_document({**doc, **changes})
                    logger.info("ledger.credit", location_id=location_id, item_name=item_name, delta=delta, quantity=line.quantity)
                    return line
                # Line was deleted between read and write; start a fresh one.

            record = {
                "location_id": location_id,
                "location_name": location_name,
                "item_name": item_name,
                "quantity": delta,
                "unit": unit,
                "notes": notes,
                "last_updated": now,
            }
            doc_id = await self.store.create(COLLECTION, record)
            logger.info("ledger.line_created", location_id=location_id, item_name=item_name, quantity=delta)
            return InventoryLine.from_document({**record, "id": doc_id})

    async def debit(self, location_id: str, item_name: str, delta: int) -> InventoryLine | None:
        """
        Subtract delta from the line.

        Returns the updated line, or None when the line reached zero and was
        removed. An absent line counts as zero on hand.
        """
        _require_positive(delta)
        async with self._locked(location_id, item_name):
            doc = await self._find(location_id, item_name)
            current = int(doc.get("quantity", 0)) if doc else 0
            if doc is None or delta > current:
                raise InsufficientStock(
                    f"Cannot debit {delta} of '{item_name}' at {location_id}: {current} on hand",
                    location_id=location_id,
                    item_name=item_name,
                    requested=delta,
                    available=current,
                )

            remaining = current - delta
            if remaining == 0:
                await self.store.delete(COLLECTION, doc["id"])
                logger.info("ledger.line_removed", location_id=location_id, item_name=item_name, delta=delta)
                return None

            changes = {"quantity": remaining, "last_updated": to_iso(self.store.server_timestamp())}
            if not await self.store.update(COLLECTION, doc["id"], changes):
                raise InsufficientStock(
                    f"Line for '{item_name}' at {location_id} disappeared during debit",
                    location_id=location_id,
                    item_name=item_name,
                    requested=delta,
                    available=0,
                )
            logger.info("ledger.debit", location_id=location_id, item_name=item_name, delta=delta, quantity=remaining)
            return InventoryLine.from_document({**doc, **changes})

    # ── Manual stock management ────────────────────────────────────────────

    async def add_stock(
        self,
        location_id: str,
        item_name: str,
        quantity: int,
        unit: str = DEFAULT_UNIT,
        *,
        location_name: str | None = None,
        notes: str | None = None,
    ) -> InventoryLine:
        """Record a stock addition (receipt). Same effect as a credit."""
        item_name = item_name.strip()
        if not item_name:
            raise InvalidRequest("Item name must not be empty")
        return await self.credit(location_id, item_name, quantity, unit, location_name=location_name, notes=notes)

    async def set_quantity(
        self,
        location_id: str,
        item_name: str,
        quantity: int,
        notes: str | None = None,
    ) -> InventoryLine:
        """Overwrite the quantity of an existing line. Zero is kept, not deleted."""
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise InvalidRequest(f"Quantity must be a non-negative integer, got {quantity!r}", quantity=quantity)
        async with self._locked(location_id, item_name):
            doc = await self._find(location_id, item_name)
            if doc is None:
                raise UnknownItem(
                    f"No stock of '{item_name}' at {location_id}",
                    location_id=location_id,
                    item_name=item_name,
                )
            changes: dict[str, Any] = {"quantity": quantity, "last_updated": to_iso(self.store.server_timestamp())}
            if notes is not None:
                changes["notes"] = notes
            if not await self.store.update(COLLECTION, doc["id"], changes):
                raise UnknownItem(
                    f"No stock of '{item_name}' at {location_id}",
                    location_id=location_id,
                    item_name=item_name,
                )
            logger.info("ledger.quantity_set", location_id=location_id, item_name=item_name, quantity=quantity)
            return InventoryLine.from_document({**doc, **changes})

    async def remove_line(self, location_id: str, item_name: str) -> bool:
        async with self._locked(location_id, item_name):
            doc = await self._find(location_id, item_name)
            if doc is None:
                return False
            removed = await self.store.delete(COLLECTION, doc["id"])
        if removed:
            logger.info("ledger.line_deleted", location_id=location_id, item_name=item_name)
        return removed
