"""
Transfer Record Store — durable TransferRecords in the `stock_transfers` collection.

Only the state machine writes through this class. Tracking numbers follow the
`TRF-<epoch millis>` format; the generator never hands out the same suffix
twice within one process and the store re-draws when a number already exists.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from core.errors import NotFound
from docstore.base import DocumentStore, to_iso
from transfers.models import COLLECTION, TransferRecord

MAX_TRACKING_ATTEMPTS = 5


class TrackingNumberGenerator:
    def __init__(self, prefix: str = "TRF"):
        self.prefix = prefix
        self._last_millis = 0

    def next(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        if millis <= self._last_millis:
            millis = self._last_millis + 1
        self._last_millis = millis
        return f"{self.prefix}-{millis}"


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = to_iso(value)
        out[key] = value
    return out


class TransferRecordStore:
    def __init__(self, store: DocumentStore, tracking: TrackingNumberGenerator | None = None):
        self.store = store
        self.tracking = tracking or TrackingNumberGenerator()

    async def new_tracking_number(self) -> str:
        for _ in range(MAX_TRACKING_ATTEMPTS):
            candidate = self.tracking.next(self.store.server_timestamp())
            if not await self.store.query(COLLECTION, tracking_number=candidate):
                return candidate
        # Every draw advances the suffix, so a further draw is still distinct locally.
        return self.tracking.next(self.store.server_timestamp())

    async def insert(self, record: TransferRecord) -> TransferRecord:
        doc = record.to_document()
        record.id = await self.store.create(COLLECTION, doc)
        return record

    async def get(self, transfer_id: str) -> TransferRecord | None:
        doc = await self.store.get(COLLECTION, transfer_id)
        return TransferRecord.from_document(doc) if doc else None

    async def require(self, transfer_id: str) -> TransferRecord:
        record = await self.get(transfer_id)
        if record is None:
            raise NotFound(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
        return record

    async def update(self, record: TransferRecord, **fields: Any) -> TransferRecord:
        """Persist fields and apply them to the in-memory record."""
        if not await self.store.update(COLLECTION, record.id, _serialize(fields)):
            raise NotFound(f"Transfer {record.id} not found", transfer_id=record.id)
        for key, value in fields.items():
            setattr(record, key, value)
        return record

    async def query(self, **equals: Any) -> list[TransferRecord]:
        docs = await self.store.query(COLLECTION, **_serialize(equals))
        return [TransferRecord.from_document(d) for d in docs]
