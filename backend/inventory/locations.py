"""
Location Directory — farm master data.

Transfers move stock between locations ("farms"). The directory validates
location ids and supplies the display names that transfers and notifications
carry alongside the ids.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from core.errors import InvalidRequest, NotFound
from docstore.base import DocumentStore, from_iso, to_iso

logger = structlog.get_logger()

COLLECTION = "locations"


@dataclass
class Location:
    id: str
    name: str
    created_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Location":
        return cls(id=doc["id"], name=doc.get("name") or doc["id"], created_at=from_iso(doc.get("created_at")))


class LocationDirectory:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def add(self, name: str) -> Location:
        name = name.strip()
        if not name:
            raise InvalidRequest("Location name must not be empty")
        record = {"name": name, "created_at": to_iso(self.store.server_timestamp())}
        doc_id = await self.store.create(COLLECTION, record)
        logger.info("location.created", location_id=doc_id, name=name)
        return Location.from_document({**record, "id": doc_id})

    async def get(self, location_id: str) -> Location | None:
        doc = await self.store.get(COLLECTION, location_id)
        return Location.from_document(doc) if doc else None

    async def require(self, location_id: str) -> Location:
        location = await self.get(location_id)
        if location is None:
            raise NotFound(f"Location {location_id} not found", location_id=location_id)
        return location

    async def list(self) -> list[Location]:
        docs = await self.store.query(COLLECTION)
        return sorted((Location.from_document(d) for d in docs), key=lambda loc: loc.name)
