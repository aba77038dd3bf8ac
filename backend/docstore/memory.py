"""
In-memory document store.

Keeps every collection in a dict of deep-copied records. Used by the test
suite, demos, and single-process deployments that do not need durability.
"""

import copy
import uuid
from typing import Any

from core.errors import StoreUnavailable
from docstore.base import ChangeEvent, ChangeKind, DocumentStore, matches, register_store


@register_store
class InMemoryDocumentStore(DocumentStore):
    backend = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._closed = False

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        if self._closed:
            raise StoreUnavailable("Document store is closed", collection=name)
        return self._collections.setdefault(name, {})

    @staticmethod
    def _out(doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return {**copy.deepcopy(data), "id": doc_id}

    async def create(self, collection: str, record: dict[str, Any]) -> str:
        docs = self._collection(collection)
        doc_id = str(uuid.uuid4())
        data = copy.deepcopy({k: v for k, v in record.items() if k != "id"})
        docs[doc_id] = data
        self._feed.publish(ChangeEvent(ChangeKind.ADDED, collection, doc_id, self._out(doc_id, data)))
        return doc_id

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return self._out(doc_id, data)

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> bool:
        docs = self._collection(collection)
        if doc_id not in docs:
            return False
        docs[doc_id].update(copy.deepcopy({k: v for k, v in fields.items() if k != "id"}))
        self._feed.publish(ChangeEvent(ChangeKind.MODIFIED, collection, doc_id, self._out(doc_id, docs[doc_id])))
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        data = self._collection(collection).pop(doc_id, None)
        if data is None:
            return False
        self._feed.publish(ChangeEvent(ChangeKind.REMOVED, collection, doc_id, self._out(doc_id, data)))
        return True

    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        return [
            self._out(doc_id, data)
            for doc_id, data in self._collection(collection).items()
            if matches(data, equals)
        ]

    async def close(self) -> None:
        self._closed = True
