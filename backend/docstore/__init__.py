"""
Document store package.

Pluggable backends behind one collaborator contract:
  - memory   (tests, demos, single process)
  - sql      (async SQLAlchemy; PostgreSQL in production, SQLite locally)

Usage:
    from docstore import build_store

    store = build_store(get_settings())
    doc_id = await store.create("stocks", {"location_id": "...", "item_name": "helmet", ...})
"""

from core.config import Settings
from docstore.base import ChangeEvent, ChangeKind, DocumentStore, get_store_class, register_store
from docstore.memory import InMemoryDocumentStore
from docstore.sql import SqlDocumentStore


def build_store(settings: Settings) -> DocumentStore:
    """Instantiate the backend selected by settings.document_store_backend."""
    store_cls = get_store_class(settings.document_store_backend)
    if store_cls is SqlDocumentStore:
        return SqlDocumentStore.from_url(settings.database_url, echo=settings.database_echo)
    return store_cls()


__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "build_store",
    "get_store_class",
    "register_store",
]
