"""
Document Store — Abstract Base Class

The transfer engine never talks to a database directly. Everything it
persists goes through this collaborator contract:

    create(collection, record)       -> generated id
    get(collection, id)              -> record | None
    update(collection, id, fields)   -> success
    delete(collection, id)           -> success
    query(collection, **equals)      -> list of records
    watch(collection, **equals)      -> live sequence of ChangeEvent
    server_timestamp()               -> strictly increasing datetime

Records are plain JSON-compatible dicts. Returned records always carry their
id under the "id" key. Queries only support equality filters; ordering and
any further filtering are the caller's job.

Each call is atomic for the single document it touches and nothing more.
Concurrent writers to the same document are last-write-wins.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


# ── Change events ─────────────────────────────────────────────────────────


class ChangeKind(str, Enum):
    """What happened to a document."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass
class ChangeEvent:
    """One change delivered to a watcher."""

    kind: ChangeKind
    collection: str
    doc_id: str
    data: dict[str, Any]


def matches(record: dict[str, Any], equals: dict[str, Any]) -> bool:
    """Equality-filter predicate shared by every store implementation."""
    return all(record.get(key) == value for key, value in equals.items())


def to_iso(value: datetime | None) -> str | None:
    """Serialize a timestamp for storage inside a document."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class _Subscription:
    collection: str
    equals: dict[str, Any]
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)


class ChangeFeed:
    """In-process fan-out of change events to watchers."""

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def subscribe(self, collection: str, equals: dict[str, Any]) -> _Subscription:
        subscription = _Subscription(collection=collection, equals=dict(equals))
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: _Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.collection == event.collection and matches(event.data, subscription.equals):
                subscription.queue.put_nowait(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


# ── Abstract store ────────────────────────────────────────────────────────


class DocumentStore(ABC):
    """
    Base class for document store backends.

    Subclasses implement the five CRUD/query primitives. Watching and
    server timestamps are shared: every successful write must be reported
    through self._feed.publish() so watchers see it.
    """

    backend: str = ""

    def __init__(self) -> None:
        self._feed = ChangeFeed()
        self._last_timestamp: datetime | None = None
        self.logger = logger.bind(store=self.backend)

    @abstractmethod
    async def create(self, collection: str, record: dict[str, Any]) -> str:
        """Persist a new document and return its generated id."""
        ...

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch one document, or None when it does not exist."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> bool:
        """Merge fields into an existing document. False when it does not exist."""
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Remove a document. False when it did not exist."""
        ...

    @abstractmethod
    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        """Return every document whose fields equal the given values."""
        ...

    async def close(self) -> None:
        """Release backend resources."""

    async def watch(self, collection: str, **equals: Any) -> AsyncIterator[ChangeEvent]:
        """
        Yield the current matching documents as ADDED events, then every
        later change until the consumer stops iterating.
        """
        subscription = self._feed.subscribe(collection, equals)
        try:
            for record in await self.query(collection, **equals):
                yield ChangeEvent(ChangeKind.ADDED, collection, record["id"], record)
            while True:
                yield await subscription.queue.get()
        finally:
            self._feed.unsubscribe(subscription)

    def server_timestamp(self) -> datetime:
        """Current UTC time, bumped by a microsecond when the clock has not advanced."""
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now


# ── Store registry ────────────────────────────────────────────────────────

_STORE_REGISTRY: dict[str, type[DocumentStore]] = {}


def register_store(store_cls: type[DocumentStore]):
    """Decorator: register a store class under its backend name."""
    _STORE_REGISTRY[store_cls.backend] = store_cls
    return store_cls


def get_store_class(backend: str) -> type[DocumentStore]:
    """Factory lookup: return the store class registered for a backend name."""
    store_cls = _STORE_REGISTRY.get(backend)
    if store_cls is None:
        raise ValueError(f"No document store registered for backend: {backend}")
    return store_cls
