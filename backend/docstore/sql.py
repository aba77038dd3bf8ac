"""
SQL document store — async SQLAlchemy over the single `documents` table.

Any SQLAlchemy failure (connection refused, pool timeout, lost connection)
is reported to the engine as StoreUnavailable. Each primitive runs in its own
short transaction, so each call is durable on its own and nothing spans
calls.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from core.errors import StoreUnavailable
from db.models import Document
from db.session import Base, build_engine, build_session_factory
from docstore.base import ChangeEvent, ChangeKind, DocumentStore, matches, register_store


def _parse_id(doc_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(doc_id))
    except ValueError:
        return None


@register_store
class SqlDocumentStore(DocumentStore):
    backend = "sql"

    def __init__(self, engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession] | None = None):
        super().__init__()
        self._engine = engine
        self._session_factory = session_factory or build_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlDocumentStore":
        return cls(build_engine(database_url, echo=echo))

    async def create_schema(self) -> None:
        """Create the documents table if it does not exist."""
        async with self._guard("create_schema"):
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def _guard(self, operation: str, collection: str | None = None):
        try:
            yield
        except SQLAlchemyError as exc:
            self.logger.error("docstore.sql_error", operation=operation, collection=collection, error=str(exc))
            raise StoreUnavailable(
                f"Document store unavailable during {operation}",
                operation=operation,
                collection=collection,
            ) from exc

    @staticmethod
    def _out(row: Document) -> dict[str, Any]:
        return {**(row.data or {}), "id": str(row.doc_id)}

    async def _load(self, session: AsyncSession, collection: str, doc_id: str, lock: bool = False) -> Document | None:
        parsed = _parse_id(doc_id)
        if parsed is None:
            return None
        stmt = select(Document).where(Document.doc_id == parsed, Document.collection == collection)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, collection: str, record: dict[str, Any]) -> str:
        data = {k: v for k, v in record.items() if k != "id"}
        row = Document(doc_id=uuid.uuid4(), collection=collection, data=data, version=1)
        async with self._guard("create", collection):
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        out = self._out(row)
        self._feed.publish(ChangeEvent(ChangeKind.ADDED, collection, out["id"], out))
        return out["id"]

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._guard("get", collection):
            async with self._session_factory() as session:
                row = await self._load(session, collection, doc_id)
                return self._out(row) if row is not None else None

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> bool:
        changes = {k: v for k, v in fields.items() if k != "id"}
        async with self._guard("update", collection):
            async with self._session_factory() as session:
                row = await self._load(session, collection, doc_id, lock=True)
                if row is None:
                    return False
                # Reassign so the JSON column is flagged dirty.
                row.data = {**(row.data or {}), **changes}
                row.version = (row.version or 0) + 1
                row.updated_at = datetime.utcnow()
                await session.commit()
                out = self._out(row)
        self._feed.publish(ChangeEvent(ChangeKind.MODIFIED, collection, out["id"], out))
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._guard("delete", collection):
            async with self._session_factory() as session:
                row = await self._load(session, collection, doc_id, lock=True)
                if row is None:
                    return False
                out = self._out(row)
                await session.delete(row)
                await session.commit()
        self._feed.publish(ChangeEvent(ChangeKind.REMOVED, collection, out["id"], out))
        return True

    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        # JSON path filters differ between dialects; scan the collection and filter here.
        async with self._guard("query", collection):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Document).where(Document.collection == collection).order_by(Document.created_at)
                )
                rows = result.scalars().all()
        return [out for out in (self._out(row) for row in rows) if matches(out, equals)]

    async def version_of(self, collection: str, doc_id: str) -> int | None:
        """Write counter of a document; bumped on every update."""
        async with self._guard("version_of", collection):
            async with self._session_factory() as session:
                row = await self._load(session, collection, doc_id)
                return row.version if row is not None else None

    async def close(self) -> None:
        await self._engine.dispose()
