"""
FarmStock Database Models

The SQL backend stores every collection of the document store in a single
table. Each row is one JSON document tagged with its collection name.

Collections written by the engine:
  - locations               - Farms holding their own inventory ledger
  - stocks                  - Inventory lines, one per (location, item)
  - stock_transfers         - Transfer requests and their workflow state
  - transfer_notifications  - Incoming-transfer notices for destinations
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, TypeDecorator, types
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class Document(Base):
    __tablename__ = "documents"

    doc_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    collection = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_documents_collection_created", "collection", "created_at"),)
