from sqlalchemy import Column, DateTime, Index, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON
from sqlalchemy.sql import func

from core.database import Base


class Document(Base):
    """A schemaless document in a named collection (SQL document store backend)."""
    __tablename__ = "documents"

    collection = Column(Text, primary_key=True)
    id = Column(Text, primary_key=True)
    # JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_documents_collection", "collection"),
    )
