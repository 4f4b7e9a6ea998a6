"""
SQLAlchemy Database Models

The SQL document store keeps every synced document (sessions and menu
items alike) as one JSON row per document, keyed by collection and id.
The version column backs compare-and-set writes.
"""

from sqlalchemy import Column, DateTime, Integer, JSON, String
from sqlalchemy.sql import func

from tableside.database import Base


class StoredDocument(Base):
    """
    One document of a collection.

    The business fields live in ``data`` exactly as clients see them;
    the other columns are bookkeeping for the store itself.
    """
    __tablename__ = "stored_documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)

    data = Column(JSON, nullable=False, default=dict)

    # Bumped on every committed write
    version = Column(Integer, nullable=False, default=1)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<StoredDocument {self.collection}/{self.id} v{self.version}>"
