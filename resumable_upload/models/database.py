"""Database models for the content hash index."""
from datetime import datetime

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from ..core.database import Base


class HashIndexEntry(Base):
    """
    Maps a verified content hash to the filename it was committed under.

    A row exists only after the assembled file matched its hash, so a hit
    means the client can skip the upload entirely.
    """

    __tablename__ = "hash_index"

    content_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<HashIndexEntry(content_hash={self.content_hash}, filename={self.filename})>"
