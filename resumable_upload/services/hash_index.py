"""
Content hash -> filename index used for upload deduplication
"""
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.database import Base, create_session_maker
from ..core.exceptions import StorageError
from ..models import HashIndexEntry

logger = logging.getLogger(__name__)


class HashIndex:
    """
    Persistent mapping from content hash to stored filename.

    Backed by a single database table. Every mutation is an atomic upsert
    taken under one lock, so two uploads completing at the same moment can
    never drop each other's entry.

    Lookups never raise: dedup is an optimization, so a failing read is
    logged and reported as a miss.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_maker = create_session_maker(engine)
        self._write_lock = threading.Lock()

    def create_tables(self) -> None:
        """Create the index table if it doesn't exist"""
        Base.metadata.create_all(bind=self.engine)

    def lookup(self, content_hash: str) -> Optional[str]:
        """Return the filename stored for ``content_hash``, or None"""
        try:
            with self.session_maker() as session:
                return session.scalar(
                    select(HashIndexEntry.filename).where(HashIndexEntry.content_hash == content_hash)
                )
        except SQLAlchemyError as e:
            logger.error(f"❌ Hash index lookup failed for {content_hash}: {e}")
            return None

    def record(self, content_hash: str, filename: str) -> None:
        """Idempotent upsert; the last write for a hash wins"""
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        stmt = self._insert()(HashIndexEntry).values(
            content_hash=content_hash,
            filename=filename,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[HashIndexEntry.content_hash],
            set_={"filename": stmt.excluded.filename, "updated_at": stmt.excluded.updated_at},
        )
        with self._write_lock:
            try:
                with self.session_maker() as session:
                    session.execute(stmt)
                    session.commit()
            except SQLAlchemyError as e:
                logger.error(f"❌ Failed to record {content_hash} -> {filename}: {e}")
                raise StorageError(f"Hash index update failed: {e}") from e
        logger.info(f"🗂️  Indexed {content_hash} -> {filename}")

    def remove(self, content_hash: str) -> bool:
        """Drop an entry. Returns True if one existed."""
        with self._write_lock:
            try:
                with self.session_maker() as session:
                    result = session.execute(
                        delete(HashIndexEntry).where(HashIndexEntry.content_hash == content_hash)
                    )
                    session.commit()
            except SQLAlchemyError as e:
                raise StorageError(f"Hash index delete failed: {e}") from e
        return result.rowcount > 0

    def entries(self) -> Dict[str, str]:
        """Snapshot of the whole index"""
        try:
            with self.session_maker() as session:
                rows = session.execute(select(HashIndexEntry.content_hash, HashIndexEntry.filename))
                return {content_hash: filename for content_hash, filename in rows}
        except SQLAlchemyError as e:
            raise StorageError(f"Hash index read failed: {e}") from e

    def import_legacy(self, path: Path) -> int:
        """
        Merge a whole-file JSON index ({hash: filename}) into the table.

        Hashes already present keep their current filename. Returns the
        number of entries imported.
        """
        path = Path(path)
        if not path.exists():
            return 0

        try:
            mapping = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"❌ Could not read legacy hash index {path}: {e}")
            return 0
        if not isinstance(mapping, dict):
            logger.error(f"❌ Legacy hash index {path} is not a JSON object, skipping")
            return 0

        existing = self.entries()
        imported = 0
        for content_hash, filename in mapping.items():
            if not isinstance(filename, str) or content_hash.lower() in existing:
                continue
            self.record(content_hash.lower(), filename)
            imported += 1

        logger.info(f"📥 Imported {imported} legacy hash entries from {path}")
        return imported

    def _insert(self):
        if self.engine.dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert
