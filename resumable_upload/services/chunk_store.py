"""
Filesystem chunk staging, one directory per upload session
"""
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Set

from filelock import FileLock

from ..core.exceptions import StorageError

logger = logging.getLogger(__name__)

CHUNK_SUFFIX = ".chunk"
_CHUNK_NAME = re.compile(r"^(\d+)\.chunk$")


class ChunkStore:
    """
    Chunk blobs stored as ``<chunk_dir>/<hash>/<index>.chunk``.

    The directory listing is the session state: a restart loses nothing as
    long as the chunk files survive. Writes land in a temp file first and are
    renamed into place, so a partially written chunk is never listed.
    """

    def __init__(self, chunk_dir: Path):
        self.chunk_dir = Path(chunk_dir)

    def session_dir(self, content_hash: str) -> Path:
        return self.chunk_dir / content_hash

    def chunk_path(self, content_hash: str, index: int) -> Path:
        return self.session_dir(content_hash) / f"{index}{CHUNK_SUFFIX}"

    def lock_path(self, content_hash: str) -> Path:
        return self.chunk_dir / f"{content_hash}.lock"

    def ensure_root(self) -> None:
        """Create the staging root (idempotent)"""
        try:
            self.chunk_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create chunk directory {self.chunk_dir}: {e}") from e

    def ensure_session(self, content_hash: str) -> Path:
        """Create the session directory (idempotent)"""
        session_dir = self.session_dir(content_hash)
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create session directory for {content_hash}: {e}") from e
        return session_dir

    def write_chunk(self, content_hash: str, index: int, data: bytes) -> Path:
        """
        Persist one chunk. Re-sending an index replaces the previous bytes,
        which is what a client retrying a failed transfer needs.
        """
        target = self.chunk_path(content_hash, index)
        for attempt in (1, 2):
            session_dir = self.ensure_session(content_hash)
            try:
                self._atomic_write(session_dir, target, index, data)
                break
            except FileNotFoundError:
                # Directory removed underneath us by a concurrent cleanup
                if attempt == 2:
                    raise StorageError(f"Session directory for {content_hash} vanished") from None
            except OSError as e:
                logger.error(f"❌ Failed to write chunk {index} for {content_hash}: {e}")
                raise StorageError(f"Failed to write chunk {index}: {e}") from e

        logger.debug(f"Stored chunk {index} for {content_hash} ({len(data)} bytes)")
        return target

    @staticmethod
    def _atomic_write(session_dir: Path, target: Path, index: int, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=session_dir, prefix=f".{index}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def list_received(self, content_hash: str) -> Set[int]:
        """Indices present for a session; empty if the session was never created"""
        session_dir = self.session_dir(content_hash)
        try:
            names = os.listdir(session_dir)
        except FileNotFoundError:
            return set()
        except OSError as e:
            raise StorageError(f"Cannot list chunks for {content_hash}: {e}") from e

        received = set()
        for name in names:
            match = _CHUNK_NAME.match(name)
            if match:
                received.add(int(match.group(1)))
        return received

    def has_chunk(self, content_hash: str, index: int) -> bool:
        return self.chunk_path(content_hash, index).is_file()

    def remove_session(self, content_hash: str) -> None:
        """Delete every chunk blob and the session directory"""
        session_dir = self.session_dir(content_hash)
        try:
            shutil.rmtree(session_dir)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Failed to remove session {content_hash}: {e}") from e
        logger.info(f"🧹 Removed chunk directory for {content_hash}")

    def remove_lock(self, content_hash: str) -> None:
        self.lock_path(content_hash).unlink(missing_ok=True)

    def list_sessions(self) -> List[str]:
        """Hashes of every session with a chunk directory on disk"""
        if not self.chunk_dir.exists():
            return []
        return sorted(entry.name for entry in self.chunk_dir.iterdir() if entry.is_dir())

    def last_activity(self, content_hash: str) -> Optional[float]:
        """Newest mtime among the session directory and its chunks"""
        session_dir = self.session_dir(content_hash)
        try:
            mtimes = [session_dir.stat().st_mtime]
            mtimes.extend(entry.stat().st_mtime for entry in session_dir.iterdir())
        except FileNotFoundError:
            return None
        return max(mtimes)

    def session_lock(self, content_hash: str, timeout: float) -> FileLock:
        """Lock guarding assemble -> verify -> commit for one session"""
        self.ensure_root()
        return FileLock(str(self.lock_path(content_hash)), timeout=timeout)

    def prune_locks(self, older_than: float) -> int:
        """Remove lock files left behind by sessions that no longer exist"""
        if not self.chunk_dir.exists():
            return 0
        pruned = 0
        for lock_path in self.chunk_dir.glob("*.lock"):
            content_hash = lock_path.name[: -len(".lock")]
            if self.session_dir(content_hash).exists():
                continue
            try:
                if lock_path.stat().st_mtime < older_than:
                    lock_path.unlink()
                    pruned += 1
            except FileNotFoundError:
                continue
        return pruned
