"""
Upload session orchestration: chunk arrival, completion, assembly, commit

Session state per content hash:

    EMPTY --first chunk--> ACCUMULATING --all indices present--> ASSEMBLING
    ASSEMBLING --hash verified--> COMMITTED   (chunks removed, hash indexed)
    ASSEMBLING --hash mismatch--> ACCUMULATING (staged file removed, chunks kept)
    any --abandon / idle sweep--> ABANDONED    (chunks removed)

Nothing but the chunk files is persisted for a session, so the state after a
restart is whatever ``recover_sessions`` finds on disk.
"""
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set
from urllib.parse import quote

from filelock import Timeout

from ..core.config import Settings
from ..core.database import create_db_engine
from ..core.exceptions import (
    IntegrityError,
    ParameterError,
    SessionBusyError,
    StorageError,
)
from .assembler import STAGING_DIRNAME, Assembler
from .chunk_store import ChunkStore
from .hash_index import HashIndex
from .verifier import IntegrityVerifier, digest_length

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    ASSEMBLING = "assembling"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


@dataclass
class QueryResult:
    exists: bool
    url: Optional[str] = None
    uploaded_chunks: Optional[List[int]] = None


@dataclass
class SubmitResult:
    success: bool
    message: str
    url: Optional[str] = None
    uploaded: int = 0
    total: int = 0


@dataclass
class SessionInfo:
    content_hash: str
    received: List[int] = field(default_factory=list)
    last_activity: Optional[float] = None


class UploadSessionController:
    """
    The only writer to the chunk store and the hash index.

    Chunk writes for different indices run concurrently. Assembly of a
    session runs under that session's file lock, so two requests that both
    see the last chunk arrive cannot assemble or index twice.
    """

    def __init__(
        self,
        hash_index: HashIndex,
        chunk_store: ChunkStore,
        assembler: Assembler,
        verifier: IntegrityVerifier,
        public_url_prefix: str = "/files/complete",
        max_chunk_bytes: int = 10 * 1024 * 1024,
        max_total_chunks: int = 10000,
        session_ttl_seconds: int = 24 * 3600,
        lock_timeout_seconds: float = 30.0,
    ):
        self.hash_index = hash_index
        self.chunk_store = chunk_store
        self.assembler = assembler
        self.verifier = verifier
        self.public_url_prefix = public_url_prefix.rstrip("/")
        self.max_chunk_bytes = max_chunk_bytes
        self.max_total_chunks = max_total_chunks
        self.session_ttl_seconds = session_ttl_seconds
        self.lock_timeout_seconds = lock_timeout_seconds

        self._hash_pattern = re.compile(rf"^[0-9a-f]{{{digest_length(verifier.algorithm)}}}$")
        self._assembling: Set[str] = set()
        self._assembling_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadSessionController":
        """Wire up the full component stack from settings"""
        settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        hash_index = HashIndex(create_db_engine(settings.DATABASE_URL))
        hash_index.create_tables()
        chunk_store = ChunkStore(settings.CHUNK_DIR)
        return cls(
            hash_index=hash_index,
            chunk_store=chunk_store,
            assembler=Assembler(chunk_store, settings.COMPLETE_DIR),
            verifier=IntegrityVerifier(settings.COMPLETE_DIR, settings.HASH_ALGORITHM),
            public_url_prefix=settings.PUBLIC_URL_PREFIX,
            max_chunk_bytes=settings.MAX_CHUNK_BYTES,
            max_total_chunks=settings.MAX_TOTAL_CHUNKS,
            session_ttl_seconds=settings.SESSION_TTL_SECONDS,
            lock_timeout_seconds=settings.LOCK_TIMEOUT_SECONDS,
        )

    # ==================== Validation ====================

    def normalize_hash(self, content_hash: Optional[str]) -> str:
        if not content_hash:
            raise ParameterError("Missing required parameters: hash")
        normalized = content_hash.strip().lower()
        if not self._hash_pattern.match(normalized):
            raise ParameterError(
                f"Invalid hash: expected a {self.verifier.algorithm} hex digest"
            )
        return normalized

    @staticmethod
    def validate_filename(filename: Optional[str]) -> str:
        if not filename:
            raise ParameterError("Missing required parameters: filename")
        if "/" in filename or "\\" in filename or filename in (".", "..") or "\x00" in filename:
            raise ParameterError(f"Invalid filename: {filename!r}")
        if filename.startswith(STAGING_DIRNAME):
            raise ParameterError(f"Reserved filename: {filename!r}")
        return filename

    def _validate_chunk(self, index: int, total: int, data: bytes) -> None:
        if total < 1:
            raise ParameterError("Total chunk count must be positive")
        if total > self.max_total_chunks:
            raise ParameterError(f"Total chunk count exceeds limit of {self.max_total_chunks}")
        if index < 0 or index >= total:
            raise ParameterError(f"Invalid chunk index {index}. Must be between 0 and {total - 1}")
        if not data:
            raise ParameterError("Chunk payload is empty")
        if len(data) > self.max_chunk_bytes:
            raise ParameterError(
                f"Chunk exceeds max size ({len(data)} > {self.max_chunk_bytes} bytes)"
            )

    # ==================== Dedup ====================

    def public_url(self, filename: str) -> str:
        return f"{self.public_url_prefix}/{quote(filename)}"

    def existing_url(self, content_hash: str) -> Optional[str]:
        """Public URL of an already committed copy of this content, if any"""
        filename = self.hash_index.lookup(content_hash)
        if filename is None:
            return None
        if not (self.verifier.complete_dir / filename).is_file():
            logger.warning(f"⚠️  Stale index entry {content_hash} -> {filename}: file is gone, dropping it")
            try:
                self.hash_index.remove(content_hash)
            except StorageError as e:
                logger.error(f"❌ Could not drop stale index entry {content_hash}: {e}")
            return None
        return self.public_url(filename)

    # ==================== Query path ====================

    def query(self, content_hash: str, filename: str, chunk_index: Optional[int] = None) -> QueryResult:
        content_hash = self.normalize_hash(content_hash)
        self.validate_filename(filename)
        if chunk_index is not None and chunk_index < 0:
            raise ParameterError(f"Invalid chunk index {chunk_index}")

        url = self.existing_url(content_hash)
        if url:
            logger.info(f"⚡ Instant upload: {content_hash} already stored at {url}")
            return QueryResult(exists=True, url=url)

        self.chunk_store.ensure_root()
        if chunk_index is None:
            received = sorted(self.chunk_store.list_received(content_hash))
            return QueryResult(exists=False, uploaded_chunks=received)

        return QueryResult(exists=self.chunk_store.has_chunk(content_hash, chunk_index))

    # ==================== Submit path ====================

    def submit_chunk(
        self,
        content_hash: str,
        filename: str,
        index: int,
        total: int,
        data: bytes,
    ) -> SubmitResult:
        content_hash = self.normalize_hash(content_hash)
        self.validate_filename(filename)
        self._validate_chunk(index, total, data)

        url = self.existing_url(content_hash)
        if url:
            logger.info(f"⚡ Chunk {index} for {content_hash} skipped, content already stored")
            return SubmitResult(success=True, message="File already exists", url=url, uploaded=total, total=total)

        self.chunk_store.ensure_root()
        self.chunk_store.write_chunk(content_hash, index, data)

        expected = set(range(total))
        received = self.chunk_store.list_received(content_hash) & expected
        logger.info(f"📥 Chunk {index + 1}/{total} stored for {content_hash} ({len(received)}/{total} received)")

        if received != expected:
            # A concurrent request may have committed this content meanwhile
            url = self.existing_url(content_hash)
            if url:
                return self._already_committed(content_hash, url, total)
            return self._partial(index, len(received), total)

        return self._complete(content_hash, filename, total, index)

    def _partial(self, index: int, count: int, total: int) -> SubmitResult:
        return SubmitResult(
            success=True,
            message=f"Chunk {index + 1} of {total} stored, {count}/{total} uploaded",
            uploaded=count,
            total=total,
        )

    def _complete(self, content_hash: str, filename: str, total: int, index: int) -> SubmitResult:
        lock = self.chunk_store.session_lock(content_hash, self.lock_timeout_seconds)
        try:
            lock.acquire()
        except Timeout:
            raise SessionBusyError(f"Upload {content_hash} is being assembled, retry later") from None

        try:
            result = self._complete_locked(content_hash, filename, total, index)
        finally:
            lock.release()

        if result.url:
            # Every lock holder checks the index first, so a holder of the
            # unlinked file can only observe the commit
            self.chunk_store.remove_lock(content_hash)
        return result

    def _complete_locked(self, content_hash: str, filename: str, total: int, index: int) -> SubmitResult:
        # Another request may have committed while we waited for the lock
        url = self.existing_url(content_hash)
        if url:
            return self._already_committed(content_hash, url, total)

        expected = set(range(total))
        received = self.chunk_store.list_received(content_hash) & expected
        if received != expected:
            return self._partial(index, len(received), total)

        self._set_assembling(content_hash, True)
        try:
            return self._assemble_and_commit(content_hash, filename, total)
        finally:
            self._set_assembling(content_hash, False)

    def _assemble_and_commit(self, content_hash: str, filename: str, total: int) -> SubmitResult:
        self._transition(content_hash, SessionState.ACCUMULATING, SessionState.ASSEMBLING)
        staged = self.assembler.assemble(content_hash, total, filename)

        if not self.verifier.verify(staged, content_hash):
            self._transition(content_hash, SessionState.ASSEMBLING, SessionState.ACCUMULATING)
            raise IntegrityError("File hash mismatch, upload failed", expected=content_hash)

        self.verifier.promote(staged, filename)
        self.hash_index.record(content_hash, filename)
        self._transition(content_hash, SessionState.ASSEMBLING, SessionState.COMMITTED)
        self._discard_chunks(content_hash)

        return SubmitResult(
            success=True,
            message="File uploaded successfully",
            url=self.public_url(filename),
            uploaded=total,
            total=total,
        )

    def _already_committed(self, content_hash: str, url: str, total: int) -> SubmitResult:
        self._discard_chunks(content_hash)
        return SubmitResult(
            success=True, message="File uploaded successfully", url=url, uploaded=total, total=total
        )

    def _discard_chunks(self, content_hash: str) -> None:
        """Remove chunks of committed content; leftovers are swept later"""
        try:
            self.chunk_store.remove_session(content_hash)
        except StorageError as e:
            logger.warning(f"⚠️  Could not remove chunks of committed {content_hash}: {e}")

    # ==================== Lifecycle ====================

    def session_state(self, content_hash: str) -> SessionState:
        content_hash = self.normalize_hash(content_hash)
        with self._assembling_lock:
            if content_hash in self._assembling:
                return SessionState.ASSEMBLING
        if self.existing_url(content_hash):
            return SessionState.COMMITTED
        if self.chunk_store.list_received(content_hash):
            return SessionState.ACCUMULATING
        return SessionState.EMPTY

    def recover_sessions(self) -> List[SessionInfo]:
        """Rebuild the in-flight session list from the chunk directory"""
        self.chunk_store.ensure_root()
        sessions = []
        for content_hash in self.chunk_store.list_sessions():
            info = SessionInfo(
                content_hash=content_hash,
                received=sorted(self.chunk_store.list_received(content_hash)),
                last_activity=self.chunk_store.last_activity(content_hash),
            )
            sessions.append(info)
            logger.info(f"♻️  Recovered session {content_hash} with {len(info.received)} chunk(s)")
        return sessions

    def abandon(self, content_hash: str) -> bool:
        """Drop a session and its chunks. Returns False if there was none."""
        content_hash = self.normalize_hash(content_hash)
        lock = self.chunk_store.session_lock(content_hash, self.lock_timeout_seconds)
        try:
            lock.acquire()
        except Timeout:
            raise SessionBusyError(f"Upload {content_hash} is being assembled, retry later") from None
        try:
            existed = self.chunk_store.session_dir(content_hash).exists()
            self.chunk_store.remove_session(content_hash)
        finally:
            lock.release()
        if existed:
            self._transition(content_hash, SessionState.ACCUMULATING, SessionState.ABANDONED)
        return existed

    def sweep_abandoned(self, max_age: Optional[float] = None, now: Optional[float] = None) -> List[str]:
        """Abandon every session idle for longer than ``max_age`` seconds"""
        max_age = self.session_ttl_seconds if max_age is None else max_age
        now = time.time() if now is None else now

        abandoned = []
        for content_hash in self.chunk_store.list_sessions():
            last_activity = self.chunk_store.last_activity(content_hash)
            if last_activity is None or now - last_activity <= max_age:
                continue

            lock = self.chunk_store.session_lock(content_hash, timeout=0)
            try:
                lock.acquire()
            except Timeout:
                logger.info(f"⏭️  Skipping sweep of {content_hash}, assembly in progress")
                continue
            try:
                self.chunk_store.remove_session(content_hash)
            finally:
                lock.release()
            self._transition(content_hash, SessionState.ACCUMULATING, SessionState.ABANDONED)
            abandoned.append(content_hash)

        self.chunk_store.prune_locks(older_than=now - max_age)
        if abandoned:
            logger.info(f"🧹 Swept {len(abandoned)} abandoned session(s)")
        return abandoned

    def _set_assembling(self, content_hash: str, active: bool) -> None:
        with self._assembling_lock:
            if active:
                self._assembling.add(content_hash)
            else:
                self._assembling.discard(content_hash)

    @staticmethod
    def _transition(content_hash: str, source: SessionState, target: SessionState) -> None:
        logger.info(f"🔀 Session {content_hash}: {source.value} -> {target.value}")
