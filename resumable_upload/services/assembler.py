"""
Merge a session's chunks into one staged file
"""
import logging
import shutil
from pathlib import Path

from ..core.exceptions import MissingChunkError, StorageError
from .chunk_store import ChunkStore

logger = logging.getLogger(__name__)

STAGING_DIRNAME = ".staging"


class Assembler:
    """
    Concatenates chunks ``0..total-1`` in ascending index order.

    The order comes from the index range, never from a directory listing.
    Output goes to a staging path that is never served; only the verifier
    promotes it.
    """

    def __init__(self, chunk_store: ChunkStore, complete_dir: Path):
        self.chunk_store = chunk_store
        self.staging_dir = Path(complete_dir) / STAGING_DIRNAME

    def staging_path(self, content_hash: str, filename: str) -> Path:
        return self.staging_dir / f"{content_hash}.{filename}.part"

    def assemble(self, content_hash: str, total_chunks: int, filename: str) -> Path:
        """Write the staged artifact and return its path"""
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create staging directory: {e}") from e

        staged = self.staging_path(content_hash, filename)
        logger.info(f"🔧 Assembling {total_chunks} chunks for {content_hash} -> {staged.name}")

        total_bytes = 0
        try:
            with open(staged, "wb") as outfile:
                for index in range(total_chunks):
                    chunk_path = self.chunk_store.chunk_path(content_hash, index)
                    try:
                        infile = open(chunk_path, "rb")
                    except FileNotFoundError:
                        raise MissingChunkError(content_hash, index) from None
                    with infile:
                        shutil.copyfileobj(infile, outfile)
                        total_bytes += infile.tell()
        except MissingChunkError:
            logger.error(f"❌ Chunk missing while assembling {content_hash}, discarding staged file")
            staged.unlink(missing_ok=True)
            raise
        except OSError as e:
            logger.error(f"❌ Assembly failed for {content_hash}: {e}")
            staged.unlink(missing_ok=True)
            raise StorageError(f"Assembly failed: {e}") from e

        logger.info(f"✅ Assembled {content_hash} ({total_bytes} bytes)")
        return staged
