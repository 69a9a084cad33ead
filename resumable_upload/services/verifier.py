"""
Content hash verification and promotion of assembled files
"""
import hashlib
import logging
import os
from pathlib import Path

from ..core.exceptions import StorageError

logger = logging.getLogger(__name__)

HASH_READ_SIZE = 65536  # 64KB


def compute_file_hash(path, algorithm: str = "md5") -> str:
    """Hex digest of a file, read in 64KB blocks"""
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(HASH_READ_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()


def digest_length(algorithm: str) -> int:
    """Number of hex characters a digest of ``algorithm`` has"""
    return hashlib.new(algorithm).digest_size * 2


class IntegrityVerifier:
    """
    Recomputes the hash of an assembled file and compares it with the claim.

    A mismatching file is deleted immediately so it can never be mistaken
    for a committed upload. Chunks are left alone for the retry.
    """

    def __init__(self, complete_dir: Path, algorithm: str = "md5"):
        self.complete_dir = Path(complete_dir)
        self.algorithm = algorithm

    def verify(self, artifact_path: Path, claimed_hash: str) -> bool:
        try:
            actual = compute_file_hash(artifact_path, self.algorithm)
        except OSError as e:
            Path(artifact_path).unlink(missing_ok=True)
            raise StorageError(f"Cannot read assembled file: {e}") from e

        if actual.lower() == claimed_hash.lower():
            logger.info(f"✅ Hash verified: {actual}")
            return True

        logger.error(f"❌ Hash mismatch: expected {claimed_hash}, got {actual}")
        Path(artifact_path).unlink(missing_ok=True)
        return False

    def promote(self, artifact_path: Path, filename: str) -> Path:
        """Move a verified file into the complete store (last writer wins)"""
        final_path = self.complete_dir / filename
        try:
            self.complete_dir.mkdir(parents=True, exist_ok=True)
            os.replace(artifact_path, final_path)
        except OSError as e:
            Path(artifact_path).unlink(missing_ok=True)
            raise StorageError(f"Failed to commit {filename}: {e}") from e
        logger.info(f"📦 Committed {final_path}")
        return final_path
