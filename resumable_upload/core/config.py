"""
Configuration settings for the upload service
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Settings:
    """Application settings"""

    def __init__(self, upload_dir: Optional[str] = None, **overrides):
        # Storage layout
        self.UPLOAD_DIR: Path = Path(upload_dir or os.getenv("UPLOAD_DIR", "./files")).resolve()
        self.CHUNK_DIR: Path = Path(os.getenv("CHUNK_DIR", str(self.UPLOAD_DIR / "chunks")))
        self.COMPLETE_DIR: Path = Path(os.getenv("COMPLETE_DIR", str(self.UPLOAD_DIR / "complete")))
        self.LEGACY_HASH_FILE: Path = Path(
            os.getenv("LEGACY_HASH_FILE", str(self.UPLOAD_DIR / "hashes.json"))
        )

        # Hash index database
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL",
            f"sqlite:///{self.UPLOAD_DIR / 'hashes.db'}"
        )

        # Content hashing (must match the client)
        self.HASH_ALGORITHM: str = os.getenv("HASH_ALGORITHM", "md5").lower()

        # Public addressing of completed files
        self.PUBLIC_URL_PREFIX: str = os.getenv("PUBLIC_URL_PREFIX", "/files/complete").rstrip("/")

        # Limits
        self.MAX_CHUNK_BYTES: int = _env_int("MAX_CHUNK_BYTES", 10 * 1024 * 1024)
        self.MAX_TOTAL_CHUNKS: int = _env_int("MAX_TOTAL_CHUNKS", 10000)
        self.SESSION_TTL_SECONDS: int = _env_int("SESSION_TTL_SECONDS", 24 * 3600)
        self.LOCK_TIMEOUT_SECONDS: float = float(os.getenv("LOCK_TIMEOUT_SECONDS", "30"))

        # Server
        self.SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
        self.SERVER_PORT: int = _env_int("SERVER_PORT", 8000)

        # Logging
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        # Application
        self.APP_TITLE: str = "Resumable Upload Service"
        self.APP_DESCRIPTION: str = "Chunked, resumable file uploads with hash verification and deduplication"
        self.APP_VERSION: str = "1.0.0"

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)


settings = Settings()
