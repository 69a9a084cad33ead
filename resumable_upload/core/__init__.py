"""Core module exports"""
from .config import settings, Settings
from .database import Base, create_db_engine, create_session_maker
from .exceptions import (
    UploadError,
    ParameterError,
    IntegrityError,
    MissingChunkError,
    StorageError,
    SessionBusyError,
)

__all__ = [
    "settings",
    "Settings",
    "Base",
    "create_db_engine",
    "create_session_maker",
    "UploadError",
    "ParameterError",
    "IntegrityError",
    "MissingChunkError",
    "StorageError",
    "SessionBusyError",
]
