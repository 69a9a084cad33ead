"""Services module exports"""
from .hash_index import HashIndex
from .chunk_store import ChunkStore
from .assembler import Assembler
from .verifier import IntegrityVerifier, compute_file_hash
from .upload_session import (
    UploadSessionController,
    SessionState,
    SessionInfo,
    QueryResult,
    SubmitResult,
)

__all__ = [
    "HashIndex",
    "ChunkStore",
    "Assembler",
    "IntegrityVerifier",
    "compute_file_hash",
    "UploadSessionController",
    "SessionState",
    "SessionInfo",
    "QueryResult",
    "SubmitResult",
]
