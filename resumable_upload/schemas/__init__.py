"""Schemas module exports"""
from .upload import (
    QueryResponse,
    SubmitResponse,
    SessionSummary,
    SessionListResponse,
    AbandonResponse,
)

__all__ = [
    "QueryResponse",
    "SubmitResponse",
    "SessionSummary",
    "SessionListResponse",
    "AbandonResponse",
]
