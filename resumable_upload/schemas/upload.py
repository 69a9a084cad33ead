"""
Pydantic schemas for the upload API responses
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QueryResponse(BaseModel):
    """Dedup / resume status for a content hash"""
    model_config = ConfigDict(populate_by_name=True)

    exists: bool
    url: Optional[str] = Field(None, description="Public path of the stored file")
    uploaded_chunks: Optional[List[int]] = Field(
        None,
        alias="uploadedChunks",
        description="Chunk indices already received"
    )


class SubmitResponse(BaseModel):
    """Result of storing one chunk"""
    success: bool
    message: str
    url: Optional[str] = None


class SessionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hash: str
    uploaded_chunks: List[int] = Field(alias="uploadedChunks")
    last_activity: Optional[float] = Field(None, alias="lastActivity")


class SessionListResponse(BaseModel):
    total: int
    sessions: List[SessionSummary]


class AbandonResponse(BaseModel):
    hash: str
    status: str
