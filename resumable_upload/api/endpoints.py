"""
FastAPI endpoints for chunked, resumable uploads
"""
import asyncio
import logging
from functools import partial
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile

from ..core.exceptions import ParameterError, UploadError
from ..schemas import (
    AbandonResponse,
    QueryResponse,
    SessionListResponse,
    SessionSummary,
    SubmitResponse,
)
from ..services import UploadSessionController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

MISSING_PARAMETERS = "Missing required parameters"


def get_controller(request: Request) -> UploadSessionController:
    return request.app.state.controller


def _parse_int(value: Optional[str], name: str) -> int:
    if value is None or value == "":
        raise ParameterError(f"{MISSING_PARAMETERS}: {name}")
    try:
        return int(value)
    except ValueError:
        raise ParameterError(f"{MISSING_PARAMETERS}: {name} must be an integer") from None


async def _run(func, *args):
    """Run a blocking controller call off the event loop, mapping core errors to HTTP"""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, partial(func, *args))
    except UploadError as e:
        if e.status_code >= 500:
            logger.error(f"❌ {type(e).__name__}: {e.message}")
        else:
            logger.warning(f"⚠️  {type(e).__name__}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=QueryResponse, response_model_exclude_none=True)
async def query_upload(
    controller: Annotated[UploadSessionController, Depends(get_controller)],
    file_hash: Annotated[Optional[str], Query(alias="hash")] = None,
    filename: Annotated[Optional[str], Query()] = None,
    chunk_index: Annotated[Optional[str], Query(alias="chunkIndex")] = None,
):
    """
    Check upload status before sending chunks.

    - Content already stored: ``{exists: true, url}`` and the client skips the upload.
    - No ``chunkIndex``: ``{exists: false, uploadedChunks}`` so the client can resume.
    - With ``chunkIndex``: ``{exists}`` for that one chunk.
    """
    if not file_hash or not filename:
        raise HTTPException(status_code=400, detail=MISSING_PARAMETERS)

    try:
        index = None if chunk_index in (None, "") else _parse_int(chunk_index, "chunkIndex")
    except ParameterError as e:
        raise HTTPException(status_code=400, detail=e.message)

    result = await _run(controller.query, file_hash, filename, index)
    return QueryResponse(exists=result.exists, url=result.url, uploaded_chunks=result.uploaded_chunks)


@router.post("", response_model=SubmitResponse, response_model_exclude_none=True)
async def submit_chunk(
    controller: Annotated[UploadSessionController, Depends(get_controller)],
    file: Annotated[Optional[UploadFile], File(description="Chunk payload")] = None,
    file_hash: Annotated[Optional[str], Form(alias="hash")] = None,
    filename: Annotated[Optional[str], Form()] = None,
    chunk_index: Annotated[Optional[str], Form(alias="chunkIndex")] = None,
    chunks: Annotated[Optional[str], Form(description="Declared total chunk count")] = None,
):
    """
    Store one chunk. Idempotent: re-sending an index overwrites it.

    The chunk that completes the set triggers assembly and hash verification.
    A mismatch returns 400 and keeps the chunks so only the bad chunk needs resending.
    """
    if file is None or not file_hash or not filename:
        raise HTTPException(status_code=400, detail=MISSING_PARAMETERS)

    try:
        index = _parse_int(chunk_index, "chunkIndex")
        total = _parse_int(chunks, "chunks")
    except ParameterError as e:
        raise HTTPException(status_code=400, detail=e.message)

    # One byte over the limit is enough for the size check to reject it
    data = await file.read(controller.max_chunk_bytes + 1)
    result = await _run(controller.submit_chunk, file_hash, filename, index, total, data)
    return SubmitResponse(success=result.success, message=result.message, url=result.url)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(controller: Annotated[UploadSessionController, Depends(get_controller)]):
    """List in-flight upload sessions. Useful for debugging and monitoring."""
    sessions = await _run(controller.recover_sessions)
    return SessionListResponse(
        total=len(sessions),
        sessions=[
            SessionSummary(hash=s.content_hash, uploaded_chunks=s.received, last_activity=s.last_activity)
            for s in sessions
        ],
    )


@router.delete("/{file_hash}", response_model=AbandonResponse)
async def abandon_upload(
    file_hash: str,
    controller: Annotated[UploadSessionController, Depends(get_controller)],
):
    """Cancel an upload session and delete its chunks"""
    existed = await _run(controller.abandon, file_hash)
    if not existed:
        raise HTTPException(status_code=404, detail="Upload session not found")

    logger.info(f"🗑️  Cancelled upload session {file_hash}")
    return AbandonResponse(hash=file_hash.lower(), status="abandoned")
