import asyncio
import logging
from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, UploadFile, status
from typing import Optional
from chunked_upload.core.errors import (
    BackendWriteError,
    ChunkSizeMismatch,
    ChunkVerificationFailed,
    ConcatenationFailed,
    FileTooLarge,
    InvalidChunkOffset,
    InvalidSessionState,
    PromotionFailed,
    SessionNotFound,
    UploadError,
    UploadIncomplete,
    VerificationFailed,
)
from chunked_upload.schemas.upload import (
    CompleteSessionRequest, CompleteSessionResponse, CompleteSessionResponseData,
    ErrorDetail, SessionStatusData, SessionStatusResponse,
)
from chunked_upload.services.upload_coordinator import ChunkedUploadCoordinator, get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS_CODES = {
    SessionNotFound: status.HTTP_404_NOT_FOUND,
    InvalidSessionState: status.HTTP_409_CONFLICT,
    InvalidChunkOffset: status.HTTP_409_CONFLICT,
    UploadIncomplete: status.HTTP_409_CONFLICT,
    ChunkSizeMismatch: status.HTTP_400_BAD_REQUEST,
    FileTooLarge: 413,
    ChunkVerificationFailed: 422,
    VerificationFailed: 422,
    BackendWriteError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConcatenationFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    PromotionFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_http_exception(error: UploadError) -> HTTPException:
    """Only the stable code leaves the service; backend detail stays in the log."""
    status_code = ERROR_STATUS_CODES.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    code = error.reason.code if isinstance(error, (ChunkVerificationFailed, VerificationFailed)) else error.code
    detail = ErrorDetail(code=code, category=error.category.value, message=error.public_message)
    return HTTPException(status_code=status_code, detail=detail.model_dump())


@router.post("/sessions", response_model=SessionStatusResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    chunk: UploadFile = File(...),
    file_name: Optional[str] = Form(None),
    total_size: Optional[int] = Form(None),
    sha256: Optional[str] = Form(None),
    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator),
):
    chunk_data = await chunk.read()
    try:
        session = await asyncio.to_thread(
            coordinator.create_session, chunk_data, total_size, file_name or chunk.filename, sha256
        )
    except UploadError as e:
        logger.error(f"Failed to create upload session: {str(e)}")
        raise to_http_exception(e)
    return SessionStatusResponse(
        message="Upload session initialized.",
        data=SessionStatusData.from_session(session),
    )

@router.put("/sessions/{session_key}", response_model=SessionStatusResponse)
async def upload_chunk(
    session_key: str,
    chunk: UploadFile = File(...),
    offset: int = Form(...),
    chunk_size: Optional[int] = Form(None),
    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator),
):
    chunk_data = await chunk.read()
    if not chunk_data:
        raise HTTPException(status_code=400, detail="Empty chunk received")
    try:
        session = await asyncio.to_thread(
            coordinator.append_chunk, session_key, chunk_data, chunk_size, offset
        )
    except UploadError as e:
        logger.error(f"Failed to append chunk at {offset} to {session_key}: {str(e)}")
        raise to_http_exception(e)
    return SessionStatusResponse(
        message="Chunk uploaded successfully.",
        data=SessionStatusData.from_session(session),
    )

@router.get("/sessions/{session_key}", response_model=SessionStatusResponse)
async def get_session_status(
    session_key: str,
    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator),
):
    try:
        session = await asyncio.to_thread(coordinator.get_chunk_status, session_key)
    except UploadError as e:
        raise to_http_exception(e)
    return SessionStatusResponse(data=SessionStatusData.from_session(session))

@router.post("/sessions/{session_key}/complete", response_model=CompleteSessionResponse)
async def complete_session(
    session_key: str,
    req: Optional[CompleteSessionRequest] = Body(None),
    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator),
):
    dest_name = req.dest_name if req else None
    try:
        handle = await asyncio.to_thread(coordinator.finalize, session_key, dest_name)
    except UploadError as e:
        logger.error(f"File upload failed for {session_key}: {str(e)}")
        raise to_http_exception(e)
    return CompleteSessionResponse(
        data=CompleteSessionResponseData(
            session_key=handle.session_key,
            location=handle.location,
            size=handle.size,
            sha256=handle.sha256,
        )
    )

@router.delete("/sessions/{session_key}")
async def abandon_session(
    session_key: str,
    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator),
):
    try:
        await asyncio.to_thread(coordinator.abandon, session_key)
    except UploadError as e:
        raise to_http_exception(e)
    return {"status": "success", "message": "Upload session and its chunks deleted."}
