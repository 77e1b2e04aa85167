from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from clipit.config import logger
from clipit.core.firebase_client import get_current_user, get_optional_user
from clipit.core.security import ValidationError, validate_session_id
from clipit.core.uploads.exceptions import FinalizationInProgress, InvalidParameters, MissingField
from clipit.core.uploads.finalizer import FinalizationCoordinator
from clipit.core.uploads.models import ChunkSubmission, Purpose, SessionKey
from clipit.core.uploads.session import ChunkedUploadSession
from clipit.dependencies import get_coordinator, get_upload_session
from clipit.schemas import (
    AbandonUploadResponse,
    ChunkUploadResponse,
    ErrorResponse,
    FinalizeChunksRequest,
    FinalizeResponse,
    ProcessingParamsSchema,
    build_direct_request,
    parse_purpose,
)

router = APIRouter(prefix="/api", tags=["Uploads"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


async def read_upload(upload: UploadFile, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes; a longer body is rejected as oversized."""
    return await upload.read(limit + 1)


@router.post("/clips/chunk-upload", response_model=ChunkUploadResponse, responses=ERROR_RESPONSES)
async def upload_chunk(
    chunk: Optional[UploadFile] = File(None),
    index: Optional[int] = Form(None),
    total_chunks: Optional[int] = Form(None, alias="totalChunks"),
    session_id: Optional[str] = Form(None, alias="sessionId"),
    file_name: Optional[str] = Form(None, alias="fileName"),
    mime_type: Optional[str] = Form(None, alias="mimeType"),
    purpose: Optional[str] = Form(None),
    collection_id: Optional[str] = Form(None, alias="collectionId"),
    user: Dict[str, Any] = Depends(get_optional_user),
    session: ChunkedUploadSession = Depends(get_upload_session),
) -> ChunkUploadResponse:
    """Store one chunk of a chunked upload."""
    if chunk is None:
        raise MissingField("chunk")
    if index is None:
        raise MissingField("index")

    submission = ChunkSubmission(
        session_id=session_id or "",
        index=index,
        payload=await read_upload(chunk, session.max_chunk_bytes),
        file_name=file_name or "",
        mime_type=mime_type or "",
        purpose=parse_purpose(purpose),
        total_chunks=total_chunks,
        collection_id=collection_id or None,
    )
    receipt = await session.submit_chunk(user["uid"], submission)
    return ChunkUploadResponse(
        accepted=receipt.accepted,
        ready=receipt.is_final,
        index=receipt.index,
        session_id=receipt.session_id,
        total_chunks=receipt.total_chunks,
    )


@router.post("/clips/finalize-chunks", response_model=FinalizeResponse, responses=ERROR_RESPONSES)
async def finalize_chunks(
    payload: FinalizeChunksRequest,
    user: Dict[str, Any] = Depends(get_optional_user),
    coordinator: FinalizationCoordinator = Depends(get_coordinator),
) -> FinalizeResponse:
    """Reassemble a chunked upload and store the resulting artifact."""
    request = payload.to_request(owner_key=user["uid"])
    result = await coordinator.finalize(request)
    return FinalizeResponse.from_result(result)


@router.delete("/uploads/{session_id}", response_model=AbandonUploadResponse, responses=ERROR_RESPONSES)
async def abandon_upload(
    session_id: str,
    user: Dict[str, Any] = Depends(get_optional_user),
    session: ChunkedUploadSession = Depends(get_upload_session),
    coordinator: FinalizationCoordinator = Depends(get_coordinator),
) -> AbandonUploadResponse:
    """Discard every chunk uploaded so far for a session."""
    try:
        session_id = validate_session_id(session_id)
    except ValidationError as e:
        raise InvalidParameters(e.message, details={"field": "sessionId"})

    key = SessionKey(user["uid"], session_id)
    if coordinator.is_active(key):
        raise FinalizationInProgress("This upload is being finalized", details={"session_id": session_id})

    removed = await session.abandon(key)
    return AbandonUploadResponse(session_id=session_id, chunks_deleted=removed)


@router.post("/clips/upload", response_model=FinalizeResponse, responses=ERROR_RESPONSES)
async def upload_clip(
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    collection_id: Optional[str] = Form(None, alias="collectionId"),
    user: Dict[str, Any] = Depends(get_current_user),
    coordinator: FinalizationCoordinator = Depends(get_coordinator),
) -> FinalizeResponse:
    """Share a clip sent in a single request."""
    if file is None:
        raise MissingField("file")

    request = build_direct_request(
        owner_key=user["uid"],
        purpose=Purpose.CLIP,
        payload=await read_upload(file, coordinator.max_direct_bytes),
        file_name=file.filename,
        mime_type=file.content_type,
        params=ProcessingParamsSchema(),
        title=title,
        description=description,
        collection_id=collection_id,
    )
    result = await coordinator.finalize(request)
    logger.info("Clip %s shared to %s by %s", result.artifact_id, collection_id, user["uid"])
    return FinalizeResponse.from_result(result)
