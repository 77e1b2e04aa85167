"""Single-request compress and cut tools, open to anonymous users."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from clipit.core.firebase_client import get_optional_user
from clipit.core.uploads.exceptions import MissingField
from clipit.core.uploads.finalizer import FinalizationCoordinator
from clipit.core.uploads.models import Purpose
from clipit.dependencies import get_coordinator
from clipit.routers.uploads import ERROR_RESPONSES, read_upload
from clipit.schemas import FinalizeResponse, ProcessingParamsSchema, build_direct_request

router = APIRouter(prefix="/api", tags=["Tools"])


@router.post("/compress", response_model=FinalizeResponse, responses=ERROR_RESPONSES)
async def compress_video(
    file: Optional[UploadFile] = File(None),
    format: Optional[str] = Form(None),
    quality: Optional[int] = Form(None),
    resolution: Optional[str] = Form(None),
    fps: Optional[str] = Form(None),
    user: Dict[str, Any] = Depends(get_optional_user),
    coordinator: FinalizationCoordinator = Depends(get_coordinator),
) -> FinalizeResponse:
    """Re-encode a video; the result expires after a few hours."""
    if file is None:
        raise MissingField("file")

    params = ProcessingParamsSchema(
        format=format,
        quality=quality,
        resolution=resolution,
        fps=fps,
        thumbnail=False,
    )
    request = build_direct_request(
        owner_key=user["uid"],
        purpose=Purpose.COMPRESS,
        payload=await read_upload(file, coordinator.max_direct_bytes),
        file_name=file.filename,
        mime_type=file.content_type,
        params=params,
    )
    result = await coordinator.finalize(request)
    return FinalizeResponse.from_result(result)


@router.post("/cut", response_model=FinalizeResponse, responses=ERROR_RESPONSES)
async def cut_video(
    file: Optional[UploadFile] = File(None),
    start_time: Optional[float] = Form(None, alias="startTime"),
    end_time: Optional[float] = Form(None, alias="endTime"),
    user: Dict[str, Any] = Depends(get_optional_user),
    coordinator: FinalizationCoordinator = Depends(get_coordinator),
) -> FinalizeResponse:
    """Cut ``[startTime, endTime)`` seconds out of a video without re-encoding."""
    if file is None:
        raise MissingField("file")
    if start_time is None:
        raise MissingField("startTime")
    if end_time is None:
        raise MissingField("endTime")

    params = ProcessingParamsSchema(trim_start=start_time, trim_end=end_time, thumbnail=False)
    request = build_direct_request(
        owner_key=user["uid"],
        purpose=Purpose.TRIM,
        payload=await read_upload(file, coordinator.max_direct_bytes),
        file_name=file.filename,
        mime_type=file.content_type,
        params=params,
    )
    result = await coordinator.finalize(request)
    return FinalizeResponse.from_result(result)
