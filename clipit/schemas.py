"""
Pydantic models for request/response validation.

Wire format is camelCase; Python attributes are snake_case. Request models
keep required-looking fields optional so that a missing field surfaces as a
``MissingField`` upload error (400) naming the field, rather than a generic
validation error.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clipit.core.security import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    ValidationError,
    validate_description,
    validate_file_name,
    validate_mime_type,
    validate_title,
)
from clipit.core.uploads.exceptions import InvalidParameters, MissingField
from clipit.core.uploads.models import (
    ChunkedRequest,
    DirectRequest,
    FinalizeResult,
    ProcessingParams,
    Purpose,
    TrimRange,
)

_RESOLUTION = re.compile(r"^(\d{2,4})p?$", re.IGNORECASE)
_ORIGINAL = {"", "original", "source"}


# -----------------------------------------------------------------------------
# Base Models
# -----------------------------------------------------------------------------

class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        str_min_length=0,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# -----------------------------------------------------------------------------
# Field parsing shared by JSON and multipart requests
# -----------------------------------------------------------------------------

def parse_purpose(value: Optional[str]) -> Purpose:
    if value is None or value == "":
        raise MissingField("purpose")
    if isinstance(value, Purpose):
        return value
    try:
        return Purpose(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in Purpose)
        raise InvalidParameters(f"Invalid purpose. Allowed: {allowed}", details={"purpose": value})


def parse_resolution(value: Union[str, int, None]) -> Optional[int]:
    """``"original"``/empty -> None; ``720``, ``"720"``, ``"720p"`` -> 720."""
    if value is None or isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower() in _ORIGINAL:
        return None
    match = _RESOLUTION.match(text)
    if not match:
        raise InvalidParameters("Invalid resolution", details={"resolution": value})
    return int(match.group(1))


def parse_fps(value: Union[str, float, None]) -> Optional[float]:
    if value is None or isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    if text.lower() in _ORIGINAL:
        return None
    try:
        return float(text)
    except ValueError:
        raise InvalidParameters("Invalid frame rate", details={"fps": value})


def clean_file_name(value: Optional[str]) -> str:
    if not value:
        raise MissingField("fileName")
    try:
        return validate_file_name(value)
    except ValidationError as e:
        raise InvalidParameters(e.message, details={"field": "fileName"})


def clean_mime_type(value: Optional[str]) -> str:
    if not value:
        raise MissingField("mimeType")
    try:
        return validate_mime_type(value)
    except ValidationError as e:
        raise InvalidParameters(e.message, details={"field": "mimeType"})


# -----------------------------------------------------------------------------
# Upload Requests
# -----------------------------------------------------------------------------

class ProcessingParamsSchema(BaseSchema):
    """Transcode options as sent by clients."""
    format: Optional[str] = Field(default=None, max_length=10, description="mp4, webm or gif")
    quality: Optional[int] = Field(default=None, description="0-100, higher is better")
    resolution: Optional[Union[int, str]] = Field(default=None, description="Target height or 'original'")
    fps: Optional[Union[float, str]] = Field(default=None, description="Target frame rate or 'original'")
    trim_start: Optional[float] = Field(default=None, description="Trim start in seconds")
    trim_end: Optional[float] = Field(default=None, description="Trim end in seconds")
    thumbnail: bool = True
    thumbnail_offset: Optional[float] = Field(default=None, ge=0)

    def to_params(self) -> ProcessingParams:
        """
        Build domain parameters.

        Raises:
            InvalidParameters: Malformed values, or an inverted trim range.
        """
        trim = None
        if self.trim_start is not None or self.trim_end is not None:
            if self.trim_start is None or self.trim_end is None:
                raise InvalidParameters("Both trimStart and trimEnd are required for a cut")
            trim = TrimRange(start=self.trim_start, end=self.trim_end)
        return ProcessingParams(
            output_format=self.format or None,
            quality=self.quality,
            resolution=parse_resolution(self.resolution),
            fps=parse_fps(self.fps),
            trim=trim,
            thumbnail=self.thumbnail,
            thumbnail_offset=self.thumbnail_offset,
        )


class FinalizeChunksRequest(BaseSchema):
    """Finalize a chunked upload."""
    session_id: Optional[str] = Field(default=None, max_length=100)
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    purpose: Optional[str] = None
    collection_id: Optional[str] = Field(default=None, max_length=100)
    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    total_chunks: Optional[int] = Field(default=None, ge=1)
    processing_params: ProcessingParamsSchema = Field(default_factory=ProcessingParamsSchema)

    def to_request(self, owner_key: str) -> ChunkedRequest:
        if not self.session_id:
            raise MissingField("sessionId")
        return ChunkedRequest(
            session_id=self.session_id,
            owner_key=owner_key,
            file_name=clean_file_name(self.file_name),
            mime_type=clean_mime_type(self.mime_type),
            purpose=parse_purpose(self.purpose),
            title=validate_title(self.title),
            collection_id=self.collection_id or None,
            description=validate_description(self.description),
            total_chunks=self.total_chunks,
            params=self.processing_params.to_params(),
        )


def build_direct_request(
    owner_key: str,
    purpose: Purpose,
    payload: bytes,
    file_name: Optional[str],
    mime_type: Optional[str],
    params: ProcessingParamsSchema,
    title: Optional[str] = None,
    description: Optional[str] = None,
    collection_id: Optional[str] = None,
) -> DirectRequest:
    return DirectRequest(
        owner_key=owner_key,
        file_name=clean_file_name(file_name),
        mime_type=clean_mime_type(mime_type or "application/octet-stream"),
        purpose=purpose,
        title=validate_title(title),
        payload=payload,
        collection_id=collection_id or None,
        description=validate_description(description),
        params=params.to_params(),
    )


# -----------------------------------------------------------------------------
# Upload Responses
# -----------------------------------------------------------------------------

class ChunkUploadResponse(BaseSchema):
    """Receipt for one stored chunk."""
    success: bool = True
    accepted: bool
    ready: bool = Field(..., description="True when this was the last chunk")
    index: int
    session_id: str
    total_chunks: Optional[int] = None


class FinalizeResponse(BaseSchema):
    success: bool = True
    artifact_id: str
    artifact_url: str
    derived_artifact_url: Optional[str] = None
    original_size: int
    artifact_size: int
    derived_size: Optional[int] = None
    compression_ratio: Optional[float] = None
    expires_at: Optional[datetime] = None
    state: str

    @classmethod
    def from_result(cls, result: FinalizeResult) -> "FinalizeResponse":
        return cls(
            artifact_id=result.artifact_id,
            artifact_url=result.artifact_url,
            derived_artifact_url=result.derived_artifact_url,
            original_size=result.original_size,
            artifact_size=result.artifact_size,
            derived_size=result.derived_size,
            compression_ratio=result.compression_ratio,
            expires_at=result.expires_at,
            state=result.state.value,
        )


class AbandonUploadResponse(BaseSchema):
    success: bool = True
    session_id: str
    chunks_deleted: int


class ErrorResponse(BaseSchema):
    """Body of every upload error."""
    detail: str
    kind: str
    stage: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------

class CleanupRequest(BaseSchema):
    action: Literal["run", "status"] = "run"


class CleanupStatsSchema(BaseSchema):
    files_deleted: int
    bytes_freed: int
    records_deleted: int
    errors: List[str] = Field(default_factory=list)


class CleanupFailureSchema(BaseSchema):
    session: str
    error: str
    at: datetime


class CleanupResponse(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    stats: Optional[CleanupStatsSchema] = None
    scheduled: Optional[bool] = None
    next_run: Optional[datetime] = None
    status: Optional[str] = None
    recent_chunk_cleanup_failures: List[CleanupFailureSchema] = Field(default_factory=list)


class SchedulerActionRequest(BaseSchema):
    action: Literal["start", "stop"]


class JobStatusSchema(BaseSchema):
    name: str
    running: bool
    interval_seconds: float
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0


class SchedulerResponse(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    status: List[JobStatusSchema] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------

class HealthResponse(BaseSchema):
    """Health check response."""
    status: str = "healthy"
    version: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
