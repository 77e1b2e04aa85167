"""
Upload pipeline exceptions.

Every error carries a machine-readable ``kind`` and, where known, the
finalization ``stage`` that failed, so handlers can report which part of the
pipeline broke without inspecting messages.
"""

from typing import Any, Dict, Optional


class UploadError(Exception):
    """Base exception for the upload pipeline."""

    kind = "upload_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.stage = stage
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "kind": self.kind,
            "stage": self.stage,
            "details": self.details,
        }


class InvalidChunk(UploadError):
    """Empty payload, oversized payload or index out of range."""

    kind = "invalid_chunk"
    status_code = 400


class MissingField(UploadError):
    """A required metadata field was not supplied."""

    kind = "missing_field"
    status_code = 400

    def __init__(self, field: str, message: Optional[str] = None, **kwargs: Any):
        self.field = field
        super().__init__(message or f"Missing required field: {field}", **kwargs)
        self.details.setdefault("field", field)


class InvalidParameters(UploadError):
    """Processing parameters are malformed (bad trim range, unknown format...)."""

    kind = "invalid_parameters"
    status_code = 400


class Forbidden(UploadError):
    kind = "forbidden"
    status_code = 403


class IncompleteUpload(UploadError):
    """A chunk index is missing from the stored sequence."""

    kind = "incomplete_upload"
    status_code = 409

    def __init__(self, missing_index: int, message: Optional[str] = None, **kwargs: Any):
        self.missing_index = missing_index
        super().__init__(message or f"Upload is incomplete: chunk {missing_index} is missing", **kwargs)
        self.details.setdefault("missing_index", missing_index)


class FinalizationInProgress(UploadError):
    kind = "finalization_in_progress"
    status_code = 409


class EmptyUpload(UploadError):
    """The reassembled file, or one of its chunks, has zero length."""

    kind = "empty_upload"
    status_code = 422


class TranscodeFailed(UploadError):
    """The external transcoder failed; ``diagnostics`` holds its stderr."""

    kind = "transcode_failed"
    status_code = 422

    def __init__(self, message: str, diagnostics: str = "", **kwargs: Any):
        self.diagnostics = diagnostics
        super().__init__(message, **kwargs)
        if diagnostics:
            # Keep the tail; ffmpeg puts the actual error last
            self.details.setdefault("diagnostics", diagnostics[-2000:])


class TranscodeTimeout(TranscodeFailed):
    kind = "timeout"
    status_code = 504


class StorageUnavailable(UploadError):
    """A blob-store call failed."""

    kind = "storage_unavailable"
    status_code = 503


class PersistenceFailed(StorageUnavailable):
    """The metadata record could not be written after artifacts were stored."""

    kind = "persistence_failed"
