"""
Chunked upload and finalization pipeline.

Only the error types and data structures are re-exported here; import the
pipeline components from their modules (``session``, ``reassembler``,
``derivatives``, ``finalizer``), which depend on storage and Firestore.
"""

from clipit.core.uploads.exceptions import (
    EmptyUpload,
    FinalizationInProgress,
    Forbidden,
    IncompleteUpload,
    InvalidChunk,
    InvalidParameters,
    MissingField,
    PersistenceFailed,
    StorageUnavailable,
    TranscodeFailed,
    TranscodeTimeout,
    UploadError,
)
from clipit.core.uploads.models import (
    ANONYMOUS_OWNER,
    ChunkedRequest,
    ChunkSubmission,
    DirectRequest,
    FinalizationState,
    FinalizeResult,
    ProcessingParams,
    Purpose,
    SessionKey,
    TrimRange,
    UploadRequest,
)

__all__ = [
    # Errors
    "EmptyUpload",
    "FinalizationInProgress",
    "Forbidden",
    "IncompleteUpload",
    "InvalidChunk",
    "InvalidParameters",
    "MissingField",
    "PersistenceFailed",
    "StorageUnavailable",
    "TranscodeFailed",
    "TranscodeTimeout",
    "UploadError",
    # Models
    "ANONYMOUS_OWNER",
    "ChunkedRequest",
    "ChunkSubmission",
    "DirectRequest",
    "FinalizationState",
    "FinalizeResult",
    "ProcessingParams",
    "Purpose",
    "SessionKey",
    "TrimRange",
    "UploadRequest",
]
