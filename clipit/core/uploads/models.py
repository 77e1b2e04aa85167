"""
Data structures for the chunked upload pipeline.

Contains the session key, chunk and artifact containers, processing
parameters, the tagged upload request union and the finalization state
machine.
"""

import mimetypes
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import List, Optional, Tuple, Union

from clipit.core.uploads.exceptions import InvalidParameters

ANONYMOUS_OWNER = "anonymous"

# Extensions end up in object keys and the record format field
EXTENSION_PATTERN = re.compile(r"[a-z0-9]{1,10}")

ALLOWED_OUTPUT_FORMATS = frozenset({"mp4", "webm", "gif"})

OUTPUT_MIME_TYPES = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "gif": "image/gif",
    "mov": "video/quicktime",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "jpg": "image/jpeg",
}


class Purpose(str, Enum):
    """Declared use of an upload; selects the finalize operation."""

    CLIP = "clip"
    COMPRESS = "compress"
    TRIM = "trim"


def mime_type_for(extension: str, fallback: str = "application/octet-stream") -> str:
    ext = extension.lstrip(".").lower()
    if ext in OUTPUT_MIME_TYPES:
        return OUTPUT_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file.{ext}")
    return guessed or fallback


def extension_for(file_name: str, mime_type: Optional[str] = None) -> str:
    """File extension without the dot, from the name or else the MIME type."""
    suffix = PurePosixPath(file_name or "").suffix.lstrip(".").lower()
    if EXTENSION_PATTERN.fullmatch(suffix):
        return suffix
    if mime_type:
        guessed = (mimetypes.guess_extension(mime_type) or "").lstrip(".")
        if EXTENSION_PATTERN.fullmatch(guessed):
            return guessed
    return "bin"


@dataclass(frozen=True)
class SessionKey:
    """Partition of the chunk namespace: one upload session of one owner."""

    owner_key: str
    session_id: str

    @property
    def prefix(self) -> str:
        return f"chunks/{self.owner_key}/{self.session_id}"

    def chunk_name(self, index: int) -> str:
        return f"{self.prefix}/chunk-{index}"

    def __str__(self) -> str:
        return f"{self.owner_key}/{self.session_id}"


@dataclass
class ChunkSubmission:
    """One byte range submitted by a client."""

    session_id: str
    index: int
    payload: bytes
    file_name: str
    mime_type: str
    purpose: Optional[Purpose]
    total_chunks: Optional[int] = None
    collection_id: Optional[str] = None


@dataclass(frozen=True)
class ChunkReceipt:
    accepted: bool
    is_final: bool
    session_id: str
    index: int
    total_chunks: Optional[int] = None


@dataclass(frozen=True)
class ChunkRef:
    """A stored chunk as reported by the store listing."""

    index: int
    location: str


@dataclass
class ReassembledArtifact:
    data: bytes
    mime_type: str
    file_extension: str
    file_name: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class DerivedOutput:
    data: bytes
    mime_type: str
    extension: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TrimRange:
    """Half-open time range ``[start, end)`` in seconds."""

    start: float
    end: float

    def __post_init__(self) -> None:
        if self.start < 0:
            raise InvalidParameters("Trim start must be >= 0", details={"start": self.start})
        if self.end <= self.start:
            raise InvalidParameters(
                "Trim end must be greater than trim start",
                details={"start": self.start, "end": self.end},
            )

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class ProcessingParams:
    """
    Transcode parameters.

    ``None`` for resolution/fps means "keep the original". ``quality`` is
    0-100 where higher means better looking output.
    """

    output_format: Optional[str] = None
    quality: Optional[int] = None
    resolution: Optional[int] = None
    fps: Optional[float] = None
    trim: Optional[TrimRange] = None
    thumbnail: bool = True
    thumbnail_offset: Optional[float] = None

    def __post_init__(self) -> None:
        if self.output_format is not None:
            fmt = self.output_format.lstrip(".").lower()
            if fmt not in ALLOWED_OUTPUT_FORMATS:
                raise InvalidParameters(
                    f"Unsupported output format. Allowed: {', '.join(sorted(ALLOWED_OUTPUT_FORMATS))}",
                    details={"format": self.output_format},
                )
            self.output_format = fmt
        if self.quality is not None and not 0 <= self.quality <= 100:
            raise InvalidParameters("Quality must be between 0 and 100", details={"quality": self.quality})
        if self.resolution is not None and self.resolution <= 0:
            raise InvalidParameters("Resolution must be a positive height", details={"resolution": self.resolution})
        if self.fps is not None and self.fps <= 0:
            raise InvalidParameters("Frame rate must be positive", details={"fps": self.fps})

    @property
    def reencodes(self) -> bool:
        """Whether anything beyond a stream-copy cut is requested."""
        return any(
            value is not None
            for value in (self.output_format, self.quality, self.resolution, self.fps)
        )


# -----------------------------------------------------------------------------
# Upload requests (resolved once at the HTTP boundary)
# -----------------------------------------------------------------------------

@dataclass
class ChunkedRequest:
    """Finalize a session whose bytes already sit in the chunk store."""

    session_id: str
    owner_key: str
    file_name: str
    mime_type: str
    purpose: Purpose
    title: str
    collection_id: Optional[str] = None
    description: str = ""
    total_chunks: Optional[int] = None
    params: ProcessingParams = field(default_factory=ProcessingParams)

    @property
    def session_key(self) -> SessionKey:
        return SessionKey(self.owner_key, self.session_id)


@dataclass
class DirectRequest:
    """Whole file sent in a single request; no chunk bookkeeping."""

    owner_key: str
    file_name: str
    mime_type: str
    purpose: Purpose
    title: str
    payload: bytes
    collection_id: Optional[str] = None
    description: str = ""
    params: ProcessingParams = field(default_factory=ProcessingParams)


UploadRequest = Union[ChunkedRequest, DirectRequest]


# -----------------------------------------------------------------------------
# Finalization state machine
# -----------------------------------------------------------------------------

class FinalizationState(str, Enum):
    RECEIVED = "received"
    REASSEMBLING = "reassembling"
    TRANSCODING = "transcoding"
    PERSISTING = "persisting"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    FinalizationState.RECEIVED: {FinalizationState.REASSEMBLING},
    FinalizationState.REASSEMBLING: {FinalizationState.TRANSCODING, FinalizationState.FAILED},
    FinalizationState.TRANSCODING: {FinalizationState.PERSISTING, FinalizationState.FAILED},
    FinalizationState.PERSISTING: {FinalizationState.CLEANING_UP, FinalizationState.FAILED},
    FinalizationState.CLEANING_UP: {FinalizationState.DONE},
    FinalizationState.DONE: set(),
    FinalizationState.FAILED: set(),
}


@dataclass
class FinalizationRun:
    """Tracks one finalize request through its states."""

    label: str
    state: FinalizationState = FinalizationState.RECEIVED
    history: List[Tuple[FinalizationState, datetime]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.state, datetime.now(timezone.utc)))

    def advance(self, new_state: FinalizationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal finalization transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append((new_state, datetime.now(timezone.utc)))

    def fail(self) -> None:
        # Failing an already-terminal run is a no-op
        if FinalizationState.FAILED in _TRANSITIONS[self.state]:
            self.advance(FinalizationState.FAILED)

    @property
    def stage(self) -> str:
        return self.state.value

    @property
    def states(self) -> List[FinalizationState]:
        return [state for state, _ in self.history]


@dataclass
class FinalizeResult:
    artifact_id: str
    artifact_url: str
    original_size: int
    artifact_size: int
    purpose: Purpose
    derived_artifact_url: Optional[str] = None
    derived_size: Optional[int] = None
    expires_at: Optional[datetime] = None
    state: FinalizationState = FinalizationState.DONE

    @property
    def compression_ratio(self) -> Optional[float]:
        if self.purpose is not Purpose.COMPRESS or not self.original_size:
            return None
        return round((self.original_size - self.artifact_size) / self.original_size * 100, 2)
