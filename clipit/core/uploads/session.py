"""
Chunk submission for upload sessions.

A session has no record of its own: it is created by its first stored chunk
and disappears when its chunks are deleted. Submission only checks the chunk
in hand; completeness is verified at reassembly.
"""

import asyncio
import logging
from typing import Optional

from clipit.config import MAX_CHUNK_BYTES, MAX_TOTAL_CHUNKS
from clipit.core.repositories.exceptions import MembershipLookupError
from clipit.core.repositories.memberships import Authorizer
from clipit.core.security.validation import ValidationError, validate_session_id
from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.exceptions import (
    Forbidden,
    InvalidChunk,
    MissingField,
    StorageUnavailable,
)
from clipit.core.uploads.models import ChunkReceipt, ChunkSubmission, Purpose, SessionKey

logger = logging.getLogger(__name__)


async def check_authorized(
    authorizer: Authorizer, owner_key: str, purpose: Purpose, collection_id: Optional[str]
) -> None:
    """Raise ``Forbidden`` unless ``owner_key`` may upload for ``purpose``."""
    try:
        allowed = await asyncio.to_thread(
            authorizer.is_authorized, owner_key, purpose, collection_id
        )
    except MembershipLookupError as exc:
        raise StorageUnavailable("Authorization check failed") from exc
    if not allowed:
        logger.warning(
            "Rejected %s upload by %s for collection %s", purpose.value, owner_key, collection_id
        )
        raise Forbidden("Not allowed to upload to this collection")


class ChunkedUploadSession:
    """Accepts chunk submissions and stores them through a ``ChunkStore``."""

    def __init__(
        self,
        store: ChunkStore,
        authorizer: Authorizer,
        max_chunk_bytes: int = MAX_CHUNK_BYTES,
        max_total_chunks: int = MAX_TOTAL_CHUNKS,
    ):
        self._store = store
        self._authorizer = authorizer
        self.max_chunk_bytes = max_chunk_bytes
        self.max_total_chunks = max_total_chunks

    async def submit_chunk(self, owner_key: str, submission: ChunkSubmission) -> ChunkReceipt:
        """
        Validate, authorize and store one chunk.

        Overwrites any chunk previously stored at the same index, so clients
        can safely retry a submission.

        Raises:
            MissingField: A required metadata field is absent.
            InvalidChunk: Empty or oversized payload, or index out of range.
            Forbidden: The owner may not upload for this purpose/collection.
            StorageUnavailable: The chunk could not be written.
        """
        self._check_metadata(submission)
        self._check_chunk(submission)
        await self.authorize(owner_key, submission.purpose, submission.collection_id)

        key = SessionKey(owner_key, submission.session_id)
        await self._store.put(key, submission.index, submission.payload)

        total = submission.total_chunks
        is_final = total is not None and submission.index == total - 1
        if is_final:
            logger.info("Received final chunk %d of session %s", submission.index, key)

        return ChunkReceipt(
            accepted=True,
            is_final=is_final,
            session_id=submission.session_id,
            index=submission.index,
            total_chunks=total,
        )

    async def authorize(
        self, owner_key: str, purpose: Purpose, collection_id: Optional[str]
    ) -> None:
        await check_authorized(self._authorizer, owner_key, purpose, collection_id)

    async def abandon(self, key: SessionKey) -> int:
        """Drop every stored chunk of a session. Returns the number removed."""
        removed = await self._store.delete_session(key)
        logger.info("Abandoned upload session %s (%d chunk(s) removed)", key, removed)
        return removed

    def _check_metadata(self, submission: ChunkSubmission) -> None:
        if not submission.session_id:
            raise MissingField("sessionId")
        if not submission.file_name:
            raise MissingField("fileName")
        if not submission.mime_type:
            raise MissingField("mimeType")
        if submission.purpose is None:
            raise MissingField("purpose")
        if submission.purpose is Purpose.CLIP and not submission.collection_id:
            raise MissingField("collectionId", "collectionId is required for clip uploads")

        try:
            validate_session_id(submission.session_id)
        except ValidationError as exc:
            raise InvalidChunk(exc.message, details={"field": "sessionId"}) from exc

    def _check_chunk(self, submission: ChunkSubmission) -> None:
        size = len(submission.payload)
        if size == 0:
            raise InvalidChunk("Chunk payload is empty", details={"index": submission.index})
        if size > self.max_chunk_bytes:
            raise InvalidChunk(
                f"Chunk exceeds {self.max_chunk_bytes} bytes",
                details={"index": submission.index, "size": size},
            )
        if submission.index < 0:
            raise InvalidChunk("Chunk index must be >= 0", details={"index": submission.index})

        total = submission.total_chunks
        if total is not None:
            if not 1 <= total <= self.max_total_chunks:
                raise InvalidChunk(
                    f"totalChunks must be between 1 and {self.max_total_chunks}",
                    details={"total_chunks": total},
                )
            if submission.index >= total:
                raise InvalidChunk(
                    "Chunk index out of range",
                    details={"index": submission.index, "total_chunks": total},
                )
