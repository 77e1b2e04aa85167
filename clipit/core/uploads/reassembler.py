"""
Rebuilds an uploaded file from its stored chunks.
"""

import logging
from typing import List, Optional

from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.exceptions import EmptyUpload, IncompleteUpload
from clipit.core.uploads.models import ChunkRef, ReassembledArtifact, SessionKey, extension_for

logger = logging.getLogger(__name__)

STAGE = "reassembling"


def first_missing_index(indices: List[int], expected: int) -> Optional[int]:
    """First index in ``range(expected)`` absent from the sorted ``indices``."""
    for position in range(expected):
        if position >= len(indices) or indices[position] != position:
            return position
    return None


class Reassembler:
    """Concatenates a session's chunks in index order. Never deletes chunks."""

    def __init__(self, store: ChunkStore):
        self._store = store

    async def reassemble(
        self,
        key: SessionKey,
        file_name: str,
        mime_type: str,
        expected_total: Optional[int] = None,
    ) -> ReassembledArtifact:
        """
        Raises:
            IncompleteUpload: An index in ``0..n-1`` has no stored chunk. ``n``
                is ``expected_total`` when given, else the highest stored index + 1.
            EmptyUpload: A stored chunk, or the whole file, is zero-length.
            StorageUnavailable: Listing or reading a chunk failed.
        """
        refs = await self._ordered_refs(key, expected_total)

        buffer = bytearray()
        for ref in refs:
            payload = await self._store.get_ref(ref)
            if not payload:
                raise EmptyUpload(
                    f"Chunk {ref.index} is empty",
                    stage=STAGE,
                    details={"index": ref.index},
                )
            buffer.extend(payload)

        if not buffer:
            raise EmptyUpload("Reassembled file is empty", stage=STAGE)

        logger.info("Reassembled %s from %d chunk(s): %d bytes", key, len(refs), len(buffer))
        return ReassembledArtifact(
            data=bytes(buffer),
            mime_type=mime_type,
            file_extension=extension_for(file_name, mime_type),
            file_name=file_name,
        )

    async def _ordered_refs(
        self, key: SessionKey, expected_total: Optional[int]
    ) -> List[ChunkRef]:
        refs = await self._store.list(key)

        if expected_total is not None:
            extra = [ref.index for ref in refs if ref.index >= expected_total]
            if extra:
                logger.warning(
                    "Ignoring %d chunk(s) of %s beyond declared total %d: %s",
                    len(extra), key, expected_total, extra[:10],
                )
            refs = [ref for ref in refs if ref.index < expected_total]
            expected = expected_total
        else:
            expected = refs[-1].index + 1 if refs else 0

        if not refs:
            raise IncompleteUpload(0, "No chunks were uploaded for this session", stage=STAGE)

        missing = first_missing_index([ref.index for ref in refs], expected)
        if missing is not None:
            raise IncompleteUpload(missing, stage=STAGE)
        return refs
