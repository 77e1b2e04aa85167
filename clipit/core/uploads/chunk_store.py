"""
Chunk persistence on top of the blob store.

Chunks live at ``chunks/{owner}/{session}/chunk-{index}`` in the temp bucket.
Listing order from the backend is not trusted: indices are parsed from the
object names and sorted numerically, so ``chunk-10`` follows ``chunk-9``.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional

from clipit.config import STORAGE_BUCKETS
from clipit.core.storage import BlobStore
from clipit.core.uploads.exceptions import StorageUnavailable
from clipit.core.uploads.models import ChunkRef, SessionKey

logger = logging.getLogger(__name__)

CHUNK_CONTENT_TYPE = "application/octet-stream"
_CHUNK_NAME = re.compile(r"^chunk-(\d+)$")


def parse_chunk_index(name: str) -> Optional[int]:
    """Index encoded in a chunk object name, or None if the name is not a chunk."""
    match = _CHUNK_NAME.match(name)
    return int(match.group(1)) if match else None


class ChunkStore:
    """Stores and enumerates the chunks of upload sessions."""

    def __init__(self, blobs: BlobStore, bucket: Optional[str] = None):
        self._blobs = blobs
        self.bucket = bucket or STORAGE_BUCKETS["temp"]

    async def put(self, key: SessionKey, index: int, payload: bytes) -> None:
        # Each index is its own object, so parallel puts never contend
        await asyncio.to_thread(
            self._blobs.put, self.bucket, key.chunk_name(index), payload, CHUNK_CONTENT_TYPE
        )
        logger.debug("Stored chunk %d of %s (%d bytes)", index, key, len(payload))

    async def list(self, key: SessionKey) -> List[ChunkRef]:
        entries = await asyncio.to_thread(self._blobs.list, self.bucket, key.prefix)
        by_index: Dict[int, ChunkRef] = {}
        for entry in entries:
            name = entry.get("name") or entry["key"].rsplit("/", 1)[-1]
            index = parse_chunk_index(name)
            if index is None:
                continue
            by_index[index] = ChunkRef(index=index, location=entry["key"])
        return [by_index[i] for i in sorted(by_index)]

    async def get(self, key: SessionKey, index: int) -> bytes:
        return await asyncio.to_thread(self._blobs.get, self.bucket, key.chunk_name(index))

    async def get_ref(self, ref: ChunkRef) -> bytes:
        return await asyncio.to_thread(self._blobs.get, self.bucket, ref.location)

    async def delete_session(self, key: SessionKey) -> int:
        """
        Delete every chunk of a session.

        Best effort: listing or deletion failures are logged and the number
        of chunks actually removed is returned.
        """
        try:
            refs = await self.list(key)
        except StorageUnavailable as exc:
            logger.warning("Could not list chunks of %s for cleanup: %s", key, exc)
            return 0

        deleted = 0
        for ref in refs:
            try:
                await asyncio.to_thread(self._blobs.delete, self.bucket, ref.location)
                deleted += 1
            except StorageUnavailable as exc:
                logger.warning("Failed to delete chunk %s: %s", ref.location, exc)
        logger.info("Deleted %d/%d chunk(s) of %s", deleted, len(refs), key)
        return deleted
