"""
Detached chunk cleanup after a successful finalize.

Deletion runs in its own asyncio task so the finalize response never waits
for it. Failures never reach the caller: they go to the ``clipit.cleanup``
logger and to a bounded in-memory log exposed through the maintenance API.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional, Set

from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.models import SessionKey

cleanup_logger = logging.getLogger("clipit.cleanup")

MAX_RECORDED_FAILURES = 200


@dataclass(frozen=True)
class CleanupFailure:
    session: str
    error: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BackgroundCleanup:
    def __init__(self, store: ChunkStore, max_failures: int = MAX_RECORDED_FAILURES):
        self._store = store
        self._tasks: Set[asyncio.Task] = set()
        self._failures: Deque[CleanupFailure] = deque(maxlen=max_failures)

    def schedule(
        self, key: SessionKey, on_done: Optional[Callable[[], None]] = None
    ) -> asyncio.Task:
        """
        Start deleting the chunks of ``key`` in the background.

        ``on_done`` runs once the attempt finishes, whatever its outcome.
        """
        task = asyncio.create_task(self._run(key, on_done), name=f"cleanup:{key}")
        # The loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, key: SessionKey, on_done: Optional[Callable[[], None]]) -> None:
        try:
            removed = await self._store.delete_session(key)
            leftover = await self._store.list(key)
            if leftover:
                self._record(key, f"{len(leftover)} chunk(s) could not be deleted")
            else:
                cleanup_logger.info("Cleaned up %d chunk(s) of %s", removed, key)
        except Exception as exc:
            self._record(key, str(exc) or exc.__class__.__name__)
        finally:
            if on_done is not None:
                on_done()

    def _record(self, key: SessionKey, error: str) -> None:
        cleanup_logger.warning("Chunk cleanup failed for %s: %s", key, error)
        self._failures.append(CleanupFailure(session=str(key), error=error))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def recent_failures(self) -> List[CleanupFailure]:
        return list(self._failures)

    async def drain(self) -> None:
        """Wait for every scheduled cleanup to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
