"""
Expired artifact cleanup.

Compressed and cut videos are temporary: once ``expires_at`` has passed,
their objects and records are deleted. Errors on one record are collected
and the sweep moves on.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from clipit.config import CLEANUP_INTERVAL_SECONDS
from clipit.core.maintenance.scheduler import JobSpec, Scheduler
from clipit.core.repositories.exceptions import RepositoryError
from clipit.core.repositories.models import ArtifactRecord
from clipit.core.repositories.records import RecordRepository
from clipit.core.storage import BlobStore
from clipit.core.uploads.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    files_deleted: int = 0
    bytes_freed: int = 0
    records_deleted: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _delete_objects(record: ArtifactRecord, blobs: BlobStore, stats: CleanupStats) -> None:
    blobs.delete(record.artifact_bucket, record.artifact_key)
    stats.files_deleted += 1
    stats.bytes_freed += record.byte_size
    if record.derived_bucket and record.derived_key:
        blobs.delete(record.derived_bucket, record.derived_key)
        stats.files_deleted += 1


def cleanup_expired_artifacts(
    repository: RecordRepository,
    blobs: BlobStore,
    now: Optional[datetime] = None,
) -> CleanupStats:
    """
    Delete every artifact whose expiry lies before ``now``.

    Blocking; run it in a worker thread from async code. ``bytes_freed``
    counts the recorded size of the primary artifacts.
    """
    now = now or datetime.now(timezone.utc)
    stats = CleanupStats()

    try:
        expired = repository.list_expired(now)
    except RepositoryError as e:
        logger.error(f"Cleanup could not list expired records: {e}")
        stats.errors.append(f"General cleanup error: {e}")
        return stats

    for record in expired:
        try:
            _delete_objects(record, blobs, stats)
            # Record goes last so a failed object delete is retried next sweep
            if repository.delete_record(record):
                stats.records_deleted += 1
        except (StorageUnavailable, RepositoryError) as e:
            stats.errors.append(f"Error processing {record.id}: {e}")

    logger.info(
        f"Cleanup completed: {stats.files_deleted} files deleted, "
        f"{stats.bytes_freed} bytes freed, {stats.records_deleted} records deleted"
    )
    if stats.errors:
        logger.warning(f"Cleanup warnings: {stats.errors}")
    return stats


CLEANUP_JOB_NAME = "storage-cleanup"


def register_cleanup_job(
    scheduler: Scheduler,
    repository: RecordRepository,
    blobs: BlobStore,
    interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
) -> JobSpec:
    """Register the expired-artifact sweep on ``scheduler`` (not started)."""

    async def run_cleanup() -> Dict[str, Any]:
        stats = await asyncio.to_thread(cleanup_expired_artifacts, repository, blobs)
        return stats.to_dict()

    return scheduler.register(
        JobSpec(name=CLEANUP_JOB_NAME, interval_seconds=interval_seconds),
        run_cleanup,
    )
