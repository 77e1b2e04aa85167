"""
Shared fixtures: in-memory collaborators for the upload pipeline.
"""

from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

import pytest

from clipit.core.repositories.exceptions import RecordRepositoryError
from clipit.core.repositories.models import ArtifactRecord
from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.cleanup_tasks import BackgroundCleanup
from clipit.core.uploads.exceptions import StorageUnavailable, TranscodeFailed
from clipit.core.uploads.finalizer import FinalizationCoordinator
from clipit.core.uploads.models import (
    ANONYMOUS_OWNER,
    DerivedOutput,
    ProcessingParams,
    Purpose,
    ReassembledArtifact,
    SessionKey,
)
from clipit.core.uploads.session import ChunkedUploadSession


class InMemoryBlobStore:
    """BlobStore keeping objects in a dict. Listing is lexical, like S3."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.failing: Set[str] = set()
        self.calls: List[Tuple[str, str, str]] = []

    def _maybe_fail(self, op: str, bucket: str, key: str) -> None:
        self.calls.append((op, bucket, key))
        if op in self.failing:
            raise StorageUnavailable(f"{op} failed for {bucket}/{key}")

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self._maybe_fail("put", bucket, key)
        self.objects[(bucket, key)] = (bytes(data), content_type)

    def get(self, bucket: str, key: str) -> bytes:
        self._maybe_fail("get", bucket, key)
        try:
            return self.objects[(bucket, key)][0]
        except KeyError:
            raise StorageUnavailable(f"No such object {bucket}/{key}")

    def list(self, bucket: str, prefix: str) -> List[Dict[str, str]]:
        self._maybe_fail("list", bucket, prefix)
        if prefix and not prefix.endswith("/"):
            prefix = prefix + "/"
        keys = sorted(k for (b, k) in self.objects if b == bucket and k.startswith(prefix))
        return [{"key": k, "name": k.rsplit("/", 1)[-1]} for k in keys]

    def delete(self, bucket: str, key: str) -> None:
        self._maybe_fail("delete", bucket, key)
        self.objects.pop((bucket, key), None)

    def public_url(self, bucket: str, key: str) -> str:
        return f"https://cdn.test/{bucket}/{key}"

    def keys(self, bucket: str) -> List[str]:
        return sorted(k for (b, k) in self.objects if b == bucket)


class FakeRecordRepository:
    def __init__(self):
        self.records: Dict[str, ArtifactRecord] = {}
        self.fail_create = False
        self.fail_delete = False

    def create_record(self, record: ArtifactRecord) -> ArtifactRecord:
        if self.fail_create:
            raise RecordRepositoryError("firestore unavailable")
        self.records[record.id] = record
        return record

    def list_expired(self, now: datetime) -> List[ArtifactRecord]:
        return [
            r for r in self.records.values()
            if r.expires_at is not None and r.expires_at < now
        ]

    def delete_record(self, record: ArtifactRecord) -> bool:
        if self.fail_delete:
            raise RecordRepositoryError("firestore unavailable")
        return self.records.pop(record.id, None) is not None


class FakeAuthorizer:
    """Membership rules of the Firestore authorizer, backed by a set."""

    def __init__(self, members: Optional[Set[Tuple[str, str]]] = None):
        self.members = members if members is not None else {("user-1", "server-1")}
        self.calls: List[Tuple[str, Purpose, Optional[str]]] = []

    def is_authorized(self, owner_key: str, purpose: Purpose, collection_id: Optional[str]) -> bool:
        self.calls.append((owner_key, purpose, collection_id))
        if purpose is not Purpose.CLIP:
            return True
        if owner_key == ANONYMOUS_OWNER:
            return False
        return (owner_key, collection_id) in self.members


class FakeGenerator:
    """Stands in for ffmpeg: transcodes by tagging the bytes."""

    def __init__(self):
        self.thumbnail_fails = False
        self.transcode_fails = False
        self.transcoded: List[ProcessingParams] = []
        self.thumbnails = 0

    def transcode(self, artifact: ReassembledArtifact, params: ProcessingParams, label: str = "job") -> DerivedOutput:
        self.transcoded.append(params)
        if self.transcode_fails:
            raise TranscodeFailed("Media processing failed", diagnostics="moov atom not found")
        ext = params.output_format or artifact.file_extension
        return DerivedOutput(data=b"T:" + artifact.data[: len(artifact.data) // 2], mime_type=f"video/{ext}", extension=ext)

    def extract_still_frame(self, artifact: ReassembledArtifact, at_offset: float = 1.0, label: str = "job") -> DerivedOutput:
        self.thumbnails += 1
        if self.thumbnail_fails:
            raise TranscodeFailed("Could not extract a still frame", stage="thumbnail")
        return DerivedOutput(data=b"\xff\xd8jpeg", mime_type="image/jpeg", extension="jpg")


def split(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def records():
    return FakeRecordRepository()


@pytest.fixture
def authorizer():
    return FakeAuthorizer()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def store(blobs):
    return ChunkStore(blobs, bucket="temp")


@pytest.fixture
def upload_session(store, authorizer):
    return ChunkedUploadSession(store, authorizer)


@pytest.fixture
def coordinator(store, blobs, records, authorizer, generator):
    return FinalizationCoordinator(
        store,
        blobs,
        records,
        authorizer,
        generator=generator,
        cleanup=BackgroundCleanup(store),
        buckets={
            "clips": "clips",
            "compressed": "compressed",
            "cuts": "cuts",
            "thumbnails": "thumbnails",
            "temp": "temp",
        },
    )


@pytest.fixture
def session_key():
    return SessionKey("user-1", "sess-1")
