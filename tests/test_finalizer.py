"""
Tests for the finalization pipeline, end to end over in-memory collaborators.
"""

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.cleanup_tasks import BackgroundCleanup
from clipit.core.uploads.exceptions import (
    EmptyUpload,
    FinalizationInProgress,
    Forbidden,
    IncompleteUpload,
    InvalidParameters,
    MissingField,
    PersistenceFailed,
    StorageUnavailable,
    TranscodeFailed,
)
from clipit.core.uploads.finalizer import FinalizationCoordinator
from clipit.core.uploads.models import (
    ANONYMOUS_OWNER,
    ChunkedRequest,
    DirectRequest,
    FinalizationState,
    ProcessingParams,
    Purpose,
    SessionKey,
    TrimRange,
)

from tests.conftest import FakeGenerator, InMemoryBlobStore, split

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PAYLOAD = bytes(range(100)) * 3


async def upload(store, key: SessionKey, data: bytes = PAYLOAD, size: int = 128) -> int:
    chunks = split(data, size)
    for index, chunk in enumerate(chunks):
        await store.put(key, index, chunk)
    return len(chunks)


def clip_request(**overrides) -> ChunkedRequest:
    values = dict(
        session_id="sess-1",
        owner_key="user-1",
        file_name="match.mp4",
        mime_type="video/mp4",
        purpose=Purpose.CLIP,
        title="Ace clutch",
        collection_id="server-1",
        description="1v4",
        total_chunks=3,
    )
    values.update(overrides)
    return ChunkedRequest(**values)


def compress_request(**overrides) -> ChunkedRequest:
    values = dict(
        purpose=Purpose.COMPRESS,
        title="",
        collection_id=None,
        params=ProcessingParams(output_format="webm", quality=40),
    )
    values.update(overrides)
    return clip_request(**values)


class TestClipFinalization:
    @pytest.mark.asyncio
    async def test_stores_clip_thumbnail_and_record(self, coordinator, store, blobs, records, session_key):
        await upload(store, session_key)

        result = await coordinator.finalize(clip_request())

        assert result.state is FinalizationState.DONE
        assert result.original_size == len(PAYLOAD)
        assert result.artifact_size == len(PAYLOAD)
        assert result.expires_at is None
        assert result.compression_ratio is None
        assert result.artifact_url == f"https://cdn.test/clips/server-1/{result.artifact_id}.mp4"
        assert result.derived_artifact_url == f"https://cdn.test/thumbnails/server-1/{result.artifact_id}.jpg"

        assert blobs.objects[("clips", f"server-1/{result.artifact_id}.mp4")][0] == PAYLOAD
        assert blobs.objects[("thumbnails", f"server-1/{result.artifact_id}.jpg")][1] == "image/jpeg"

        record = records.records[result.artifact_id]
        assert record.kind == "clip"
        assert record.collection == "clips"
        assert record.title == "Ace clutch"
        assert record.description == "1v4"
        assert record.owner_id == "user-1"
        assert record.collection_id == "server-1"
        assert record.derived_url == result.derived_artifact_url
        assert record.expires_at is None

    @pytest.mark.asyncio
    async def test_chunks_removed_after_cleanup(self, coordinator, store, blobs, session_key):
        await upload(store, session_key)

        await coordinator.finalize(clip_request())
        await coordinator.cleanup.drain()

        assert blobs.keys("temp") == []
        assert not coordinator.is_active(session_key)
        assert coordinator.cleanup.recent_failures() == []

    @pytest.mark.asyncio
    async def test_thumbnail_failure_is_not_fatal(self, coordinator, store, generator, records, session_key):
        await upload(store, session_key)
        generator.thumbnail_fails = True

        result = await coordinator.finalize(clip_request())

        assert result.state is FinalizationState.DONE
        assert result.derived_artifact_url is None
        assert result.derived_size is None
        assert records.records[result.artifact_id].derived_key is None

    @pytest.mark.asyncio
    async def test_thumbnail_can_be_disabled(self, coordinator, store, generator, session_key):
        await upload(store, session_key)

        result = await coordinator.finalize(clip_request(params=ProcessingParams(thumbnail=False)))

        assert generator.thumbnails == 0
        assert result.derived_artifact_url is None

    @pytest.mark.asyncio
    async def test_clip_is_never_transcoded(self, coordinator, store, generator, session_key):
        await upload(store, session_key)

        await coordinator.finalize(clip_request())

        assert generator.transcoded == []

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(self, coordinator, store, blobs, session_key):
        await upload(store, SessionKey("user-2", "sess-1"))
        blobs.calls.clear()

        with pytest.raises(Forbidden):
            await coordinator.finalize(clip_request(owner_key="user-2"))

        assert blobs.calls == []

    @pytest.mark.asyncio
    async def test_anonymous_clip_is_forbidden(self, coordinator):
        with pytest.raises(Forbidden):
            await coordinator.finalize(clip_request(owner_key=ANONYMOUS_OWNER))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,overrides",
        [
            ("sessionId", {"session_id": ""}),
            ("fileName", {"file_name": ""}),
            ("mimeType", {"mime_type": ""}),
            ("collectionId", {"collection_id": None}),
            ("title", {"title": ""}),
        ],
    )
    async def test_missing_fields(self, coordinator, field, overrides):
        with pytest.raises(MissingField) as exc_info:
            await coordinator.finalize(clip_request(**overrides))
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_invalid_collection_id(self, coordinator):
        with pytest.raises(InvalidParameters):
            await coordinator.finalize(clip_request(collection_id="../other"))


class TestToolFinalization:
    @pytest.mark.asyncio
    async def test_compress(self, store, blobs, records, authorizer, session_key):
        generator = FakeGenerator()
        coordinator = FinalizationCoordinator(
            store, blobs, records, authorizer,
            generator=generator,
            cleanup=BackgroundCleanup(store),
            buckets={"compressed": "compressed", "cuts": "cuts", "clips": "clips", "thumbnails": "thumbnails"},
            clock=lambda: NOW,
            id_factory=lambda: "artifact-1",
        )
        await upload(store, session_key)

        result = await coordinator.finalize(compress_request())

        assert result.artifact_id == "artifact-1"
        assert result.artifact_url == "https://cdn.test/compressed/user-1/artifact-1.webm"
        assert result.artifact_size == 2 + len(PAYLOAD) // 2
        assert result.compression_ratio == round((300 - 152) / 300 * 100, 2)
        assert result.expires_at == NOW + timedelta(hours=6)
        assert result.derived_artifact_url is None
        assert generator.transcoded[0].output_format == "webm"

        record = records.records["artifact-1"]
        assert record.kind == "compression"
        assert record.format == "webm"
        assert record.byte_size == 152
        assert record.original_size == 300
        assert record.expires_at == NOW + timedelta(hours=6)
        await coordinator.cleanup.drain()

    @pytest.mark.asyncio
    async def test_anonymous_compress_allowed(self, coordinator, store, blobs):
        key = SessionKey(ANONYMOUS_OWNER, "sess-1")
        await upload(store, key)

        result = await coordinator.finalize(compress_request(owner_key=ANONYMOUS_OWNER))

        assert result.artifact_url.startswith("https://cdn.test/compressed/anonymous/")
        await coordinator.cleanup.drain()

    @pytest.mark.asyncio
    async def test_trim(self, coordinator, store, generator, records, session_key):
        await upload(store, session_key)
        request = compress_request(
            purpose=Purpose.TRIM,
            params=ProcessingParams(trim=TrimRange(1.5, 4.0)),
        )

        result = await coordinator.finalize(request)

        assert "/cuts/user-1/" in result.artifact_url
        assert result.artifact_url.endswith(".mp4")
        assert result.compression_ratio is None
        record = records.records[result.artifact_id]
        assert record.kind == "cut"
        assert (record.trim_start, record.trim_end) == (1.5, 4.0)
        assert generator.transcoded[0].trim == TrimRange(1.5, 4.0)
        await coordinator.cleanup.drain()

    @pytest.mark.asyncio
    async def test_trim_requires_range(self, coordinator):
        with pytest.raises(MissingField) as exc_info:
            await coordinator.finalize(compress_request(purpose=Purpose.TRIM, params=ProcessingParams()))
        assert exc_info.value.field == "trim"


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_chunk_keeps_upload(self, coordinator, store, blobs, records, session_key):
        await store.put(session_key, 0, b"a")
        await store.put(session_key, 2, b"c")

        with pytest.raises(IncompleteUpload) as exc_info:
            await coordinator.finalize(clip_request())

        assert exc_info.value.missing_index == 1
        assert exc_info.value.stage == "reassembling"
        assert len(blobs.keys("temp")) == 2
        assert records.records == {}
        assert not coordinator.is_active(session_key)

    @pytest.mark.asyncio
    async def test_nothing_uploaded(self, coordinator):
        with pytest.raises(IncompleteUpload) as exc_info:
            await coordinator.finalize(clip_request())
        assert exc_info.value.missing_index == 0

    @pytest.mark.asyncio
    async def test_transcode_failure_keeps_chunks(self, coordinator, store, blobs, generator, session_key):
        chunk_count = await upload(store, session_key)
        generator.transcode_fails = True

        with pytest.raises(TranscodeFailed) as exc_info:
            await coordinator.finalize(compress_request())

        assert exc_info.value.stage == "transcoding"
        assert "moov atom" in exc_info.value.details["diagnostics"]
        assert len(blobs.keys("temp")) == chunk_count
        assert blobs.keys("compressed") == []

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, coordinator, store, generator, records, session_key):
        await upload(store, session_key)
        generator.transcode_fails = True
        with pytest.raises(TranscodeFailed):
            await coordinator.finalize(compress_request())

        generator.transcode_fails = False
        result = await coordinator.finalize(compress_request())

        assert result.artifact_id in records.records
        await coordinator.cleanup.drain()

    @pytest.mark.asyncio
    async def test_storage_failure_while_persisting(self, coordinator, store, blobs, session_key):
        await upload(store, session_key)
        blobs.failing.add("put")

        with pytest.raises(StorageUnavailable) as exc_info:
            await coordinator.finalize(clip_request())

        assert exc_info.value.stage == "persisting"
        assert not coordinator.is_active(session_key)

    @pytest.mark.asyncio
    async def test_record_failure_reports_stored_artifact(self, coordinator, store, blobs, records, session_key):
        chunk_count = await upload(store, session_key)
        records.fail_create = True

        with pytest.raises(PersistenceFailed) as exc_info:
            await coordinator.finalize(clip_request())

        error = exc_info.value
        assert error.stage == "persisting"
        assert error.status_code == 503
        artifact_id = error.details["artifact_id"]
        assert error.details["artifact_url"] == f"https://cdn.test/clips/server-1/{artifact_id}.mp4"
        assert ("clips", f"server-1/{artifact_id}.mp4") in blobs.objects
        assert len(blobs.keys("temp")) == chunk_count

    @pytest.mark.asyncio
    async def test_concurrent_finalize_is_rejected(self, store, blobs, records, authorizer, session_key):
        release = threading.Event()

        class BlockingGenerator(FakeGenerator):
            def transcode(self, artifact, params, label="job"):
                release.wait(timeout=5)
                return super().transcode(artifact, params, label)

        coordinator = FinalizationCoordinator(
            store, blobs, records, authorizer,
            generator=BlockingGenerator(),
            cleanup=BackgroundCleanup(store),
            buckets={"compressed": "compressed", "thumbnails": "thumbnails"},
        )
        await upload(store, session_key)

        first = asyncio.create_task(coordinator.finalize(compress_request()))
        for _ in range(500):
            if coordinator.is_active(session_key):
                break
            await asyncio.sleep(0.01)
        assert coordinator.is_active(session_key)

        with pytest.raises(FinalizationInProgress):
            await coordinator.finalize(compress_request())

        release.set()
        result = await first
        assert result.state is FinalizationState.DONE

        # Still guarded until the chunk cleanup has run
        await coordinator.cleanup.drain()
        assert not coordinator.is_active(session_key)

    @pytest.mark.asyncio
    async def test_other_sessions_are_independent(self, coordinator, store):
        await upload(store, SessionKey("user-1", "a"))
        await upload(store, SessionKey("user-1", "b"))

        results = await asyncio.gather(
            coordinator.finalize(clip_request(session_id="a")),
            coordinator.finalize(clip_request(session_id="b")),
        )

        assert results[0].artifact_id != results[1].artifact_id
        await coordinator.cleanup.drain()

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_recorded(self, coordinator, store, blobs, session_key):
        await upload(store, session_key)

        result = await coordinator.finalize(clip_request())
        blobs.failing.add("delete")
        await coordinator.cleanup.drain()

        assert result.state is FinalizationState.DONE
        failures = coordinator.cleanup.recent_failures()
        assert len(failures) == 1
        assert failures[0].session == "user-1/sess-1"
        assert not coordinator.is_active(session_key)


    @pytest.mark.asyncio
    async def test_unusable_extension_uses_mime_type(self, coordinator, store, blobs, records, session_key):
        await upload(store, session_key)

        result = await coordinator.finalize(clip_request(file_name="match." + "x" * 25))

        assert blobs.keys("clips") == [f"server-1/{result.artifact_id}.mp4"]
        assert records.records[result.artifact_id].format == "mp4"

    @pytest.mark.asyncio
    async def test_invalid_record_stores_nothing(self, coordinator, blobs, records):
        request = DirectRequest(
            owner_key="user-1",
            file_name="play.mp4",
            mime_type="video/mp4",
            purpose=Purpose.CLIP,
            title="t" * 600,
            payload=PAYLOAD,
            collection_id="server-1",
        )

        with pytest.raises(InvalidParameters) as exc_info:
            await coordinator.finalize(request)

        assert exc_info.value.stage == "persisting"
        assert exc_info.value.details == {"fields": ["title"]}
        assert [call for call in blobs.calls if call[0] == "put"] == []
        assert records.records == {}

    @pytest.mark.asyncio
    async def test_thumbnail_storage_failure_is_not_fatal(self, records, authorizer, generator, session_key):
        class NoThumbnailStore(InMemoryBlobStore):
            def put(self, bucket, key, data, content_type):
                if bucket == "thumbnails":
                    raise StorageUnavailable("thumbnails bucket unavailable")
                super().put(bucket, key, data, content_type)

        blobs = NoThumbnailStore()
        chunk_store = ChunkStore(blobs, bucket="temp")
        coordinator = FinalizationCoordinator(
            chunk_store, blobs, records, authorizer, generator=generator,
            buckets={"clips": "clips", "thumbnails": "thumbnails", "temp": "temp"},
        )
        await upload(chunk_store, session_key)

        result = await coordinator.finalize(clip_request())

        assert result.derived_artifact_url is None
        assert result.derived_size is None
        record = records.records[result.artifact_id]
        assert record.derived_key is None
        assert record.derived_url is None


class TestDirectFinalization:
    @pytest.mark.asyncio
    async def test_direct_clip(self, coordinator, blobs, records):
        request = DirectRequest(
            owner_key="user-1",
            file_name="play.mp4",
            mime_type="video/mp4",
            purpose=Purpose.CLIP,
            title="Quick play",
            payload=PAYLOAD,
            collection_id="server-1",
        )

        result = await coordinator.finalize(request)

        assert result.state is FinalizationState.DONE
        assert blobs.objects[("clips", f"server-1/{result.artifact_id}.mp4")][0] == PAYLOAD
        assert blobs.keys("temp") == []
        assert coordinator.cleanup.pending == 0
        assert records.records[result.artifact_id].original_file_name == "play.mp4"

    @pytest.mark.asyncio
    async def test_direct_compress(self, coordinator, blobs):
        request = DirectRequest(
            owner_key=ANONYMOUS_OWNER,
            file_name="big.mov",
            mime_type="video/quicktime",
            purpose=Purpose.COMPRESS,
            title="",
            payload=PAYLOAD,
            params=ProcessingParams(output_format="mp4", quality=30),
        )

        result = await coordinator.finalize(request)

        assert result.compression_ratio is not None
        assert blobs.keys("compressed") == [f"anonymous/{result.artifact_id}.mp4"]

    @pytest.mark.asyncio
    async def test_direct_empty(self, coordinator):
        request = DirectRequest(
            owner_key="user-1", file_name="a.mp4", mime_type="video/mp4",
            purpose=Purpose.COMPRESS, title="", payload=b"",
        )
        with pytest.raises(EmptyUpload):
            await coordinator.finalize(request)

    @pytest.mark.asyncio
    async def test_direct_too_large(self, store, blobs, records, authorizer, generator):
        coordinator = FinalizationCoordinator(
            store, blobs, records, authorizer, generator=generator, max_direct_bytes=4
        )
        request = DirectRequest(
            owner_key="user-1", file_name="a.mp4", mime_type="video/mp4",
            purpose=Purpose.COMPRESS, title="", payload=b"12345",
        )
        with pytest.raises(InvalidParameters):
            await coordinator.finalize(request)
