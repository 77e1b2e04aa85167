"""
Finalization of uploads.

Turns a complete upload (chunked or direct) into a stored artifact and a
metadata record:

    received -> reassembling -> transcoding -> persisting -> cleaning_up -> done

Any error before cleanup moves the run to ``failed`` and is re-raised with
the stage it happened in. Chunks are only deleted after success, so a
failed finalize can be retried without uploading again.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from clipit.config import ARTIFACT_TTL_HOURS, MAX_DIRECT_UPLOAD_BYTES, STORAGE_BUCKETS
from clipit.core.repositories.exceptions import RepositoryError
from clipit.core.repositories.memberships import Authorizer
from clipit.core.repositories.models import PURPOSE_KINDS, ArtifactRecord
from clipit.core.repositories.records import RecordRepository
from clipit.core.security.validation import (
    ValidationError,
    validate_collection_id,
    validate_session_id,
)
from clipit.core.storage import BlobStore
from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.cleanup_tasks import BackgroundCleanup
from clipit.core.uploads.derivatives import DerivativeGenerator
from clipit.core.uploads.exceptions import (
    EmptyUpload,
    FinalizationInProgress,
    InvalidParameters,
    MissingField,
    PersistenceFailed,
    StorageUnavailable,
    TranscodeFailed,
    UploadError,
)
from clipit.core.uploads.models import (
    ChunkedRequest,
    DerivedOutput,
    DirectRequest,
    FinalizationRun,
    FinalizationState,
    FinalizeResult,
    Purpose,
    ReassembledArtifact,
    SessionKey,
    UploadRequest,
    extension_for,
)
from clipit.core.uploads.reassembler import Reassembler
from clipit.core.uploads.session import check_authorized

logger = logging.getLogger(__name__)

# Purpose -> bucket holding the primary artifact
PRIMARY_BUCKETS = {
    Purpose.CLIP: "clips",
    Purpose.COMPRESS: "compressed",
    Purpose.TRIM: "cuts",
}


@dataclass
class _StoredObject:
    bucket: str
    key: str
    url: str
    size: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FinalizationCoordinator:
    """
    Runs finalization for chunked and direct uploads.

    At most one finalize per ``(owner, session)`` runs in this process at a
    time; the guard is held until the post-success chunk cleanup finishes.
    """

    def __init__(
        self,
        store: ChunkStore,
        blobs: BlobStore,
        records: RecordRepository,
        authorizer: Authorizer,
        generator: Optional[DerivativeGenerator] = None,
        cleanup: Optional[BackgroundCleanup] = None,
        buckets: Optional[Dict[str, str]] = None,
        artifact_ttl: timedelta = timedelta(hours=ARTIFACT_TTL_HOURS),
        max_direct_bytes: int = MAX_DIRECT_UPLOAD_BYTES,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._store = store
        self._blobs = blobs
        self._records = records
        self._authorizer = authorizer
        self.reassembler = Reassembler(store)
        self.generator = generator or DerivativeGenerator()
        self.cleanup = cleanup or BackgroundCleanup(store)
        self.buckets = buckets or STORAGE_BUCKETS
        self.artifact_ttl = artifact_ttl
        self.max_direct_bytes = max_direct_bytes
        self._clock = clock
        self._new_id = id_factory
        self._active: Set[SessionKey] = set()

    def is_active(self, key: SessionKey) -> bool:
        return key in self._active

    async def finalize(self, request: UploadRequest) -> FinalizeResult:
        if isinstance(request, ChunkedRequest):
            return await self._finalize_chunked(request)
        return await self._finalize_direct(request)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def _finalize_chunked(self, request: ChunkedRequest) -> FinalizeResult:
        if not request.session_id:
            raise MissingField("sessionId")
        try:
            validate_session_id(request.session_id)
        except ValidationError as exc:
            raise InvalidParameters(exc.message, details={"field": "sessionId"}) from exc
        self._check_request(request)
        await check_authorized(
            self._authorizer, request.owner_key, request.purpose, request.collection_id
        )

        key = request.session_key
        if key in self._active:
            raise FinalizationInProgress(
                "This upload is already being finalized",
                details={"session_id": request.session_id},
            )
        self._active.add(key)
        handed_off = False
        try:
            run = FinalizationRun(label=str(key))
            try:
                run.advance(FinalizationState.REASSEMBLING)
                artifact = await self.reassembler.reassemble(
                    key, request.file_name, request.mime_type, request.total_chunks
                )
                result = await self._produce(run, request, artifact, label=request.session_id)
            except UploadError as exc:
                self._fail(run, exc)
                raise

            run.advance(FinalizationState.CLEANING_UP)
            self.cleanup.schedule(key, on_done=lambda: self._active.discard(key))
            handed_off = True
            run.advance(FinalizationState.DONE)
            result.state = run.state
            return result
        finally:
            if not handed_off:
                self._active.discard(key)

    async def _finalize_direct(self, request: DirectRequest) -> FinalizeResult:
        self._check_request(request)
        if not request.payload:
            raise EmptyUpload("Uploaded file is empty", stage=FinalizationState.RECEIVED.value)
        if len(request.payload) > self.max_direct_bytes:
            raise InvalidParameters(
                f"File exceeds {self.max_direct_bytes} bytes; use chunked upload",
                details={"size": len(request.payload)},
            )
        await check_authorized(
            self._authorizer, request.owner_key, request.purpose, request.collection_id
        )

        run = FinalizationRun(label=f"{request.owner_key}/direct")
        try:
            run.advance(FinalizationState.REASSEMBLING)
            artifact = ReassembledArtifact(
                data=request.payload,
                mime_type=request.mime_type,
                file_extension=extension_for(request.file_name, request.mime_type),
                file_name=request.file_name,
            )
            result = await self._produce(run, request, artifact, label="direct")
        except UploadError as exc:
            self._fail(run, exc)
            raise

        # Nothing was staged, so cleanup is a no-op
        run.advance(FinalizationState.CLEANING_UP)
        run.advance(FinalizationState.DONE)
        result.state = run.state
        return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _check_request(self, request: UploadRequest) -> None:
        if not request.file_name:
            raise MissingField("fileName")
        if not request.mime_type:
            raise MissingField("mimeType")
        if request.purpose is Purpose.CLIP:
            if not request.collection_id:
                raise MissingField("collectionId", "collectionId is required for clip uploads")
            if not request.title:
                raise MissingField("title")
        if request.collection_id:
            try:
                validate_collection_id(request.collection_id)
            except ValidationError as exc:
                raise InvalidParameters(exc.message, details={"field": "collectionId"}) from exc
        if request.purpose is Purpose.TRIM and request.params.trim is None:
            raise MissingField("trim", "A trim range is required for cuts")

    def _fail(self, run: FinalizationRun, exc: UploadError) -> None:
        if exc.stage is None:
            exc.stage = run.stage
        run.fail()
        logger.warning("Finalization of %s failed at %s: [%s] %s", run.label, exc.stage, exc.kind, exc.message)

    async def _produce(
        self,
        run: FinalizationRun,
        request: UploadRequest,
        artifact: ReassembledArtifact,
        label: str,
    ) -> FinalizeResult:
        run.advance(FinalizationState.TRANSCODING)
        thumbnail: Optional[DerivedOutput] = None
        if request.purpose is Purpose.CLIP:
            primary = DerivedOutput(
                data=artifact.data,
                mime_type=artifact.mime_type,
                extension=artifact.file_extension,
            )
            if request.params.thumbnail:
                thumbnail = await self._thumbnail(artifact, request, label)
        else:
            primary = await asyncio.to_thread(
                self.generator.transcode, artifact, request.params, label
            )

        run.advance(FinalizationState.PERSISTING)
        artifact_id = self._new_id()
        now = self._clock()
        expires_at = None if request.purpose is Purpose.CLIP else now + self.artifact_ttl

        stored = await self._locate(
            PRIMARY_BUCKETS[request.purpose],
            self._object_key(request, artifact_id, primary.extension),
            primary,
        )
        stored_thumbnail = None
        if thumbnail is not None:
            stored_thumbnail = await self._locate(
                "thumbnails", f"{request.collection_id}/{artifact_id}.jpg", thumbnail
            )

        result = FinalizeResult(
            artifact_id=artifact_id,
            artifact_url=stored.url,
            original_size=artifact.size,
            artifact_size=primary.size,
            purpose=request.purpose,
            derived_artifact_url=stored_thumbnail.url if stored_thumbnail else None,
            derived_size=stored_thumbnail.size if stored_thumbnail else None,
            expires_at=expires_at,
            state=run.state,
        )

        # The record is validated before anything is written
        record = self._build_record(request, artifact, artifact_id, stored, stored_thumbnail, result, now)

        await self._put(stored, primary)
        if stored_thumbnail is not None and not await self._put_thumbnail(stored_thumbnail, thumbnail):
            result.derived_artifact_url = None
            result.derived_size = None
            record = record.model_copy(
                update={"derived_bucket": None, "derived_key": None, "derived_url": None}
            )

        try:
            await asyncio.to_thread(self._records.create_record, record)
        except RepositoryError as exc:
            # Stored objects are kept and reported so the upload is not lost
            raise PersistenceFailed(
                "Artifact was stored but its record could not be saved",
                stage=FinalizationState.PERSISTING.value,
                details={
                    "artifact_id": artifact_id,
                    "artifact_url": result.artifact_url,
                    "derived_artifact_url": result.derived_artifact_url,
                },
            ) from exc

        logger.info(
            "Finalized %s upload %s as %s (%d -> %d bytes)",
            request.purpose.value, label, artifact_id, result.original_size, result.artifact_size,
        )
        return result

    async def _thumbnail(
        self, artifact: ReassembledArtifact, request: UploadRequest, label: str
    ) -> Optional[DerivedOutput]:
        offset_kwargs = {}
        if request.params.thumbnail_offset is not None:
            offset_kwargs["at_offset"] = request.params.thumbnail_offset
        try:
            return await asyncio.to_thread(
                self.generator.extract_still_frame, artifact, label=label, **offset_kwargs
            )
        except TranscodeFailed as exc:
            logger.warning("Thumbnail generation failed for %s: %s", label, exc.message)
            return None

    def _object_key(self, request: UploadRequest, artifact_id: str, extension: str) -> str:
        if request.purpose is Purpose.CLIP:
            return f"{request.collection_id}/{artifact_id}.{extension}"
        return f"{request.owner_key}/{artifact_id}.{extension}"

    def _build_record(
        self,
        request: UploadRequest,
        artifact: ReassembledArtifact,
        artifact_id: str,
        stored: _StoredObject,
        stored_thumbnail: Optional[_StoredObject],
        result: FinalizeResult,
        now: datetime,
    ) -> ArtifactRecord:
        trim = request.params.trim if request.purpose is Purpose.TRIM else None
        try:
            return ArtifactRecord(
                id=artifact_id,
                kind=PURPOSE_KINDS[request.purpose],
                title=request.title or artifact.file_name,
                description=request.description or "",
                artifact_bucket=stored.bucket,
                artifact_key=stored.key,
                artifact_url=stored.url,
                derived_bucket=stored_thumbnail.bucket if stored_thumbnail else None,
                derived_key=stored_thumbnail.key if stored_thumbnail else None,
                derived_url=stored_thumbnail.url if stored_thumbnail else None,
                owner_id=request.owner_key,
                collection_id=request.collection_id,
                byte_size=stored.size,
                original_size=artifact.size,
                original_file_name=artifact.file_name,
                format=stored.key.rsplit(".", 1)[-1],
                compression_ratio=result.compression_ratio,
                trim_start=trim.start if trim else None,
                trim_end=trim.end if trim else None,
                created_at=now,
                expires_at=result.expires_at,
            )
        except PydanticValidationError as exc:
            fields = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
            raise InvalidParameters(
                "Upload metadata is not valid", details={"fields": fields}
            ) from exc

    async def _locate(self, bucket_name: str, key: str, output: DerivedOutput) -> _StoredObject:
        bucket = self.buckets[bucket_name]
        url = await asyncio.to_thread(self._blobs.public_url, bucket, key)
        return _StoredObject(bucket=bucket, key=key, url=url, size=output.size)

    async def _put(self, target: _StoredObject, output: DerivedOutput) -> None:
        try:
            await asyncio.to_thread(
                self._blobs.put, target.bucket, target.key, output.data, output.mime_type
            )
        except StorageUnavailable as exc:
            exc.stage = FinalizationState.PERSISTING.value
            raise

    async def _put_thumbnail(self, target: _StoredObject, thumbnail: DerivedOutput) -> bool:
        try:
            await self._put(target, thumbnail)
        except StorageUnavailable as exc:
            logger.warning("Could not store thumbnail %s: %s", target.key, exc.message)
            return False
        return True
