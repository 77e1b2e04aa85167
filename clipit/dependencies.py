"""
Service wiring and FastAPI dependency providers.

The upload pipeline is assembled once per application and kept on
``app.state.services``; routes reach it through the providers below so tests
can build the app around in-memory collaborators.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status

from clipit.config import MAINTENANCE_ADMIN_UIDS, logger
from clipit.core.firebase_client import get_current_user
from clipit.core.maintenance.scheduler import Scheduler
from clipit.core.repositories.memberships import Authorizer, MembershipAuthorizer
from clipit.core.repositories.records import FirestoreRecordRepository, RecordRepository
from clipit.core.storage import BlobStore, get_blob_store
from clipit.core.uploads.chunk_store import ChunkStore
from clipit.core.uploads.cleanup_tasks import BackgroundCleanup
from clipit.core.uploads.derivatives import DerivativeGenerator
from clipit.core.uploads.finalizer import FinalizationCoordinator
from clipit.core.uploads.session import ChunkedUploadSession


@dataclass
class UploadServices:
    blobs: BlobStore
    records: RecordRepository
    authorizer: Authorizer
    store: ChunkStore
    session: ChunkedUploadSession
    coordinator: FinalizationCoordinator
    cleanup: BackgroundCleanup
    scheduler: Scheduler


def build_services(
    blobs: BlobStore,
    records: RecordRepository,
    authorizer: Authorizer,
    generator: Optional[DerivativeGenerator] = None,
    scheduler: Optional[Scheduler] = None,
) -> UploadServices:
    store = ChunkStore(blobs)
    cleanup = BackgroundCleanup(store)
    return UploadServices(
        blobs=blobs,
        records=records,
        authorizer=authorizer,
        store=store,
        session=ChunkedUploadSession(store, authorizer),
        coordinator=FinalizationCoordinator(
            store,
            blobs,
            records,
            authorizer,
            generator=generator,
            cleanup=cleanup,
        ),
        cleanup=cleanup,
        scheduler=scheduler or Scheduler(),
    )


def build_default_services() -> UploadServices:
    """Production wiring: R2 for blobs, Firestore for records and memberships."""
    return build_services(
        blobs=get_blob_store(),
        records=FirestoreRecordRepository(),
        authorizer=MembershipAuthorizer(),
    )


def get_services(request: Request) -> UploadServices:
    return request.app.state.services


def get_upload_session(services: UploadServices = Depends(get_services)) -> ChunkedUploadSession:
    return services.session


def get_coordinator(services: UploadServices = Depends(get_services)) -> FinalizationCoordinator:
    return services.coordinator


def get_scheduler(services: UploadServices = Depends(get_services)) -> Scheduler:
    return services.scheduler


async def require_maintenance_admin(
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Maintenance endpoints need an authenticated user; when
    ``MAINTENANCE_ADMIN_UIDS`` is set, only those users.
    """
    if MAINTENANCE_ADMIN_UIDS and user["uid"] not in MAINTENANCE_ADMIN_UIDS:
        logger.warning("Maintenance access denied for user %s", user["uid"])
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
