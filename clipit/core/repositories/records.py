"""
Artifact record repository for Firestore.

Records are stored one collection per kind (``clips``, ``compressions``,
``cuts``) with the record id as document id.
"""

import logging
from datetime import datetime
from typing import List, Optional, Protocol

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore

from clipit.core.firebase_client import get_firestore_client
from clipit.core.repositories.exceptions import ConflictError, RecordRepositoryError
from clipit.core.repositories.models import RECORD_COLLECTIONS, ArtifactRecord

logger = logging.getLogger(__name__)

# Only temporary artifacts carry an expiry
EXPIRING_KINDS = ("compression", "cut")


class RecordRepository(Protocol):
    def create_record(self, record: ArtifactRecord) -> ArtifactRecord: ...

    def list_expired(self, now: datetime) -> List[ArtifactRecord]: ...

    def delete_record(self, record: ArtifactRecord) -> bool: ...


class FirestoreRecordRepository:
    """
    Repository for artifact metadata in Firestore.

    All methods are blocking; async callers run them in a worker thread.
    """

    def __init__(self, db: Optional[firestore.Client] = None):
        self._db = db

    @property
    def db(self) -> firestore.Client:
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _collection(self, kind: str):
        return self.db.collection(RECORD_COLLECTIONS[kind])

    def create_record(self, record: ArtifactRecord) -> ArtifactRecord:
        """
        Create a record document.

        Raises:
            ConflictError: If a record with the same id already exists
            RecordRepositoryError: If creation fails
        """
        doc_ref = self._collection(record.kind).document(record.id)
        try:
            # create() fails server-side on an existing document, no read needed
            doc_ref.create(record.to_dict())
        except AlreadyExists as e:
            raise ConflictError(f"Record {record.id} already exists") from e
        except Exception as e:
            logger.error(f"Failed to create {record.kind} record {record.id}: {e}", exc_info=True)
            raise RecordRepositoryError(f"Failed to create record: {e}") from e

        logger.debug(f"Created {record.kind} record {record.id} for owner {record.owner_id}")
        return record

    def list_expired(self, now: datetime) -> List[ArtifactRecord]:
        """
        List temporary records whose ``expires_at`` lies before ``now``.

        Documents that fail validation are skipped with a warning.
        """
        records: List[ArtifactRecord] = []
        try:
            for kind in EXPIRING_KINDS:
                query = self._collection(kind).where("expires_at", "<", now)
                for doc in query.stream():
                    data = doc.to_dict()
                    if not data:
                        continue
                    try:
                        records.append(ArtifactRecord.from_dict(data))
                    except Exception as e:
                        logger.warning(f"Failed to parse {kind} record {doc.id}: {e}")
        except Exception as e:
            logger.error(f"Failed to list expired records: {e}", exc_info=True)
            raise RecordRepositoryError(f"Failed to list expired records: {e}") from e
        return records

    def delete_record(self, record: ArtifactRecord) -> bool:
        """
        Delete a record document.

        Returns:
            True if deleted, False if not found
        """
        try:
            doc_ref = self._collection(record.kind).document(record.id)
            if not doc_ref.get().exists:
                return False
            doc_ref.delete()
        except Exception as e:
            logger.error(f"Failed to delete record {record.id}: {e}", exc_info=True)
            raise RecordRepositoryError(f"Failed to delete record: {e}") from e

        logger.debug(f"Deleted {record.kind} record {record.id}")
        return True
