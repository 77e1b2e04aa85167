"""
Repository layer for Firestore data access.

Artifact records and server memberships live in Firestore; the upload
pipeline only sees the ``RecordRepository`` and ``Authorizer`` contracts.
"""

from clipit.core.repositories.exceptions import (
    ConflictError,
    MembershipLookupError,
    RecordRepositoryError,
    RepositoryError,
)
from clipit.core.repositories.memberships import Authorizer, MembershipAuthorizer
from clipit.core.repositories.models import PURPOSE_KINDS, RECORD_COLLECTIONS, ArtifactRecord
from clipit.core.repositories.records import FirestoreRecordRepository, RecordRepository

__all__ = [
    "ArtifactRecord",
    "Authorizer",
    "ConflictError",
    "FirestoreRecordRepository",
    "MembershipAuthorizer",
    "MembershipLookupError",
    "PURPOSE_KINDS",
    "RECORD_COLLECTIONS",
    "RecordRepository",
    "RecordRepositoryError",
    "RepositoryError",
]
