"""
Authorization checks backed by server membership documents.

A user may post clips into a server when
``clip_servers/{collection_id}/members/{owner_key}`` exists.
"""

import logging
from typing import Optional, Protocol

from google.cloud import firestore

from clipit.core.firebase_client import get_firestore_client
from clipit.core.repositories.exceptions import MembershipLookupError
from clipit.core.uploads.models import ANONYMOUS_OWNER, Purpose

logger = logging.getLogger(__name__)

SERVERS_COLLECTION = "clip_servers"
MEMBERS_SUBCOLLECTION = "members"


class Authorizer(Protocol):
    def is_authorized(
        self, owner_key: str, purpose: Purpose, collection_id: Optional[str]
    ) -> bool: ...


class MembershipAuthorizer:
    """Authorizer that reads server membership from Firestore."""

    def __init__(self, db: Optional[firestore.Client] = None):
        self._db = db

    @property
    def db(self) -> firestore.Client:
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def is_authorized(
        self, owner_key: str, purpose: Purpose, collection_id: Optional[str]
    ) -> bool:
        if purpose is not Purpose.CLIP:
            # Compress and trim are personal tools, open to anonymous users
            return True
        if owner_key == ANONYMOUS_OWNER or not collection_id:
            return False

        try:
            doc = (
                self.db.collection(SERVERS_COLLECTION)
                .document(collection_id)
                .collection(MEMBERS_SUBCOLLECTION)
                .document(owner_key)
                .get()
            )
        except Exception as e:
            logger.error(f"Membership lookup failed for {owner_key} in {collection_id}: {e}", exc_info=True)
            raise MembershipLookupError(f"Membership lookup failed: {e}") from e

        if not doc.exists:
            logger.info(f"User {owner_key} is not a member of server {collection_id}")
        return doc.exists
