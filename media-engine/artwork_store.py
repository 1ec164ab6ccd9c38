"""
Artwork Store — persistence boundary for resolved media sets.

The engine only knows ``ArtworkSink``: something that accepts one
``ArtworkMediaSet`` per artwork. The default sink writes to Firestore.

Storage: Firestore collection `{ARTWORK_COLLECTION}/{uid}`
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Protocol

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import AsyncClient

from media_models import ArtworkMediaSet

logger = logging.getLogger("media-engine.store")

COLLECTION = os.environ.get("ARTWORK_COLLECTION", "artworks")


class ArtworkSink(Protocol):
    async def save(self, uid: str, media_set: ArtworkMediaSet) -> bool: ...


class ArtworkStore:
    """Firestore-backed artwork sink."""

    def __init__(self, collection: str = COLLECTION):
        self.collection = collection
        self._db: AsyncClient | None = None

    def set_db(self, db: AsyncClient):
        self._db = db

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def save(self, uid: str, media_set: ArtworkMediaSet) -> bool:
        """Merge the media set into ``{collection}/{uid}``.

        Returns:
            True if the document was written.
        """
        if not self._db:
            logger.warning("Artwork store not connected, skipped save of %s", uid)
            return False

        doc = media_set.model_dump(mode="json")
        doc["resolved_at"] = datetime.now(timezone.utc)
        doc["displayable"] = media_set.is_displayable

        try:
            await self._db.collection(self.collection).document(uid).set(doc, merge=True)
        except google_exceptions.GoogleAPICallError as exc:
            logger.warning("Artwork save failed for %s: %s", uid, exc)
            return False

        logger.info("Saved artwork %s (primary=%s)", uid, media_set.primary_role)
        return True


# Connected to Firestore at startup in main.py
artwork_store = ArtworkStore()
