import logging
from typing import Optional

from pydantic import ValidationError

from safewatch import config
from safewatch.core.errors import LocationSessionClosedError, StoreError
from safewatch.core.records import LocationSample
from safewatch.core.signals import utc_now
from safewatch.core.store import DocumentStore

logger = logging.getLogger(__name__)

ACTIVE = "active"
RESOLVED = "resolved"


class LocationTracker:
    """
    One location sample per SOS session, overwritten while the client tracks
    and frozen once the session is resolved.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def update_sample(self, session_id, user_id, latitude, longitude, accuracy=None, severity="emergency") -> LocationSample:
        current = self.store.get(config.LOCATIONS, session_id)
        if current is not None and current.get("status") == RESOLVED:
            raise LocationSessionClosedError(f"Location session {session_id} is already resolved")

        sample = LocationSample(
            id=session_id,
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            severity=severity,
            status=ACTIVE,
            updated_at=utc_now(),
        )
        self.store.put(config.LOCATIONS, session_id, sample.to_document())
        return sample

    def resolve_session(self, session_id) -> LocationSample:
        current = self.store.get(config.LOCATIONS, session_id)
        if current is None:
            raise LocationSessionClosedError(f"Location session {session_id} does not exist")
        if current.get("status") == RESOLVED:
            return LocationSample.from_document(current)
        doc = self.store.update(config.LOCATIONS, session_id, {"status": RESOLVED, "updatedAt": utc_now().isoformat()})
        return LocationSample.from_document(doc)


class LocationEnricher:
    """Finds the freshest active location sample for a user, if there is one."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def latest_active(self, user_id: str) -> Optional[LocationSample]:
        try:
            docs = self.store.query(
                config.LOCATIONS,
                lambda d: d.get("userId") == user_id and d.get("status") == ACTIVE,
            )
        except StoreError as e:
            logger.error(f"Failed to retrieve location data for user {user_id} ({e.kind}): {e}")
            return None

        samples = []
        for doc in docs:
            try:
                samples.append(LocationSample.from_document(doc))
            except ValidationError as e:
                logger.warning(f"Skipping malformed location sample {doc.get('id')}: {e.error_count()} errors")

        if not samples:
            return None
        # the store does not promise any order
        return max(samples, key=lambda s: s.updated_at)
