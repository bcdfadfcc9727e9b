import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from safewatch import config
from safewatch.core.dispatcher import NotificationDispatcher
from safewatch.core.errors import StoreError
from safewatch.core.locations import LocationEnricher
from safewatch.core.records import DispatchResult, EmergencyContact, EmergencyRecord, LocationSample
from safewatch.core.recipients import RecipientResolver
from safewatch.core.store import DocumentStore

logger = logging.getLogger(__name__)


class EmergencyNotifier:
    """
    Second phase of a report: resolve recipients, attach the freshest known
    location and fan the alert out. Runs after the record is durable and can
    never undo it; its outcome is kept on the record's `notification` field.
    """

    def __init__(
        self,
        resolver: RecipientResolver,
        enricher: LocationEnricher,
        dispatcher: NotificationDispatcher,
        store: Optional[DocumentStore] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.resolver = resolver
        self.enricher = enricher
        self.dispatcher = dispatcher
        self.store = store
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="alert-notify")

    def _location_for(self, emergency: EmergencyRecord) -> Optional[LocationSample]:
        location = self.enricher.latest_active(emergency.user_id)
        if location is not None:
            return location

        # fall back to coordinates the client sent with the report
        reported = emergency.location or {}
        latitude, longitude = reported.get("latitude"), reported.get("longitude")
        if latitude is None or longitude is None:
            return None
        return LocationSample(
            id=emergency.id,
            user_id=emergency.user_id,
            latitude=latitude,
            longitude=longitude,
            accuracy=reported.get("accuracy"),
            updated_at=emergency.created_at,
        )

    def notify(self, emergency: EmergencyRecord) -> DispatchResult:
        logger.info(f"Sending emergency alert for user {emergency.user_id} (emergency {emergency.id})")
        recipients = self.resolver.resolve(emergency.user_id)
        location = self._location_for(emergency)
        result = self.dispatcher.dispatch(recipients, emergency, location)

        if self.store is not None:
            try:
                self.store.update(config.EMERGENCIES, emergency.id, {"notification": result.summary()})
            except StoreError as e:
                logger.error(f"Could not record notification status for emergency {emergency.id}: {e}")
        return result

    def notify_contact_added(self, contact: EmergencyContact) -> DispatchResult:
        """Tell the operator and the user's contacts, the new one included, that a contact was added."""
        logger.info(f"Sending contact-added notice for user {contact.user_id} (contact {contact.id})")
        recipients = self.resolver.resolve(contact.user_id)
        location = self.enricher.latest_active(contact.user_id)
        return self.dispatcher.dispatch_contact_added(recipients, contact, location)

    def submit(self, emergency: EmergencyRecord) -> Future:
        future = self.executor.submit(self.notify, emergency)
        future.add_done_callback(lambda f: self._log_failure(emergency, f))
        return future

    @staticmethod
    def _log_failure(emergency: EmergencyRecord, future: Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Emergency notification for {emergency.id} failed: {error}")

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)
