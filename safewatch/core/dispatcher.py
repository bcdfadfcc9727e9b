import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from safewatch import config
from safewatch.core.records import (
    DeliveryOutcome,
    DispatchResult,
    EmergencyContact,
    EmergencyRecord,
    LocationSample,
    Recipient,
)
from safewatch.core.rendering import render_alert, render_contact_added

logger = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"

# send(to, subject, html_body); returns on success, raises on failure
SendFn = Callable[[str, str, str], None]
RenderFn = Callable[[Recipient], str]


class NotificationDispatcher:
    """
    Sends one personalised message per recipient on a bounded worker pool.

    Each recipient succeeds or fails on its own. Every send gets the full
    `send_timeout`, measured from the moment it starts; a send that raises or
    overruns is recorded as failed and never stops the others. An overrunning
    send is left behind on a daemon thread and its pool slot goes to the next
    recipient, so a hung transport cannot starve the queue.
    """

    def __init__(
        self,
        send: SendFn,
        max_workers: int = config.DISPATCH_MAX_WORKERS,
        send_timeout: float = config.SEND_TIMEOUT_SECONDS,
        subject: str = config.ALERT_SUBJECT,
    ):
        self.send = send
        self.max_workers = max(1, max_workers)
        self.send_timeout = send_timeout
        self.subject = subject

    def _attempt(self, recipient: Recipient, subject: str, render: RenderFn) -> DeliveryOutcome:
        finished = threading.Event()
        errors = []

        def run():
            try:
                self.send(recipient.email, subject, render(recipient))
            except Exception as e:
                errors.append(e)
            finally:
                finished.set()

        threading.Thread(target=run, name=f"alert-send-{recipient.email}", daemon=True).start()

        if not finished.wait(self.send_timeout):
            logger.error(f"Alert to {recipient.type.value} {recipient.email} timed out")
            error = f"Send timed out after {self.send_timeout:.1f}s"
            return DeliveryOutcome(recipient=recipient, status=FAILED, error=error)
        if errors:
            error = str(errors[0]) or errors[0].__class__.__name__
            logger.error(f"Failed to send alert to {recipient.email}: {error}")
            return DeliveryOutcome(recipient=recipient, status=FAILED, error=error)

        logger.info(f"Alert sent to {recipient.type.value}: {recipient.email}")
        return DeliveryOutcome(recipient=recipient, status=SENT)

    def deliver(
        self, recipients: List[Recipient], subject: str, render: RenderFn, location_included: bool = False
    ) -> DispatchResult:
        """Send `render(recipient)` to every recipient and collect the outcomes in order."""
        result = DispatchResult(total=len(recipients), location_included=location_included)
        if not recipients:
            return result

        workers = min(self.max_workers, len(recipients))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="alert-dispatch") as executor:
            futures = [executor.submit(self._attempt, r, subject, render) for r in recipients]
            result.per_recipient = [f.result() for f in futures]

        result.successful = sum(1 for o in result.per_recipient if o.status == SENT)
        result.failed = result.total - result.successful
        return result

    def dispatch(
        self, recipients: List[Recipient], emergency: EmergencyRecord, location: Optional[LocationSample] = None
    ) -> DispatchResult:
        result = self.deliver(
            recipients,
            self.subject,
            lambda recipient: render_alert(recipient, emergency, location),
            location_included=location is not None,
        )
        logger.info(f"Emergency {emergency.id}: alerts sent to {result.successful}/{result.total} recipients")
        return result

    def dispatch_contact_added(
        self, recipients: List[Recipient], contact: EmergencyContact, location: Optional[LocationSample] = None
    ) -> DispatchResult:
        result = self.deliver(
            recipients,
            config.CONTACT_ADDED_SUBJECT,
            lambda recipient: render_contact_added(recipient, contact, location),
            location_included=location is not None,
        )
        logger.info(
            f"Contact {contact.id} added for user {contact.user_id}: "
            f"notices sent to {result.successful}/{result.total} recipients"
        )
        return result
