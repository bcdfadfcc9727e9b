import logging
import uuid
from typing import List

from pydantic import EmailStr, TypeAdapter, ValidationError

from safewatch import config
from safewatch.core.errors import ContactValidationError, StoreError
from safewatch.core.records import EmergencyContact, Recipient, RecipientType
from safewatch.core.store import DocumentStore

logger = logging.getLogger(__name__)

EMAIL_ADAPTER = TypeAdapter(EmailStr)


def _normalize_email(email) -> str:
    return (email or "").strip().lower()


class ContactDirectory:
    """A user's emergency contacts. Contacts are created here and only read elsewhere."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def add_contact(self, user_id, name, email, phone, relationship=None) -> EmergencyContact:
        if not name or not phone or not email:
            raise ContactValidationError("Name, phone, and email are required")
        try:
            EMAIL_ADAPTER.validate_python(email.strip())
        except ValidationError:
            raise ContactValidationError("Invalid email format")

        contact = EmergencyContact(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name.strip(),
            email=email.strip(),
            phone=phone.strip(),
            relationship=relationship or "Emergency Contact",
        )
        self.store.put(config.EMERGENCY_CONTACTS, contact.id, contact.to_document(), expected_version=0)
        logger.info(f"Saved emergency contact {contact.id} for user {user_id}")
        return contact

    def list_contacts(self, user_id) -> List[EmergencyContact]:
        docs = self.store.query(config.EMERGENCY_CONTACTS, lambda d: d.get("userId") == user_id)
        contacts = [EmergencyContact.from_document(d) for d in docs]
        return sorted(contacts, key=lambda c: c.created_at)


class RecipientResolver:
    """
    Builds the alert target list: the operator first, then the user's contacts.

    The operator address is never repeated in the contact group and each
    email appears once. If contacts cannot be read the operator still gets
    the alert.
    """

    def __init__(
        self,
        contacts: ContactDirectory,
        admin_email: str = config.ADMIN_EMAIL,
        admin_name: str = config.ADMIN_NAME,
    ):
        self.contacts = contacts
        self.admin = Recipient(name=admin_name, email=admin_email, type=RecipientType.ADMIN)

    def resolve(self, user_id: str) -> List[Recipient]:
        recipients = [self.admin]
        seen = {_normalize_email(self.admin.email)}

        try:
            contacts = self.contacts.list_contacts(user_id)
        except StoreError as e:
            logger.error(f"Failed to read emergency contacts for user {user_id} ({e.kind}): {e}")
            logger.warning("Continuing with admin-only notification")
            return recipients

        for contact in contacts:
            key = _normalize_email(contact.email)
            if not key or key in seen:
                continue
            seen.add(key)
            recipients.append(
                Recipient(name=contact.name, email=contact.email, type=RecipientType.EMERGENCY_CONTACT)
            )

        logger.info(f"Resolved {len(recipients)} recipients for user {user_id}")
        return recipients
