"""
Exception types shared by the detection and alerting pipeline.
"""


class SafeWatchError(Exception):
    """Base class for all pipeline errors."""


class StoreError(SafeWatchError):
    """
    A document store operation failed.
    `kind` tells operators whether the store is temporarily down or misconfigured.
    """

    kind = "unknown"

    def __init__(self, message, collection=None):
        super().__init__(message)
        self.collection = collection


class TransientStoreError(StoreError):
    kind = "transient"


class StructuralStoreError(StoreError):
    kind = "structural"


class DocumentNotFoundError(StoreError):
    kind = "not_found"


class ConcurrentUpdateError(StoreError):
    kind = "conflict"


class EmergencyNotFoundError(SafeWatchError):
    pass


class EmergencyAccessError(SafeWatchError):
    pass


class InvalidTransitionError(SafeWatchError):
    def __init__(self, current, target):
        super().__init__(f"Cannot transition from '{current}' to '{target}'")
        self.current = current
        self.target = target


class SessionNotFoundError(SafeWatchError):
    pass


class ThresholdUpdateError(SafeWatchError):
    pass


class LocationSessionClosedError(SafeWatchError):
    pass


class ContactValidationError(SafeWatchError):
    pass


class MailTransportError(SafeWatchError):
    pass
