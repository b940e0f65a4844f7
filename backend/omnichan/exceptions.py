class SyncError(Exception):
    """Base class for message sync failures"""


class SignatureInvalid(SyncError):
    """Webhook payload was not signed with the app secret"""


class NotFound(SyncError):
    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class DeliveryFailed(SyncError):
    """Outbound platform call failed or timed out"""


class StorageError(SyncError):
    """Persistence layer failure"""
