from omnichan.services.gateway import FacebookGateway, PlatformGateway
from omnichan.services.message_sync import MessageSyncService
from omnichan.services.dispatcher import EventDispatcher
from omnichan.services.signature import SignatureVerifier, verify_signature

__all__ = [
    "FacebookGateway",
    "PlatformGateway",
    "MessageSyncService",
    "EventDispatcher",
    "SignatureVerifier",
    "verify_signature",
]
