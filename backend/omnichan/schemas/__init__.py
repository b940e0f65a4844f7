from omnichan.schemas.message import MessageResponse, MessageAttachmentResponse, ReplyCreate, SenderActionCreate
from omnichan.schemas.facebook import (
    FacebookWebhookPayload,
    FacebookWebhookEntry,
    FacebookMessaging,
    FacebookSendMessageRequest,
    FacebookSendMessageResponse,
)

__all__ = [
    "MessageResponse",
    "MessageAttachmentResponse",
    "ReplyCreate",
    "SenderActionCreate",
    "FacebookWebhookPayload",
    "FacebookWebhookEntry",
    "FacebookMessaging",
    "FacebookSendMessageRequest",
    "FacebookSendMessageResponse",
]
