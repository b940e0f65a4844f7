from omnichan.models.user import User
from omnichan.models.integration import Integration
from omnichan.models.customer import Customer
from omnichan.models.conversation import Conversation, ConversationStatus
from omnichan.models.message import Message, SenderType
from omnichan.models.message_attachment import MessageAttachment

__all__ = [
    "User",
    "Integration",
    "Customer",
    "Conversation",
    "ConversationStatus",
    "Message",
    "SenderType",
    "MessageAttachment",
]
