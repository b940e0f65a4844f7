from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from omnichan.database import Base
import enum


class SenderType(str, enum.Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"
    AI = "ai"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "platform_message_id", name="uq_messages_platform_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    platform_message_id = Column(String(255), nullable=True, index=True)  # Platform's message ID (mid)
    sender_id = Column(String(255), nullable=False)
    sender_type = Column(Enum(SenderType, values_callable=lambda e: [m.value for m in e]), nullable=False)
    content = Column(Text, nullable=False, default="")
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageAttachment.id",
    )

    def __repr__(self):
        return f"<Message(id={self.id}, sender_type={self.sender_type})>"
