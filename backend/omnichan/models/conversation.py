from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Float, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from omnichan.database import Base
import enum


class ConversationStatus(str, enum.Enum):
    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "customer_id",
            "platform_conversation_id",
            "platform",
            name="uq_conversations_thread",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    platform = Column(String(50), nullable=False)  # 'facebook'
    platform_conversation_id = Column(String(255), nullable=False, index=True)  # Page id for Messenger
    status = Column(
        Enum(ConversationStatus, values_callable=lambda e: [m.value for m in e]),
        default=ConversationStatus.OPEN,
        nullable=False,
    )
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime, default=datetime.utcnow)

    # Written by the analysis pipeline, never by message sync
    intent = Column(String(50), nullable=True)
    sentiment = Column(String(50), nullable=True)
    purchase_probability = Column(Float, nullable=True)
    urgency = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="conversations")
    customer = relationship("Customer", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Conversation(id={self.id}, platform={self.platform}, status={self.status})>"
