from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from omnichan.database import Base


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("user_id", "facebook_id", name="uq_customers_user_facebook"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    facebook_id = Column(String(255), nullable=True, index=True)  # Page-scoped sender id
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    segment = Column(String(50), default="regular")  # vip, regular, potential, churned
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="customers")
    conversations = relationship("Conversation", back_populates="customer")

    def __repr__(self):
        return f"<Customer(id={self.id}, facebook_id={self.facebook_id})>"
