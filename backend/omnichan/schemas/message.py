from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Literal
from omnichan.models.message import SenderType


class MessageAttachmentResponse(BaseModel):
    id: int
    type: str
    url: str

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    platform_message_id: Optional[str] = None
    sender_id: str
    sender_type: SenderType
    content: str
    sent_at: datetime
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    attachments: List[MessageAttachmentResponse] = []

    class Config:
        from_attributes = True


class ReplyCreate(BaseModel):
    sender_id: str  # Agent user sending the reply
    text: str = Field(min_length=1)


class SenderActionCreate(BaseModel):
    action: Literal["typing_on", "typing_off", "mark_seen"]
