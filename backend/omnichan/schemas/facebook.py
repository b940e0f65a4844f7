from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any


class FacebookUser(BaseModel):
    id: str


class FacebookAttachmentPayload(BaseModel):
    url: Optional[str] = None


class FacebookAttachment(BaseModel):
    type: Optional[str] = None  # image, video, audio, file
    payload: Optional[FacebookAttachmentPayload] = None


class FacebookQuickReply(BaseModel):
    payload: str


class FacebookMessage(BaseModel):
    mid: Optional[str] = None
    text: Optional[str] = None
    attachments: Optional[List[FacebookAttachment]] = None
    quick_reply: Optional[FacebookQuickReply] = None
    is_echo: bool = False


class FacebookRead(BaseModel):
    watermark: int


class FacebookDelivery(BaseModel):
    watermark: int
    mids: List[str] = Field(default_factory=list)


class FacebookMessaging(BaseModel):
    sender: Optional[FacebookUser] = None
    recipient: Optional[FacebookUser] = None
    timestamp: Optional[int] = None
    message: Optional[FacebookMessage] = None
    read: Optional[FacebookRead] = None
    delivery: Optional[FacebookDelivery] = None


class FacebookWebhookEntry(BaseModel):
    id: str
    time: Optional[int] = None
    # Kept raw so one malformed event does not reject the whole delivery
    messaging: Optional[List[Dict[str, Any]]] = None


class FacebookWebhookPayload(BaseModel):
    object: str
    entry: List[FacebookWebhookEntry] = Field(default_factory=list)


class FacebookSendMessageRequest(BaseModel):
    recipient: FacebookUser
    message: dict
    messaging_type: Literal["RESPONSE", "UPDATE", "MESSAGE_TAG"] = "RESPONSE"


class FacebookSendMessageResponse(BaseModel):
    recipient_id: Optional[str] = None
    message_id: str
