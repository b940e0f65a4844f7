"""
Map raw Messenger webhook events onto the three events message sync understands.

A raw ``messaging`` item becomes at most one of IncomingMessage, ReadReceipt
or DeliveryReceipt. Anything else normalizes to None and is dropped.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from omnichan.schemas.facebook import FacebookMessaging, FacebookWebhookPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttachmentRef:
    type: str
    url: str


@dataclass(frozen=True)
class IncomingMessage:
    page_id: str
    sender_external_id: str
    recipient_external_id: Optional[str]
    platform_message_id: str
    text: str
    sent_at_millis: int
    attachments: List[AttachmentRef] = field(default_factory=list)
    kind: str = "message"


@dataclass(frozen=True)
class ReadReceipt:
    page_id: str
    sender_external_id: str
    watermark_millis: int
    kind: str = "read"


@dataclass(frozen=True)
class DeliveryReceipt:
    page_id: str
    sender_external_id: str
    platform_message_ids: List[str]
    watermark_millis: int
    kind: str = "delivery"


NormalizedEvent = Union[IncomingMessage, ReadReceipt, DeliveryReceipt]


def _to_messaging(raw_event: Union[FacebookMessaging, Dict[str, Any]]) -> Optional[FacebookMessaging]:
    if isinstance(raw_event, FacebookMessaging):
        return raw_event
    try:
        return FacebookMessaging.model_validate(raw_event)
    except ValidationError as e:
        logger.warning(f"Dropping malformed messaging event: {e.error_count()} validation errors")
        return None


def normalize(page_id: str, raw_event: Union[FacebookMessaging, Dict[str, Any]]) -> Optional[NormalizedEvent]:
    """Normalize one raw messaging event for the given page.

    Precedence when several keys are present: message, read, delivery.
    Attachments without a URL keep an empty URL instead of failing the event.
    """
    event = _to_messaging(raw_event)
    if event is None:
        return None

    if event.sender is None:
        logger.debug(f"Messaging event for page {page_id} has no sender, skipping")
        return None
    sender_id = event.sender.id
    recipient_id = event.recipient.id if event.recipient else None

    if event.message is not None:
        message = event.message
        if message.is_echo:
            # Echo of a message the page sent; outbound messages are stored when sent
            logger.debug(f"Skipping echo {message.mid} for page {page_id}")
            return None
        if not message.mid:
            logger.warning(f"Message event from {sender_id} has no mid, skipping")
            return None

        attachments = []
        for attachment in message.attachments or []:
            url = attachment.payload.url if attachment.payload and attachment.payload.url else ""
            attachments.append(AttachmentRef(type=attachment.type or "file", url=url))

        return IncomingMessage(
            page_id=page_id,
            sender_external_id=sender_id,
            recipient_external_id=recipient_id,
            platform_message_id=message.mid,
            text=message.text or "",
            sent_at_millis=event.timestamp if event.timestamp is not None else int(time.time() * 1000),
            attachments=attachments,
        )

    if event.read is not None:
        return ReadReceipt(
            page_id=page_id,
            sender_external_id=sender_id,
            watermark_millis=event.read.watermark,
        )

    if event.delivery is not None:
        return DeliveryReceipt(
            page_id=page_id,
            sender_external_id=sender_id,
            platform_message_ids=list(event.delivery.mids),
            watermark_millis=event.delivery.watermark,
        )

    return None


def iter_envelope(payload: Dict[str, Any]) -> Iterator[NormalizedEvent]:
    """Yield every normalized event in a webhook delivery.

    Raises pydantic.ValidationError when the envelope itself is malformed.
    """
    envelope = FacebookWebhookPayload.model_validate(payload)
    if envelope.object != "page":
        logger.warning(f"Ignoring webhook for object type {envelope.object!r}")
        return

    for entry in envelope.entry:
        for raw_event in entry.messaging or []:
            event = normalize(entry.id, raw_event)
            if event is not None:
                yield event
