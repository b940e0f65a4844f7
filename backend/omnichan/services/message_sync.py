import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from starlette.concurrency import run_in_threadpool

from omnichan.database import Database
from omnichan.exceptions import NotFound, StorageError
from omnichan.models import (
    Conversation,
    ConversationStatus,
    Customer,
    Integration,
    Message,
    MessageAttachment,
    SenderType,
)
from omnichan.services.gateway import PlatformGateway
from omnichan.services.normalizer import DeliveryReceipt, IncomingMessage, NormalizedEvent, ReadReceipt

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)


def millis_to_datetime(millis: int) -> datetime:
    """Platform timestamps are epoch milliseconds; columns hold naive UTC"""
    return EPOCH + timedelta(milliseconds=millis)


class MessageSyncService:
    """Keeps customers, conversations and messages in step with the platform.

    Inbound webhook events are applied idempotently: customers and
    conversations are found or created, messages are stored once per
    platform message id, and delivery/read timestamps only move from NULL
    to a value. Outbound replies are persisted after the platform accepts
    them, never before.

    Sessions are synchronous, so every store call runs in the threadpool
    and the async operations only await it.
    """

    def __init__(self, database: Database, gateway: PlatformGateway):
        self.database = database
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def find_integration_for_page(self, db: Session, page_id: str, platform: str = "facebook") -> Optional[Integration]:
        return (
            db.query(Integration)
            .filter(
                Integration.platform == platform,
                Integration.platform_page_id == page_id,
                Integration.is_active == True,
            )
            .first()
        )

    def _get_or_create_customer(self, db: Session, account_id: int, facebook_id: str) -> Customer:
        customer = (
            db.query(Customer)
            .filter(Customer.user_id == account_id, Customer.facebook_id == facebook_id)
            .first()
        )
        if customer:
            return customer

        customer = Customer(
            user_id=account_id,
            facebook_id=facebook_id,
            name=f"Facebook User {facebook_id}",
        )
        db.add(customer)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery created the same customer first
            db.rollback()
            logger.debug(f"Customer {facebook_id} created concurrently, re-reading")
            return (
                db.query(Customer)
                .filter(Customer.user_id == account_id, Customer.facebook_id == facebook_id)
                .one()
            )

        logger.info(f"Created new customer {customer.id} for Facebook user {facebook_id}")
        return customer

    def _get_or_create_conversation(
        self,
        db: Session,
        account_id: int,
        customer_id: int,
        platform_thread_id: str,
        platform: str,
    ) -> Conversation:
        filters = (
            Conversation.user_id == account_id,
            Conversation.customer_id == customer_id,
            Conversation.platform_conversation_id == platform_thread_id,
            Conversation.platform == platform,
        )
        conversation = db.query(Conversation).filter(*filters).first()
        if conversation:
            return conversation

        conversation = Conversation(
            user_id=account_id,
            customer_id=customer_id,
            platform=platform,
            platform_conversation_id=platform_thread_id,
            status=ConversationStatus.OPEN,
            last_message_at=datetime.utcnow(),
        )
        db.add(conversation)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.debug(f"Conversation for customer {customer_id} on {platform_thread_id} created concurrently, re-reading")
            return db.query(Conversation).filter(*filters).one()

        logger.info(f"Created new conversation {conversation.id}")
        return conversation

    def _resolve_customer(self, account_id: int, platform_external_id: str) -> Customer:
        with self.database.session() as db:
            return self._get_or_create_customer(db, account_id, platform_external_id)

    def _resolve_conversation(
        self, account_id: int, customer_id: int, platform_thread_id: str, platform: str
    ) -> Conversation:
        with self.database.session() as db:
            return self._get_or_create_conversation(db, account_id, customer_id, platform_thread_id, platform)

    async def resolve_customer(self, account_id: int, platform_external_id: str) -> Customer:
        return await run_in_threadpool(self._resolve_customer, account_id, platform_external_id)

    async def resolve_conversation(
        self,
        account_id: int,
        customer_id: int,
        platform_thread_id: str,
        platform: str = "facebook",
    ) -> Conversation:
        return await run_in_threadpool(
            self._resolve_conversation, account_id, customer_id, platform_thread_id, platform
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _find_message_id(self, db: Session, conversation_id: int, platform_message_id: str) -> Optional[int]:
        row = (
            db.query(Message.id)
            .filter(
                Message.conversation_id == conversation_id,
                Message.platform_message_id == platform_message_id,
            )
            .first()
        )
        return row[0] if row else None

    def _apply_incoming_message(
        self, conversation_id: int, customer_id: int, event: IncomingMessage
    ) -> Optional[Message]:
        with self.database.session() as db:
            if self._find_message_id(db, conversation_id, event.platform_message_id):
                logger.debug(f"Message {event.platform_message_id} already exists, skipping")
                return None

            sent_at = millis_to_datetime(event.sent_at_millis)
            message = Message(
                conversation_id=conversation_id,
                platform_message_id=event.platform_message_id,
                sender_id=str(customer_id),
                sender_type=SenderType.CUSTOMER,
                content=event.text,
                sent_at=sent_at,
                attachments=[],
            )
            for attachment in event.attachments:
                message.attachments.append(MessageAttachment(type=attachment.type, url=attachment.url))
            db.add(message)

            # Last write wins: arrival order, not event timestamp order
            db.query(Conversation).filter(Conversation.id == conversation_id).update(
                {Conversation.last_message: event.text, Conversation.last_message_at: sent_at},
                synchronize_session=False,
            )

            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                if self._find_message_id(db, conversation_id, event.platform_message_id) is None:
                    # Not a duplicate, e.g. the conversation was deleted meanwhile
                    raise StorageError(f"Failed to store message {event.platform_message_id}: {e}") from e
                logger.debug(f"Message {event.platform_message_id} stored concurrently, skipping")
                return None

            logger.info(f"Message {event.platform_message_id} saved to conversation {conversation_id}")
            return message

    async def apply_incoming_message(
        self,
        conversation_id: int,
        customer_id: int,
        event: IncomingMessage,
    ) -> Optional[Message]:
        """Store an inbound customer message once.

        Returns None when a message with the same platform id already exists
        in the conversation (Facebook retries deliveries it thinks failed).
        """
        return await run_in_threadpool(self._apply_incoming_message, conversation_id, customer_id, event)

    def _apply_read_receipt(self, conversation_id: int, watermark_millis: int) -> int:
        read_at = millis_to_datetime(watermark_millis)
        with self.database.session() as db:
            updated = (
                db.query(Message)
                .filter(
                    Message.conversation_id == conversation_id,
                    Message.sent_at <= read_at,
                    Message.read_at.is_(None),
                )
                .update({Message.read_at: read_at}, synchronize_session=False)
            )
            db.commit()

        logger.debug(f"{updated} messages in conversation {conversation_id} marked as read")
        return updated

    async def apply_read_receipt(self, conversation_id: int, watermark_millis: int) -> int:
        """Mark every unread message sent at or before the watermark as read"""
        return await run_in_threadpool(self._apply_read_receipt, conversation_id, watermark_millis)

    def _apply_delivery_receipt(
        self, conversation_id: int, platform_message_ids: List[str], delivered_at_millis: int
    ) -> int:
        delivered_at = millis_to_datetime(delivered_at_millis)
        updated = 0
        failures = []

        for mid in platform_message_ids:
            try:
                with self.database.session() as db:
                    count = (
                        db.query(Message)
                        .filter(
                            Message.conversation_id == conversation_id,
                            Message.platform_message_id == mid,
                            Message.delivered_at.is_(None),
                        )
                        .update({Message.delivered_at: delivered_at}, synchronize_session=False)
                    )
                    db.commit()
            except StorageError as e:
                failures.append(mid)
                logger.error(f"Failed to mark message {mid} delivered in conversation {conversation_id}: {e}")
                continue

            if count == 0:
                logger.debug(f"Delivery receipt for unknown or already delivered message {mid}")
            updated += count

        if failures:
            logger.warning(f"{len(failures)} delivery updates failed in conversation {conversation_id}: {failures}")
        logger.debug(f"{updated} messages delivered in conversation {conversation_id}")
        return updated

    async def apply_delivery_receipt(
        self,
        conversation_id: int,
        platform_message_ids: List[str],
        delivered_at_millis: int,
    ) -> int:
        """Set delivered_at on each listed message that has none yet.

        Every id is applied on its own; a failure on one is logged and the
        rest are still processed.
        """
        return await run_in_threadpool(
            self._apply_delivery_receipt, conversation_id, platform_message_ids, delivered_at_millis
        )

    def _resolve_event_target(self, event: NormalizedEvent) -> Optional[Tuple[int, int]]:
        with self.database.session() as db:
            integration = self.find_integration_for_page(db, event.page_id)
            if not integration:
                logger.warning(f"No active integration found for Facebook page {event.page_id}")
                return None

            customer = self._get_or_create_customer(db, integration.user_id, event.sender_external_id)
            conversation = self._get_or_create_conversation(
                db,
                integration.user_id,
                customer.id,
                event.page_id,
                integration.platform,
            )
            return conversation.id, customer.id

    async def process_event(self, event: NormalizedEvent) -> Union[Message, int, None]:
        """Apply one normalized webhook event for the page that received it"""
        target = await run_in_threadpool(self._resolve_event_target, event)
        if target is None:
            return None
        conversation_id, customer_id = target

        if isinstance(event, IncomingMessage):
            return await self.apply_incoming_message(conversation_id, customer_id, event)
        if isinstance(event, ReadReceipt):
            return await self.apply_read_receipt(conversation_id, event.watermark_millis)
        if isinstance(event, DeliveryReceipt):
            return await self.apply_delivery_receipt(
                conversation_id, event.platform_message_ids, event.watermark_millis
            )
        raise TypeError(f"Unsupported event: {event!r}")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _load_reply_target(self, conversation_id: int) -> Tuple[str, str]:
        """Page access token and recipient id for replies in a conversation"""
        with self.database.session() as db:
            conversation = (
                db.query(Conversation)
                .options(selectinload(Conversation.customer))
                .filter(Conversation.id == conversation_id)
                .first()
            )
            if not conversation:
                raise NotFound("Conversation", conversation_id)

            integration = (
                db.query(Integration)
                .filter(
                    Integration.user_id == conversation.user_id,
                    Integration.platform == conversation.platform,
                    Integration.platform_page_id == conversation.platform_conversation_id,
                    Integration.is_active == True,
                )
                .first()
            )
            if not integration:
                raise NotFound("Integration", conversation.platform_conversation_id)

            if not conversation.customer or not conversation.customer.facebook_id:
                raise NotFound("Customer", conversation.customer_id)

            return integration.access_token, conversation.customer.facebook_id

    def _store_reply(self, conversation_id: int, sender_user_id: str, text: str, platform_message_id: str) -> Message:
        sent_at = datetime.utcnow()
        with self.database.session() as db:
            message = Message(
                conversation_id=conversation_id,
                platform_message_id=platform_message_id,
                sender_id=str(sender_user_id),
                sender_type=SenderType.AGENT,
                content=text,
                sent_at=sent_at,
                attachments=[],
            )
            db.add(message)
            db.query(Conversation).filter(Conversation.id == conversation_id).update(
                {Conversation.last_message: text, Conversation.last_message_at: sent_at},
                synchronize_session=False,
            )
            db.commit()
            return message

    async def send_reply(self, conversation_id: int, sender_user_id: str, text: str) -> Message:
        """Send an agent reply through the platform, then store it.

        Raises NotFound when the conversation or its integration is missing
        and DeliveryFailed when the platform rejects the send; nothing is
        stored in either case.
        """
        access_token, recipient_id = await run_in_threadpool(self._load_reply_target, conversation_id)

        # No session is held while waiting on the platform
        platform_message_id = await self.gateway.send_message(access_token, recipient_id, text)

        message = await run_in_threadpool(
            self._store_reply, conversation_id, sender_user_id, text, platform_message_id
        )
        logger.info(f"Message sent to customer in conversation {conversation_id}")
        return message

    async def send_sender_action(self, conversation_id: int, action: str) -> None:
        """Show a typing indicator or mark the conversation seen on the platform"""
        access_token, recipient_id = await run_in_threadpool(self._load_reply_target, conversation_id)
        await self.gateway.send_sender_action(access_token, recipient_id, action)

    def _list_messages(self, conversation_id: int) -> List[Message]:
        with self.database.session() as db:
            if db.get(Conversation, conversation_id) is None:
                raise NotFound("Conversation", conversation_id)
            return (
                db.query(Message)
                .options(selectinload(Message.attachments))
                .filter(Message.conversation_id == conversation_id)
                .order_by(Message.sent_at.asc(), Message.id.asc())
                .all()
            )

    async def list_messages(self, conversation_id: int) -> List[Message]:
        return await run_in_threadpool(self._list_messages, conversation_id)
