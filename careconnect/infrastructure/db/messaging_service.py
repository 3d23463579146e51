"""
Messaging Service for CareConnect

Business logic layer for customer/support conversations.
Follows SOLID principles:
- Single Responsibility: Only handles messaging business logic
- Open/Closed: Extensible without modification
- Dependency Inversion: Depends on the conversation store abstraction
"""

import asyncio
import logging
import weakref
from typing import List, Optional, Sequence, Union

from careconnect.config.settings import settings
from careconnect.domain.messaging import (
    Conversation,
    ConversationKey,
    ConversationStatus,
    ConversationSummary,
    Message,
    NewMessage,
    SenderType,
)
from careconnect.infrastructure.db.repositories.base_repository import IConversationStore
from careconnect.infrastructure.db.repositories.conversation_repository import get_conversation_repository
from careconnect.infrastructure.exceptions import (
    ConversationClosedError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
)
from careconnect.infrastructure.realtime.change_feed import (
    ConversationChangeFeed,
    MessageCallback,
    MessageSubscription,
    Subscription,
    get_change_feed,
)


logger = logging.getLogger(__name__)


class MessagingService:
    """
    Service for conversation business logic.

    Implements:
    - Lookup-or-create of exactly one conversation per key, with welcome message
    - Ordered message acceptance and fan-out to live subscribers
    - Read receipts and the support inbox
    """

    def __init__(
        self,
        store: IConversationStore,
        feed: ConversationChangeFeed,
        support_sender_id: Optional[str] = None,
        welcome_template: Optional[str] = None,
    ):
        self._store = store
        self._feed = feed
        self._support_sender_id = support_sender_id or settings.support_user_id
        self._welcome_template = welcome_template or settings.welcome_message_template
        # Entries disappear once no coroutine holds the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    async def initialize(
        self,
        provider_id: str,
        customer_email: str,
        booking_id: Optional[str] = None,
    ) -> Conversation:
        """
        Return the conversation for a key, creating it on first contact.

        A new conversation is created together with one welcome message from
        support. Concurrent callers with the same key all get the same
        conversation.

        Raises:
            InvalidInputError: blank provider or malformed email
            StoreUnavailableError: store unreachable; safe to retry
        """
        key = self._build_key(provider_id, customer_email, booking_id)

        existing = await self._store.find_by_key(key)
        if existing is not None:
            return existing

        try:
            conversation = await self._store.create_with_welcome(
                key,
                sender_type=SenderType.SUPPORT,
                sender_id=self._support_sender_id,
                content=self._welcome_template.format(customer=key.customer_email),
            )
        except DuplicateError:
            # Lost the creation race; the winner already wrote the welcome
            winner = await self._store.find_by_key(key)
            if winner is None:
                raise
            logger.info(f"Conversation for {key} created concurrently, reusing {winner.id}")
            return winner

        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """
        Get a conversation by ID.

        Raises:
            NotFoundError: conversation does not exist
        """
        conversation = await self._store.get(conversation_id)
        if conversation is None:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                operation="get_conversation",
                table="conversations",
            )
        return conversation

    async def close_conversation(self, conversation_id: str) -> Conversation:
        """Close a conversation; closing twice is a no-op."""
        async with self._lock_for(conversation_id):
            conversation = await self.get_conversation(conversation_id)
            if conversation.is_closed:
                return conversation
            closed = await self._store.set_status(conversation_id, ConversationStatus.CLOSED)
            if closed is None:
                raise NotFoundError(
                    f"Conversation {conversation_id} not found",
                    operation="close_conversation",
                    table="conversations",
                )
            logger.info(f"Closed conversation {conversation_id}")
            return closed

    async def list_inbox(self, limit: int = 50, offset: int = 0) -> List[ConversationSummary]:
        """Conversations for the support inbox, most recently active first."""
        return await self._store.list_summaries(limit=limit, offset=offset)

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def send(
        self,
        conversation_id: str,
        sender_type: Union[SenderType, str],
        sender_id: str,
        content: str,
    ) -> Message:
        """
        Accept a message and publish it to subscribers.

        Sends to one conversation are serialized so that subscribers see
        messages in the order they were stored.

        Raises:
            InvalidInputError: empty content or unknown sender type
            NotFoundError: conversation does not exist
            ConversationClosedError: conversation no longer accepts messages
        """
        text = (content or "").strip()
        if not text:
            raise InvalidInputError("Message content cannot be empty", field="content")

        try:
            sender = SenderType(sender_type)
        except ValueError as e:
            raise InvalidInputError(f"Unknown sender type: {sender_type}", field="sender_type", original_error=e) from e

        async with self._lock_for(conversation_id):
            conversation = await self.get_conversation(conversation_id)
            if conversation.is_closed:
                raise ConversationClosedError(conversation_id)

            message = await self._store.add_message(NewMessage(
                conversation_id=conversation.id,
                sender_type=sender,
                sender_id=sender_id,
                content=text,
            ))
            delivered = self._feed.publish(message)

        logger.debug(f"Message {message.id} accepted in {conversation_id}, fanned out to {delivered}")
        return message

    async def list_messages(
        self,
        conversation_id: str,
        limit: int = 200,
        offset: int = 0,
    ) -> List[Message]:
        """Messages of a conversation, oldest first."""
        return await self._store.list_messages(conversation_id, limit=limit, offset=offset)

    async def mark_read(
        self,
        message_ids: Sequence[str],
        reader_sender_type: Union[SenderType, str],
        conversation_id: Optional[str] = None,
    ) -> int:
        """
        Mark the other party's messages as read.

        Unknown IDs, IDs of the reader's own messages and already-read
        messages are ignored, so repeating a call changes nothing.

        Returns:
            Number of messages that changed from unread to read
        """
        if not message_ids:
            return 0
        try:
            reader = SenderType(reader_sender_type)
        except ValueError as e:
            raise InvalidInputError(
                f"Unknown sender type: {reader_sender_type}",
                field="reader_sender_type",
                original_error=e,
            ) from e
        return await self._store.mark_read(list(message_ids), reader, conversation_id=conversation_id)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def subscribe(self, conversation_id: str, on_message: MessageCallback) -> Subscription:
        """
        Invoke on_message for every message accepted from now on.

        Callback errors are logged and do not end the subscription.
        """
        return Subscription(self._feed.open(conversation_id), on_message)

    async def stream(self, conversation_id: str) -> MessageSubscription:
        """Async iterator over messages accepted from now on."""
        return self._feed.open(conversation_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    @staticmethod
    def _build_key(
        provider_id: str,
        customer_email: str,
        booking_id: Optional[str],
    ) -> ConversationKey:
        provider_id = (provider_id or "").strip()
        customer_email = (customer_email or "").strip()
        booking_id = (booking_id or "").strip() or None

        if not provider_id:
            raise InvalidInputError("Provider ID is required", field="provider_id")
        if not customer_email or "@" not in customer_email:
            raise InvalidInputError("A valid customer email is required", field="customer_email")

        return ConversationKey(
            provider_id=provider_id,
            customer_email=customer_email,
            booking_id=booking_id,
        )


# Singleton instance; per-conversation locks must be shared by all requests
_messaging_service: Optional[MessagingService] = None


def get_messaging_service() -> MessagingService:
    """Get or create the messaging service singleton."""
    global _messaging_service
    if _messaging_service is None:
        _messaging_service = MessagingService(
            store=get_conversation_repository(),
            feed=get_change_feed(),
        )
    return _messaging_service
