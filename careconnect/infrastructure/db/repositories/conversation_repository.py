"""
Conversation Repository for CareConnect

Repository for Conversation and Message persistence.
Follows SOLID principles:
- Single Responsibility: Only handles messaging data access
- Open/Closed: Extensible via inheritance
- Dependency Inversion: Depends on an injected session factory
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from careconnect.domain.messaging import (
    Conversation,
    ConversationKey,
    ConversationStatus,
    ConversationSummary,
    Message,
    NewMessage,
    SenderType,
)
from careconnect.infrastructure.db.models import (
    Conversation as ConversationModel,
    Message as MessageModel,
)
from careconnect.infrastructure.db.models.base import as_utc, utcnow
from careconnect.infrastructure.db.repositories.base_repository import (
    IConversationStore,
    SessionRepository,
    store_operation,
    to_uuid,
)
from careconnect.infrastructure.exceptions import NotFoundError


logger = logging.getLogger(__name__)


class ConversationRepository(SessionRepository, IConversationStore):
    """
    Repository for messaging database operations.

    Manages both Conversation and Message entities. Each method opens its
    own session so callers never share transactions across operations.
    """

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    async def find_by_key(self, key: ConversationKey) -> Optional[Conversation]:
        """
        Find the conversation for a key.

        If legacy data holds several rows for one key, the earliest created
        one is returned.
        """
        booking_filter = (
            ConversationModel.booking_id.is_(None)
            if key.booking_id is None
            else ConversationModel.booking_id == key.booking_id
        )
        stmt = (
            select(ConversationModel)
            .where(
                ConversationModel.provider_id == key.provider_id,
                ConversationModel.customer_email == key.customer_email,
                booking_filter,
            )
            .order_by(ConversationModel.created_at.asc(), ConversationModel.id.asc())
            .limit(1)
        )
        async with store_operation("find_conversation", "conversations"):
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                model = result.scalars().first()
                return self._conversation_to_domain(model) if model else None

    async def create_with_welcome(
        self,
        key: ConversationKey,
        sender_type: SenderType,
        sender_id: str,
        content: str,
    ) -> Conversation:
        """
        Insert a conversation and its welcome message in one transaction.

        Raises:
            DuplicateError: another writer created the same key first
        """
        async with store_operation("create_conversation", "conversations"):
            async with self.session_factory() as session:
                now = utcnow()
                conversation = ConversationModel(
                    provider_id=key.provider_id,
                    customer_email=key.customer_email,
                    booking_id=key.booking_id,
                    conversation_key=key.storage_key,
                    status=ConversationStatus.ACTIVE.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(conversation)
                # Surface the unique violation before the message insert
                await session.flush()

                session.add(MessageModel(
                    conversation_id=conversation.id,
                    sequence=1,
                    sender_type=sender_type.value,
                    sender_id=sender_id,
                    content=content,
                    created_at=now,
                ))
                await session.commit()

                logger.info(f"Created conversation {conversation.id} for {key}")
                return self._conversation_to_domain(conversation)

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """
        Get a conversation by its ID.

        Returns:
            Conversation or None (also for malformed IDs)
        """
        conversation_uuid = to_uuid(conversation_id)
        if conversation_uuid is None:
            return None
        async with store_operation("get_conversation", "conversations"):
            async with self.session_factory() as session:
                model = await session.get(ConversationModel, conversation_uuid)
                return self._conversation_to_domain(model) if model else None

    async def set_status(
        self,
        conversation_id: str,
        status: ConversationStatus,
    ) -> Optional[Conversation]:
        """Update a conversation's status and touch updated_at."""
        conversation_uuid = to_uuid(conversation_id)
        if conversation_uuid is None:
            return None
        async with store_operation("set_conversation_status", "conversations"):
            async with self.session_factory() as session:
                model = await session.get(ConversationModel, conversation_uuid)
                if model is None:
                    return None
                model.status = status.value
                model.updated_at = utcnow()
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return self._conversation_to_domain(model)

    async def list_summaries(self, limit: int = 50, offset: int = 0) -> List[ConversationSummary]:
        """
        Get conversations for the support inbox, most recently updated first.

        Each summary carries the latest message and the number of unread
        messages written by the customer.
        """
        async with store_operation("list_conversations", "conversations"):
            async with self.session_factory() as session:
                stmt = (
                    select(ConversationModel)
                    .order_by(ConversationModel.updated_at.desc())
                    .offset(offset)
                    .limit(limit)
                )
                result = await session.execute(stmt)
                conversations = list(result.scalars().all())

                summaries = []
                for model in conversations:
                    last_stmt = (
                        select(MessageModel)
                        .where(MessageModel.conversation_id == model.id)
                        .order_by(MessageModel.sequence.desc())
                        .limit(1)
                    )
                    last = (await session.execute(last_stmt)).scalars().first()

                    unread_stmt = select(func.count()).select_from(MessageModel).where(
                        MessageModel.conversation_id == model.id,
                        MessageModel.sender_type == SenderType.CUSTOMER.value,
                        MessageModel.is_read.is_(False),
                    )
                    unread = (await session.execute(unread_stmt)).scalar_one()

                    summaries.append(ConversationSummary(
                        conversation=self._conversation_to_domain(model),
                        last_message=self._message_to_domain(last) if last else None,
                        unread_count=unread,
                    ))
                return summaries

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def add_message(self, message: NewMessage) -> Message:
        """
        Append a message to a conversation.

        The acceptance timestamp and the next sequence number are assigned
        here; the parent conversation's updated_at is bumped in the same
        transaction. The conversation row is locked first, so concurrent
        writers on Postgres take sequence numbers one after another.

        Raises:
            NotFoundError: conversation does not exist
            DuplicateError: sequence number taken by a concurrent writer
        """
        conversation_uuid = to_uuid(message.conversation_id)
        if conversation_uuid is None:
            raise NotFoundError(
                f"Conversation {message.conversation_id} not found",
                operation="add_message",
                table="conversations",
            )

        async with store_operation("add_message", "messages"):
            async with self.session_factory() as session:
                conversation = await session.get(
                    ConversationModel, conversation_uuid, with_for_update=True
                )
                if conversation is None:
                    raise NotFoundError(
                        f"Conversation {message.conversation_id} not found",
                        operation="add_message",
                        table="conversations",
                    )

                last_sequence = (await session.execute(
                    select(func.max(MessageModel.sequence))
                    .where(MessageModel.conversation_id == conversation_uuid)
                )).scalar_one()

                now = utcnow()
                model = MessageModel(
                    conversation_id=conversation_uuid,
                    sequence=(last_sequence or 0) + 1,
                    sender_type=message.sender_type.value,
                    sender_id=message.sender_id,
                    content=message.content,
                    created_at=now,
                )
                session.add(model)
                conversation.updated_at = now
                session.add(conversation)
                await session.commit()
                return self._message_to_domain(model)

    async def list_messages(
        self,
        conversation_id: str,
        limit: int = 200,
        offset: int = 0,
    ) -> List[Message]:
        """
        Get messages for a conversation, oldest first.

        Args:
            conversation_id: The conversation's ID
            limit: Maximum messages to return
            offset: Number of messages to skip
        """
        conversation_uuid = to_uuid(conversation_id)
        if conversation_uuid is None:
            return []
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_uuid)
            .order_by(MessageModel.sequence.asc())
            .offset(offset)
            .limit(limit)
        )
        async with store_operation("list_messages", "messages"):
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [self._message_to_domain(m) for m in result.scalars().all()]

    async def mark_read(
        self,
        message_ids: Sequence[str],
        reader: SenderType,
        conversation_id: Optional[str] = None,
    ) -> int:
        """
        Mark messages as read on behalf of a reader.

        Messages authored by the reader's own side and messages already
        read are left untouched. With conversation_id, IDs belonging to
        other conversations are ignored too.

        Returns:
            Number of messages whose flag changed
        """
        ids = [u for u in (to_uuid(m) for m in message_ids) if u is not None]
        if not ids:
            return 0

        conditions = [
            MessageModel.id.in_(ids),
            MessageModel.sender_type != reader.value,
            MessageModel.is_read.is_(False),
        ]
        if conversation_id is not None:
            conversation_uuid = to_uuid(conversation_id)
            if conversation_uuid is None:
                return 0
            conditions.append(MessageModel.conversation_id == conversation_uuid)

        stmt = update(MessageModel).where(*conditions).values(is_read=True)
        async with store_operation("mark_read", "messages"):
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount or 0

    # =========================================================================
    # Mapping
    # =========================================================================

    @staticmethod
    def _conversation_to_domain(model: ConversationModel) -> Conversation:
        return Conversation(
            id=str(model.id),
            provider_id=model.provider_id,
            customer_email=model.customer_email,
            booking_id=model.booking_id,
            status=ConversationStatus(model.status),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )

    @staticmethod
    def _message_to_domain(model: MessageModel) -> Message:
        return Message(
            id=str(model.id),
            conversation_id=str(model.conversation_id),
            content=model.content,
            sender_type=SenderType(model.sender_type),
            sender_id=model.sender_id,
            created_at=as_utc(model.created_at),
            is_read=model.is_read,
            is_flagged=model.is_flagged,
        )


def get_conversation_repository(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> ConversationRepository:
    """Create a conversation repository bound to a session factory."""
    return ConversationRepository(session_factory)
