"""
Base Repository for CareConnect

Store interfaces consumed by the services, plus the shared plumbing every
SQL repository uses: session factory injection and translation of driver
errors into the application's exception hierarchy.

Follows SOLID principles:
- Interface Segregation: separate interfaces for conversations and subscriptions
- Dependency Inversion: services depend on these abstractions, not on SQLAlchemy
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
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
from careconnect.domain.subscription import (
    PaymentRecord,
    ProviderAccount,
    SubscriptionRecord,
    SubscriptionUpdate,
)
from careconnect.infrastructure.exceptions import (
    DatabaseError,
    DuplicateError,
    StoreUnavailableError,
)


logger = logging.getLogger(__name__)


def to_uuid(value) -> Optional[UUID]:
    """Parse an id coming from a URL or client; None when malformed."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


@asynccontextmanager
async def store_operation(operation: str, table: Optional[str] = None) -> AsyncIterator[None]:
    """
    Translate driver errors raised inside the block.

    - unique violations become DuplicateError
    - lost connections, lock and pool timeouts become StoreUnavailableError
    - anything else from SQLAlchemy becomes DatabaseError
    """
    try:
        yield
    except IntegrityError as e:
        raise DuplicateError(
            f"Duplicate record during {operation}",
            operation=operation,
            table=table,
            original_error=e,
        ) from e
    except (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError, OSError) as e:
        logger.warning(f"Store unavailable during {operation}: {e}")
        raise StoreUnavailableError(
            "Data store is temporarily unavailable",
            operation=operation,
            table=table,
            original_error=e,
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error during {operation}: {e}")
        raise DatabaseError(
            f"Database error during {operation}",
            operation=operation,
            table=table,
            original_error=e,
        ) from e


class SessionRepository:
    """
    Base for repositories that open one session per operation.

    Args:
        session_factory: Async session factory; defaults to the global
            DatabaseManager's factory, resolved lazily.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get the session factory."""
        if self._session_factory is None:
            from careconnect.infrastructure.db.database import get_db_manager
            self._session_factory = get_db_manager().session_factory
        return self._session_factory


class IConversationStore(ABC):
    """
    Relational store operations needed by the messaging synchronizer.

    Implementations must enforce uniqueness of the conversation key and
    raise DuplicateError when a concurrent insert wins.
    """

    @abstractmethod
    async def find_by_key(self, key: ConversationKey) -> Optional[Conversation]:
        """First conversation for the key in creation order."""
        pass

    @abstractmethod
    async def create_with_welcome(
        self,
        key: ConversationKey,
        sender_type: SenderType,
        sender_id: str,
        content: str,
    ) -> Conversation:
        """Create a conversation and its welcome message atomically."""
        pass

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """Get a conversation by id."""
        pass

    @abstractmethod
    async def add_message(self, message: NewMessage) -> Message:
        """Append a message; its created_at is assigned by the store."""
        pass

    @abstractmethod
    async def list_messages(
        self,
        conversation_id: str,
        limit: int = 200,
        offset: int = 0,
    ) -> List[Message]:
        """Messages in acceptance order."""
        pass

    @abstractmethod
    async def mark_read(
        self,
        message_ids: Sequence[str],
        reader: SenderType,
        conversation_id: Optional[str] = None,
    ) -> int:
        """Flip is_read for unread messages not authored by the reader."""
        pass

    @abstractmethod
    async def set_status(
        self,
        conversation_id: str,
        status: ConversationStatus,
    ) -> Optional[Conversation]:
        """Change a conversation's lifecycle status."""
        pass

    @abstractmethod
    async def list_summaries(self, limit: int = 50, offset: int = 0) -> List[ConversationSummary]:
        """Conversations with last message and unread customer count."""
        pass


class ISubscriptionStore(ABC):
    """Read/write access to provider subscription records."""

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> Optional[SubscriptionRecord]:
        pass

    @abstractmethod
    async def get_provider_account(self, user_id: str) -> Optional[ProviderAccount]:
        pass

    @abstractmethod
    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[SubscriptionRecord]:
        pass

    @abstractmethod
    async def update_subscription(
        self,
        provider_id: str,
        update: SubscriptionUpdate,
    ) -> Optional[SubscriptionRecord]:
        pass

    @abstractmethod
    async def is_care_seeker(self, user_id: str) -> bool:
        pass

    @abstractmethod
    async def is_provider(self, user_id: str) -> bool:
        pass

    @abstractmethod
    async def get_by_provider_id(self, provider_id: str) -> Optional[SubscriptionRecord]:
        pass

    @abstractmethod
    async def record_payment(self, entry: PaymentRecord) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def list_payments(self, provider_id: str) -> List[PaymentRecord]:
        pass
