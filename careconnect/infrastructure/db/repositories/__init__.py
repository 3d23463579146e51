"""
Repository Layer for CareConnect

Exports all repository classes for dependency injection.
"""

from careconnect.infrastructure.db.repositories.base_repository import (
    IConversationStore,
    ISubscriptionStore,
    SessionRepository,
    store_operation,
    to_uuid,
)
from careconnect.infrastructure.db.repositories.conversation_repository import (
    ConversationRepository,
    get_conversation_repository,
)
from careconnect.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)


__all__ = [
    # Base
    "IConversationStore",
    "ISubscriptionStore",
    "SessionRepository",
    "store_operation",
    "to_uuid",
    # Repositories
    "ConversationRepository",
    "get_conversation_repository",
    "SubscriptionRepository",
    "get_subscription_repository",
]
