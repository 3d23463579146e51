"""
Dependency Injection Providers for CareConnect

Provides FastAPI dependencies for database sessions, repositories and services.
Follows Dependency Inversion Principle - high-level modules depend on abstractions.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from careconnect.infrastructure.db.database import get_session
from careconnect.infrastructure.db.messaging_service import (
    MessagingService,
    get_messaging_service,
)
from careconnect.infrastructure.db.repositories import (
    SubscriptionRepository,
    get_subscription_repository,
)
from careconnect.infrastructure.services.access_service import (
    AccessService,
    get_access_service,
)
from careconnect.infrastructure.services.billing_sync import (
    BillingSyncService,
    get_billing_sync_service,
)


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]


def provide_subscription_repository() -> SubscriptionRepository:
    """
    Dependency provider for SubscriptionRepository.

    Usage:
        @router.post("/checkout")
        async def checkout(repo: SubscriptionRepoDep):
            ...
    """
    return get_subscription_repository()


def provide_messaging_service() -> MessagingService:
    """Dependency provider for the shared MessagingService."""
    return get_messaging_service()


def provide_access_service() -> AccessService:
    """Dependency provider for AccessService."""
    return get_access_service()


def provide_billing_sync_service() -> BillingSyncService:
    """Dependency provider for BillingSyncService."""
    return get_billing_sync_service()


# Type aliases for repository and service dependencies
SubscriptionRepoDep = Annotated[
    SubscriptionRepository,
    Depends(provide_subscription_repository)
]
MessagingServiceDep = Annotated[
    MessagingService,
    Depends(provide_messaging_service)
]
AccessServiceDep = Annotated[
    AccessService,
    Depends(provide_access_service)
]
BillingSyncServiceDep = Annotated[
    BillingSyncService,
    Depends(provide_billing_sync_service)
]
