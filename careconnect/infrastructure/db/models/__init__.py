"""
SQLModel ORM Models for CareConnect

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from careconnect.infrastructure.db.models.base import (
    BaseTable,
    TimestampMixin,
    UUIDMixin,
    as_utc,
    utcnow,
)
from careconnect.infrastructure.db.models.provider import Provider, CareSeeker
from careconnect.infrastructure.db.models.conversation import Conversation
from careconnect.infrastructure.db.models.message import Message
from careconnect.infrastructure.db.models.webhook_event import ProcessedWebhookEvent
from careconnect.infrastructure.db.models.subscription_history import SubscriptionHistory


__all__ = [
    # Base
    "BaseTable",
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "utcnow",
    # Accounts
    "Provider",
    "CareSeeker",
    # Messaging
    "Conversation",
    "Message",
    # Billing
    "ProcessedWebhookEvent",
    "SubscriptionHistory",
]
