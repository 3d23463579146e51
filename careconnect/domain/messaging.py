"""
Messaging Domain Models for CareConnect

Pure Python/Pydantic models for conversations between customers and support.
Follows Single Responsibility Principle - only defines messaging schemas.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SenderType(str, Enum):
    """Who authored a message."""
    SUPPORT = "support"
    CUSTOMER = "customer"


class ConversationStatus(str, Enum):
    """Conversation lifecycle; closed conversations reject new messages."""
    ACTIVE = "active"
    CLOSED = "closed"


class ConversationKey(BaseModel):
    """Identifies exactly one conversation."""
    provider_id: str
    customer_email: str
    booking_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def storage_key(self) -> str:
        """
        Digest backing the store's uniqueness constraint.

        The fields are JSON-encoded before hashing, so separators inside a
        field can never make two different keys collide.
        """
        encoded = json.dumps([self.provider_id, self.customer_email, self.booking_id])
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return f"provider={self.provider_id} customer={self.customer_email} booking={self.booking_id}"


class Conversation(BaseModel):
    """Complete conversation entity."""
    id: str
    provider_id: str
    customer_email: str
    booking_id: Optional[str] = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_closed(self) -> bool:
        return self.status == ConversationStatus.CLOSED


class Message(BaseModel):
    """Complete message entity. Immutable apart from is_read."""
    id: str
    conversation_id: str
    content: str
    sender_type: SenderType
    sender_id: str
    created_at: datetime
    is_read: bool = False
    is_flagged: bool = False

    model_config = ConfigDict(from_attributes=True)


class NewMessage(BaseModel):
    """Schema for a message accepted for insertion."""
    conversation_id: str
    sender_type: SenderType
    sender_id: str
    content: str = Field(..., min_length=1)


class ConversationSummary(BaseModel):
    """Conversation with inbox details for the support view."""
    conversation: Conversation
    last_message: Optional[Message] = None
    unread_count: int = 0
