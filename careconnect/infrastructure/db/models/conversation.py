"""
Conversation SQLModel for CareConnect

Database model for customer/support conversations.
Follows SOLID principles:
- Single Responsibility: Only defines Conversation schema
- Open/Closed: Extensible via inheritance
"""

from typing import Optional

from sqlalchemy import Column, Index, String
from sqlmodel import Field

from careconnect.infrastructure.db.models.base import BaseTable


class Conversation(BaseTable, table=True):
    """
    Conversation database table model.

    One row per (provider_id, customer_email, booking_id) key.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_lookup", "provider_id", "customer_email", "booking_id"),
    )

    provider_id: str = Field(
        ...,
        max_length=64,
        nullable=False,
        description="Provider the customer is asking about"
    )

    customer_email: str = Field(
        ...,
        max_length=255,
        nullable=False,
        description="Customer identity (email)"
    )

    booking_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Optional booking the conversation belongs to"
    )

    # NULL booking ids never collide in a plain composite unique index,
    # so uniqueness is enforced on a digest of the whole key instead
    conversation_key: str = Field(
        ...,
        sa_column=Column(String(64), unique=True, nullable=False),
        description="sha256 of the JSON-encoded (provider_id, customer_email, booking_id)"
    )

    status: str = Field(
        default="active",
        max_length=20,
        nullable=False,
        description="'active' or 'closed'"
    )
