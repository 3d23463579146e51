"""
Message SQLModel for CareConnect

Database model for conversation messages.
Follows SOLID principles:
- Single Responsibility: Only defines Message schema
- Open/Closed: Extensible via inheritance
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Text, UniqueConstraint, Uuid
from sqlmodel import Field, SQLModel

from careconnect.infrastructure.db.models.base import utcnow


class Message(SQLModel, table=True):
    """
    Message database table model.

    Append-only apart from the is_read flag.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        nullable=False,
        description="Unique message identifier"
    )

    conversation_id: UUID = Field(
        ...,
        sa_column=Column(
            "conversation_id",
            Uuid,
            ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        description="Reference to parent conversation"
    )

    # Position within the conversation, starting at 1; defines message order
    sequence: int = Field(
        ...,
        sa_column=Column(BigInteger, nullable=False),
        description="Insertion position within the conversation"
    )

    sender_type: str = Field(
        ...,
        max_length=20,
        nullable=False,
        description="'support' or 'customer'"
    )

    sender_id: str = Field(..., max_length=255, nullable=False)

    content: str = Field(
        ...,
        sa_column=Column(Text, nullable=False),
        description="Message content"
    )

    is_read: bool = Field(default=False, nullable=False)
    is_flagged: bool = Field(default=False, nullable=False)

    # Assigned by the server when the message is accepted
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        description="Acceptance timestamp (UTC)"
    )
