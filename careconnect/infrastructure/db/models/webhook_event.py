"""
Processed Webhook Event Model

Records Stripe events that have already been applied so retries are no-ops.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from careconnect.infrastructure.db.models.base import utcnow


class ProcessedWebhookEvent(SQLModel, table=True):
    """Maps to the 'processed_webhook_events' table."""

    __tablename__ = "processed_webhook_events"

    event_id: str = Field(..., primary_key=True, max_length=255)
    event_type: str = Field(..., max_length=100)
    processed_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        index=True,
    )
