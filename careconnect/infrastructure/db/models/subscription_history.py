"""
Subscription History Model

Append-only billing log: one row per completed checkout or failed payment.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import Column, ForeignKey, Text, Uuid
from sqlmodel import Field

from careconnect.infrastructure.db.models.base import BaseTable


class SubscriptionHistory(BaseTable, table=True):
    """Maps to the 'subscription_history' table."""

    __tablename__ = "subscription_history"

    provider_id: UUID = Field(
        ...,
        sa_column=Column(
            "provider_id",
            Uuid,
            ForeignKey("providers.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    plan_id: Optional[str] = Field(default=None, max_length=64)

    # Smallest currency unit, as Stripe reports it
    amount_cents: int = Field(default=0, nullable=False)

    status: str = Field(..., max_length=20, description="'completed' or 'failed'")
    payment_method: str = Field(default="stripe", max_length=20)
    stripe_invoice_id: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
