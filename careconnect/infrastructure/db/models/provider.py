"""
Provider and CareSeeker Database Models

SQLModel tables for the two account types. Providers carry their
subscription fields (one-to-one SubscriptionRecord) as columns.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field

from careconnect.infrastructure.db.models.base import BaseTable


class Provider(BaseTable, table=True):
    """
    Provider table model.

    Maps to the 'providers' table in PostgreSQL. Subscription columns are
    written by the Stripe webhook and read by the access resolver.
    """

    __tablename__ = "providers"

    # Reference to auth.users
    user_id: str = Field(..., max_length=64, unique=True, index=True, nullable=False)

    business_name: str = Field(..., max_length=255)
    contact_email: Optional[str] = Field(default=None, max_length=255)

    # Subscription
    subscription_status: Optional[str] = Field(default=None, max_length=20)
    subscription_plan_id: Optional[str] = Field(default=None, max_length=64)
    subscription_start_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    subscription_end_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    # Stripe IDs
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255)


class CareSeeker(BaseTable, table=True):
    """Care seekers browse and message for free."""

    __tablename__ = "care_seekers"

    user_id: str = Field(..., max_length=64, unique=True, index=True, nullable=False)
    email: Optional[str] = Field(default=None, max_length=255)
