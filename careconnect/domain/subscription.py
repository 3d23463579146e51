"""
Subscription Domain Models

Domain models for provider subscription access following Clean Architecture.
Enums, DTOs, and the access decision procedure for the subscription
bounded context.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    """Provider subscription lifecycle status."""
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"
    NO_ACCOUNT = "no_account"


class PlanId(str, Enum):
    """Purchasable provider plans."""
    BASIC = "basic"
    PREMIUM = "premium"


# Stripe subscription status -> stored provider status
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.EXPIRED,
    "unpaid": SubscriptionStatus.EXPIRED,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "trialing": SubscriptionStatus.PENDING,
}


def status_from_stripe(stripe_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status; anything unknown counts as expired."""
    return STRIPE_STATUS_MAP.get(stripe_status or "", SubscriptionStatus.EXPIRED)


def parse_stored_status(value: Optional[str]) -> Optional[SubscriptionStatus]:
    """
    Convert a raw status column into the enum.

    Legacy values ('trial', 'paused', '') are not part of the enumeration
    and are treated as expired so they can never grant access.
    """
    if value is None:
        return None
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return SubscriptionStatus.EXPIRED


# =============================================================================
# Domain Entities
# =============================================================================

class SubscriptionRecord(BaseModel):
    """Subscription fields stored on a provider (one-to-one)."""
    provider_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    plan_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ProviderAccount(BaseModel):
    """Provider identity needed for billing, with its subscription."""
    id: str
    user_id: str
    business_name: str
    contact_email: Optional[str] = None
    subscription: SubscriptionRecord


class SubscriptionUpdate(BaseModel):
    """
    Partial update applied by the Stripe webhook.

    Only fields explicitly set are written.
    """
    status: Optional[SubscriptionStatus] = None
    plan_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class PaymentOutcome(str, Enum):
    """Result logged in a provider's billing history."""
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentRecord(BaseModel):
    """One entry of a provider's billing history."""
    id: Optional[str] = None
    provider_id: str
    status: PaymentOutcome
    plan_id: Optional[str] = None
    amount_cents: int = 0
    payment_method: str = "stripe"
    stripe_invoice_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class StripeSyncResult(BaseModel):
    """Outcome of re-reading a provider's subscription from Stripe."""
    provider_id: str
    message: str
    stripe_status: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    period_end: Optional[datetime] = None


class AccessDecision(BaseModel):
    """Outcome of an access check."""
    has_access: bool
    status: SubscriptionStatus
    requires_payment: bool
    message: str

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CreateCheckoutRequest(BaseModel):
    """Request DTO for creating a checkout session."""
    plan_id: PlanId = Field(
        default=PlanId.BASIC,
        description="Provider plan to purchase"
    )


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    """Response DTO for portal session creation."""
    portal_url: str


class PlanInfo(BaseModel):
    """Display information for a single plan."""
    id: PlanId
    name: str
    price_display: str
    interval: str = "month"
    features: list[str]


# =============================================================================
# Plan Configuration
# =============================================================================

PLANS = {
    PlanId.BASIC: PlanInfo(
        id=PlanId.BASIC,
        name="Basic Provider Plan",
        price_display="$99.99",
        features=[
            "List your facility",
            "Receive unlimited referral requests",
            "Upload up to 10 photos",
            "Manage availability and capacity",
            "245D verified badge",
            "Messaging with care seekers",
            "Email support",
        ],
    ),
    PlanId.PREMIUM: PlanInfo(
        id=PlanId.PREMIUM,
        name="Premium Provider Plan",
        price_display="$139.99",
        features=[
            "Everything in Basic",
            "Priority placement in search results",
            "Featured provider badge",
            "Upload up to 50 photos",
            "Advanced analytics dashboard",
            "Priority support",
            "Dedicated account manager",
        ],
    ),
}


# =============================================================================
# Access Resolution (Business Logic)
# =============================================================================

GRANDFATHER_THRESHOLD_YEARS = 50

MSG_NO_ACCOUNT = "No provider account found"
MSG_PERMANENT = "Grandfathered account - permanent access"
MSG_ACTIVE = "Subscription active"
MSG_PAST_DUE = "Your payment is past due. Please update your billing details."
MSG_SUBSCRIBE = "Please subscribe to list your facility"


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps may come back naive (TIMESTAMP WITHOUT TIME ZONE)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def no_account_decision(message: str = MSG_NO_ACCOUNT, requires_payment: bool = True) -> AccessDecision:
    """Decision for a caller with no subscription record."""
    return AccessDecision(
        has_access=False,
        status=SubscriptionStatus.NO_ACCOUNT,
        requires_payment=requires_payment,
        message=message,
    )


def resolve_access(
    record: Optional[SubscriptionRecord],
    now: Optional[datetime] = None,
    grandfather_years: int = GRANDFATHER_THRESHOLD_YEARS,
) -> AccessDecision:
    """
    Decide whether a provider may use paid features.

    Pure function: reads the record, never mutates it and performs no I/O.
    Checks run in a fixed order; each later check assumes the earlier ones
    did not match. There is no trial grace period.
    """
    if record is None:
        return no_account_decision()

    now = _as_utc(now) if now else datetime.now(timezone.utc)

    if record.status == SubscriptionStatus.ACTIVE:
        if record.period_end is not None:
            period_end = _as_utc(record.period_end)
            if period_end.year - now.year > grandfather_years:
                return AccessDecision(
                    has_access=True,
                    status=SubscriptionStatus.ACTIVE,
                    requires_payment=False,
                    message=MSG_PERMANENT,
                )
            if period_end > now:
                return AccessDecision(
                    has_access=True,
                    status=SubscriptionStatus.ACTIVE,
                    requires_payment=False,
                    message=MSG_ACTIVE,
                )
        else:
            # Active with no end date is permanent
            return AccessDecision(
                has_access=True,
                status=SubscriptionStatus.ACTIVE,
                requires_payment=False,
                message=MSG_ACTIVE,
            )

    if record.status == SubscriptionStatus.PAST_DUE:
        return AccessDecision(
            has_access=False,
            status=SubscriptionStatus.PAST_DUE,
            requires_payment=True,
            message=MSG_PAST_DUE,
        )

    return AccessDecision(
        has_access=False,
        status=SubscriptionStatus.EXPIRED,
        requires_payment=True,
        message=MSG_SUBSCRIBE,
    )
