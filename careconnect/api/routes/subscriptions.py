"""
Subscription API Routes

REST API endpoints for provider subscription access and billing.
Follows FastAPI best practices with dependency injection.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from careconnect.config.settings import get_settings
from careconnect.domain.subscription import (
    AccessDecision,
    CheckoutResponse,
    CreateCheckoutRequest,
    PLANS,
    PlanInfo,
    PortalResponse,
    SubscriptionUpdate,
)
from careconnect.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)
from careconnect.api.dependencies import (
    AccessServiceDep,
    CurrentUser,
    SubscriptionRepoDep,
    get_current_user,
    get_current_user_id,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Access Endpoints
# =============================================================================

@router.get("/subscriptions/access", response_model=AccessDecision)
async def get_user_access(
    access_service: AccessServiceDep,
    user_id: str = Depends(get_current_user_id),
):
    """
    Access decision for the signed-in user, whatever their role.

    Care seekers always have access; providers need a live subscription.
    """
    return await access_service.check_user_access(user_id)


@router.get("/subscriptions/provider-access", response_model=AccessDecision)
async def get_provider_access(
    access_service: AccessServiceDep,
    user_id: str = Depends(get_current_user_id),
):
    """Subscription access decision for the signed-in provider."""
    return await access_service.check_provider_access(user_id)


@router.get("/subscriptions/plans", response_model=List[PlanInfo])
async def get_plans():
    """Available provider plans."""
    return list(PLANS.values())


# =============================================================================
# Checkout Endpoints
# =============================================================================

@router.post("/subscriptions/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    request: CreateCheckoutRequest,
    repo: SubscriptionRepoDep,
    user: CurrentUser = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Create a Stripe Checkout session for a provider plan.

    The provider's Stripe customer is created on first checkout and its ID
    saved on the provider record.
    """
    settings = get_settings()

    provider = await repo.get_provider_account(user.id)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Provider not found"
        )

    try:
        existing_customer_id = provider.subscription.stripe_customer_id
        customer = await stripe_service.get_or_create_customer(
            provider_id=provider.id,
            user_id=user.id,
            email=provider.contact_email or user.email or "",
            business_name=provider.business_name,
            existing_customer_id=existing_customer_id,
        )

        if customer.id != existing_customer_id:
            await repo.update_subscription(
                provider.id,
                SubscriptionUpdate(stripe_customer_id=customer.id),
            )

        session = await stripe_service.create_checkout_session(
            customer_id=customer.id,
            plan_id=request.plan_id,
            provider_id=provider.id,
            user_id=user.id,
            success_url=(
                f"{settings.app_url}/dashboard"
                "?session_id={CHECKOUT_SESSION_ID}&subscription_success=true"
            ),
            cancel_url=f"{settings.app_url}/subscribe?canceled=true",
        )

        return CheckoutResponse(
            checkout_url=session.url,
            session_id=session.id,
        )

    except StripeServiceError as e:
        logger.error(f"Checkout error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        )


# =============================================================================
# Portal Endpoints
# =============================================================================

@router.post("/subscriptions/portal", response_model=PortalResponse)
async def create_portal_session(
    repo: SubscriptionRepoDep,
    user_id: str = Depends(get_current_user_id),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Create a Stripe Billing Portal session.

    Lets providers update payment methods, view invoices and cancel.
    """
    settings = get_settings()

    record = await repo.get_by_user_id(user_id)
    if record is None or not record.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No billing account found. Please subscribe first."
        )

    try:
        session = await stripe_service.create_portal_session(
            customer_id=record.stripe_customer_id,
            return_url=f"{settings.app_url}/dashboard",
        )
        return PortalResponse(portal_url=session.url)

    except StripeServiceError as e:
        logger.error(f"Portal error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create portal session"
        )
