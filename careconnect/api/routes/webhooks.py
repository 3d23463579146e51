"""
Stripe Webhook Handler

Handles Stripe webhook events for provider subscription lifecycle.
Implements idempotent event processing backed by the database (survives restarts).

Critical Events:
- checkout.session.completed: Start the subscription and log the payment
- invoice.payment_succeeded: Reactivate and extend the period
- invoice.payment_failed: Mark the provider past due and log the failure
- customer.subscription.updated: Sync status and period end
- customer.subscription.deleted: Expire the subscription
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, status

from careconnect.domain.subscription import (
    PaymentOutcome,
    PaymentRecord,
    SubscriptionStatus,
    SubscriptionUpdate,
    status_from_stripe,
)
from careconnect.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
    subscription_period,
    timestamp_to_datetime,
    subscription_price,
)
from careconnect.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Webhook Endpoint
# =============================================================================

@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Verifies signature and applies subscription lifecycle events. Processing
    errors are logged and still acknowledged with 200; Stripe would
    otherwise retry them indefinitely.
    """
    stripe_service = get_stripe_service()
    repo = get_subscription_repository()

    # Get raw payload and signature
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    # Verify signature
    try:
        event = stripe_service.verify_webhook_signature(payload, signature)
    except StripeServiceError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )

    event_id = event.get("id")
    event_type = event.get("type")

    # Idempotency check
    if await repo.is_event_processed(event_id):
        logger.info(f"Event {event_id} already processed, skipping")
        return {"status": "already_processed"}

    logger.info(f"Processing webhook event: {event_type} ({event_id})")

    try:
        data = event["data"]["object"]

        if event_type == "checkout.session.completed":
            await handle_checkout_completed(data, repo, stripe_service)

        elif event_type == "invoice.payment_succeeded":
            await handle_invoice_payment_succeeded(data, repo, stripe_service)

        elif event_type == "invoice.payment_failed":
            await handle_invoice_payment_failed(data, repo)

        elif event_type == "customer.subscription.updated":
            await handle_subscription_updated(data, repo)

        elif event_type == "customer.subscription.deleted":
            await handle_subscription_deleted(data, repo)

        else:
            logger.debug(f"Unhandled event type: {event_type}")

        # Mark as processed (DB-backed)
        await repo.mark_event_processed(event_id, event_type)

        return {"status": "success"}

    except Exception as e:
        logger.exception(f"Error processing webhook {event_type}: {e}")
        return {"status": "error", "message": "Processing error logged"}


# =============================================================================
# Helpers
# =============================================================================

async def _provider_id_for_customer(
    customer_id: Optional[str],
    repo: SubscriptionRepository,
) -> Optional[str]:
    if not customer_id:
        return None
    record = await repo.get_by_stripe_customer_id(customer_id)
    if record is None:
        logger.error(f"Provider not found for customer {customer_id}")
        return None
    return record.provider_id


def _object_id(value) -> Optional[str]:
    """ID of a Stripe reference that may or may not be expanded."""
    if isinstance(value, dict):
        return value.get("id")
    return value


# =============================================================================
# Event Handlers
# =============================================================================

async def handle_checkout_completed(
    session: dict,
    repo: SubscriptionRepository,
    stripe_service: StripeService,
):
    """
    Handle successful checkout session completion.

    Trialing subscriptions are stored as pending; everything else as active.
    """
    metadata = session.get("metadata") or {}
    provider_id = metadata.get("provider_id")
    subscription_id = session.get("subscription")

    if not provider_id or not subscription_id:
        logger.warning("Checkout completed without provider_id or subscription")
        return

    subscription = await stripe_service.retrieve_subscription(subscription_id)

    new_status = (
        SubscriptionStatus.PENDING
        if subscription.get("status") == "trialing"
        else SubscriptionStatus.ACTIVE
    )

    update = SubscriptionUpdate(
        status=new_status,
        plan_id=metadata.get("plan"),
        period_start=timestamp_to_datetime(subscription.get("created")),
        period_end=subscription_period(subscription)[1],
        stripe_subscription_id=subscription.get("id") or subscription_id,
    )
    if session.get("customer"):
        update.stripe_customer_id = session["customer"]

    updated = await repo.update_subscription(provider_id, update)
    if updated is None:
        logger.error(f"Checkout completed for unknown provider {provider_id}")
        return

    await repo.record_payment(PaymentRecord(
        provider_id=provider_id,
        status=PaymentOutcome.COMPLETED,
        plan_id=metadata.get("plan"),
        amount_cents=subscription_price(subscription).get("unit_amount") or 0,
        stripe_invoice_id=_object_id(subscription.get("latest_invoice")),
    ))

    logger.info(f"Started {new_status.value} subscription for provider {provider_id}")


async def handle_invoice_payment_succeeded(
    invoice: dict,
    repo: SubscriptionRepository,
    stripe_service: StripeService,
):
    """Reactivate the provider and extend the period end."""
    provider_id = await _provider_id_for_customer(invoice.get("customer"), repo)
    subscription_id = invoice.get("subscription")

    if not provider_id or not subscription_id:
        return

    subscription = await stripe_service.retrieve_subscription(subscription_id)

    await repo.update_subscription(
        provider_id,
        SubscriptionUpdate(
            status=SubscriptionStatus.ACTIVE,
            period_end=subscription_period(subscription)[1],
        ),
    )
    logger.info(f"Renewed subscription for provider {provider_id}")


async def handle_invoice_payment_failed(invoice: dict, repo: SubscriptionRepository):
    """Set the provider past due and log the failed charge."""
    provider_id = await _provider_id_for_customer(invoice.get("customer"), repo)

    if not provider_id:
        return

    await repo.update_subscription(
        provider_id,
        SubscriptionUpdate(status=SubscriptionStatus.PAST_DUE),
    )
    await repo.record_payment(PaymentRecord(
        provider_id=provider_id,
        status=PaymentOutcome.FAILED,
        amount_cents=invoice.get("amount_due") or 0,
        stripe_invoice_id=invoice.get("id"),
        notes="Payment failed",
    ))
    logger.warning(f"Payment failed for provider {provider_id}, set to past_due")


async def handle_subscription_updated(subscription_data: dict, repo: SubscriptionRepository):
    """Sync status and period end from Stripe."""
    provider_id = await _provider_id_for_customer(subscription_data.get("customer"), repo)

    if not provider_id:
        return

    update = SubscriptionUpdate(status=status_from_stripe(subscription_data.get("status")))
    period_end = subscription_period(subscription_data)[1]
    if period_end is not None:
        update.period_end = period_end

    await repo.update_subscription(provider_id, update)
    logger.info(f"Synced subscription for provider {provider_id}: {subscription_data.get('status')}")


async def handle_subscription_deleted(subscription_data: dict, repo: SubscriptionRepository):
    """Expire the provider's subscription as of now."""
    provider_id = await _provider_id_for_customer(subscription_data.get("customer"), repo)

    if not provider_id:
        return

    await repo.update_subscription(
        provider_id,
        SubscriptionUpdate(
            status=SubscriptionStatus.EXPIRED,
            period_end=datetime.now(timezone.utc),
        ),
    )
    logger.info(f"Marked subscription expired for provider {provider_id}")
