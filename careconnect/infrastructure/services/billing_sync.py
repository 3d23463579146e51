"""
Billing Sync Service

Re-reads a provider's subscription from Stripe and rewrites the stored
status and period. Used by support when a webhook was missed or applied
out of order.
"""

import logging
from typing import Optional

from careconnect.domain.subscription import (
    StripeSyncResult,
    SubscriptionStatus,
    SubscriptionUpdate,
    status_from_stripe,
)
from careconnect.infrastructure.db.repositories.base_repository import ISubscriptionStore
from careconnect.infrastructure.db.repositories.subscription_repository import (
    get_subscription_repository,
)
from careconnect.infrastructure.exceptions import InvalidInputError, NotFoundError
from careconnect.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
    subscription_period,
    subscription_price,
)


logger = logging.getLogger(__name__)

# Stripe statuses preferred when a customer has several subscriptions
CURRENT_STRIPE_STATUSES = ("active", "trialing")


class BillingSyncService:
    """Brings stored provider subscriptions back in line with Stripe."""

    def __init__(self, store: ISubscriptionStore, stripe_service: StripeService):
        self._store = store
        self._stripe = stripe_service

    async def sync_provider(self, provider_id: str) -> StripeSyncResult:
        """
        Overwrite a provider's subscription fields with Stripe's view.

        The customer's active or trialing subscription wins; otherwise the
        most recent one is used. A provider stored as active with no Stripe
        subscription at all is expired.

        Raises:
            NotFoundError: unknown provider
            InvalidInputError: provider has no Stripe customer yet
            StripeServiceError: Stripe could not be queried
        """
        record = await self._store.get_by_provider_id(provider_id)
        if record is None:
            raise NotFoundError(
                f"Provider {provider_id} not found",
                operation="sync_provider",
                table="providers",
            )
        if not record.stripe_customer_id:
            raise InvalidInputError(
                f"Provider {provider_id} has no Stripe customer",
                field="provider_id",
            )

        subscriptions = await self._stripe.list_customer_subscriptions(record.stripe_customer_id)
        if not subscriptions:
            return await self._sync_without_subscription(provider_id, record.status)

        subscription = next(
            (s for s in subscriptions if s.get("status") in CURRENT_STRIPE_STATUSES),
            subscriptions[0],
        )
        stripe_status = subscription.get("status")
        period_start, period_end = subscription_period(subscription)

        update = SubscriptionUpdate(
            status=status_from_stripe(stripe_status),
            stripe_subscription_id=subscription.get("id"),
            period_end=period_end,
        )
        if period_start is not None:
            update.period_start = period_start
        plan_id = self._stripe.plan_for_price(subscription_price(subscription).get("id"))
        if plan_id is not None:
            update.plan_id = plan_id.value

        updated = await self._store.update_subscription(provider_id, update)
        logger.info(f"Synced provider {provider_id} from Stripe: {stripe_status} -> {update.status.value}")

        return StripeSyncResult(
            provider_id=provider_id,
            message="Synced successfully",
            stripe_status=stripe_status,
            stripe_subscription_id=subscription.get("id"),
            status=updated.status if updated else update.status,
            period_end=period_end,
        )

    async def _sync_without_subscription(
        self,
        provider_id: str,
        current: Optional[SubscriptionStatus],
    ) -> StripeSyncResult:
        if current != SubscriptionStatus.ACTIVE:
            return StripeSyncResult(
                provider_id=provider_id,
                message="No Stripe subscriptions found",
                status=current,
            )

        await self._store.update_subscription(
            provider_id,
            SubscriptionUpdate(
                status=SubscriptionStatus.EXPIRED,
                stripe_subscription_id=None,
            ),
        )
        logger.warning(f"Provider {provider_id} was active without a Stripe subscription; expired")
        return StripeSyncResult(
            provider_id=provider_id,
            message="No Stripe subscription found - marked as expired",
            status=SubscriptionStatus.EXPIRED,
        )


def get_billing_sync_service() -> BillingSyncService:
    """Create a sync service over the shared repository and Stripe client."""
    return BillingSyncService(get_subscription_repository(), get_stripe_service())
