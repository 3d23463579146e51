"""
Stripe Payment Service

Clean Architecture infrastructure service for Stripe payment processing.
Handles provider customers, subscription checkout, and the billing portal.

- Hosted Checkout for minimal PCI burden
- Customer Portal for subscription management
- Webhook signature verification before any event is trusted
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

import stripe
from stripe import StripeError

from careconnect.config.settings import get_settings
from careconnect.domain.subscription import PlanId
from careconnect.infrastructure.exceptions import CareConnectError


logger = logging.getLogger(__name__)


# =============================================================================
# Stripe Payload Helpers
# =============================================================================

def timestamp_to_datetime(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period(subscription: dict) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Current period (start, end) of a Stripe subscription.

    Newer API versions only report it per subscription item.
    """
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return timestamp_to_datetime(start), timestamp_to_datetime(end)


def subscription_price(subscription: dict) -> dict:
    """Price of the subscription's first item, or an empty dict."""
    return _first_item(subscription).get("price") or {}


class StripeServiceError(CareConnectError):
    """Raised when a Stripe call fails or Stripe is not configured."""
    pass


class StripeService:
    """
    Stripe payment processing service.

    Every call that reaches Stripe wraps StripeError into StripeServiceError
    so routes only deal with one exception type.
    """

    def __init__(self):
        """Initialize Stripe with API key from settings."""
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._trial_period_days = settings.stripe_trial_period_days

        if self._api_key:
            stripe.api_key = self._api_key

        self._price_map = {
            PlanId.BASIC: settings.stripe_price_id_basic,
            PlanId.PREMIUM: settings.stripe_price_id_premium,
        }

    def _get_price_id(self, plan_id: PlanId) -> str:
        """Get Stripe Price ID for a plan."""
        price_id = self._price_map.get(plan_id)

        if not price_id:
            raise StripeServiceError(f"No price configured for plan {plan_id.value}")

        return price_id

    def _require_configured(self) -> None:
        if not self._api_key:
            raise StripeServiceError("Payment system not configured. Please contact support.")

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def create_customer(
        self,
        provider_id: str,
        user_id: str,
        email: str,
        business_name: Optional[str] = None,
    ) -> stripe.Customer:
        """
        Create a new Stripe customer for a provider.

        Args:
            provider_id: Provider row ID (stored in metadata)
            user_id: Auth user ID (stored in metadata)
            email: Customer email for receipts
            business_name: Optional provider business name
        """
        self._require_configured()
        try:
            customer = stripe.Customer.create(
                email=email,
                name=business_name,
                metadata={
                    "provider_id": provider_id,
                    "user_id": user_id,
                    "business_name": business_name or "",
                },
            )
            logger.info(f"Created Stripe customer {customer.id} for provider {provider_id}")
            return customer

        except StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise StripeServiceError(f"Failed to create customer: {e.user_message}", original_error=e)

    async def get_or_create_customer(
        self,
        provider_id: str,
        user_id: str,
        email: str,
        business_name: Optional[str] = None,
        existing_customer_id: Optional[str] = None,
    ) -> stripe.Customer:
        """
        Get existing customer or create new one.

        A stored customer ID that Stripe no longer knows (or reports as
        deleted) is replaced by a fresh customer.
        """
        self._require_configured()
        if existing_customer_id:
            try:
                customer = stripe.Customer.retrieve(existing_customer_id)
                if not customer.get("deleted"):
                    return customer
            except StripeError:
                logger.warning(f"Customer {existing_customer_id} not found, creating new")

        return await self.create_customer(provider_id, user_id, email, business_name)

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        plan_id: PlanId,
        provider_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> stripe.checkout.Session:
        """
        Create a Stripe Checkout Session for a provider subscription.

        The provider ID is written to both session and subscription metadata
        so webhooks can find the provider again.
        """
        self._require_configured()
        price_id = self._get_price_id(plan_id)
        metadata = {
            "provider_id": provider_id,
            "user_id": user_id,
            "plan": plan_id.value,
        }

        subscription_data = {"metadata": metadata}
        if self._trial_period_days:
            subscription_data["trial_period_days"] = self._trial_period_days

        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price": price_id,
                        "quantity": 1,
                    }
                ],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data=subscription_data,
            )

            logger.info(f"Created checkout session {session.id} for provider {provider_id}, plan={plan_id.value}")
            return session

        except StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise StripeServiceError(f"Checkout failed: {e.user_message}", original_error=e)

    # =========================================================================
    # Customer Portal
    # =========================================================================

    async def create_portal_session(
        self,
        customer_id: str,
        return_url: str,
    ) -> stripe.billing_portal.Session:
        """
        Create a Billing Portal session for self-service management.

        Args:
            customer_id: Stripe customer ID
            return_url: URL to return to after portal session
        """
        self._require_configured()
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )

            logger.info(f"Created portal session for customer {customer_id}")
            return session

        except StripeError as e:
            logger.error(f"Failed to create portal session: {e}")
            raise StripeServiceError("Failed to create portal session", original_error=e)

    # =========================================================================
    # Subscription Queries
    # =========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> stripe.Subscription:
        """
        Retrieve a subscription by ID.

        Raises:
            StripeServiceError: subscription could not be fetched
        """
        try:
            return stripe.Subscription.retrieve(subscription_id)
        except StripeError as e:
            logger.warning(f"Failed to retrieve subscription {subscription_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve subscription {subscription_id}", original_error=e)

    async def list_customer_subscriptions(self, customer_id: str, limit: int = 10) -> list:
        """
        Most recent subscriptions of a customer, in any status.

        Raises:
            StripeServiceError: Stripe unreachable or not configured
        """
        self._require_configured()
        try:
            result = stripe.Subscription.list(customer=customer_id, status="all", limit=limit)
            return list(result.data)
        except StripeError as e:
            logger.warning(f"Failed to list subscriptions for customer {customer_id}: {e}")
            raise StripeServiceError(f"Failed to list subscriptions for {customer_id}", original_error=e)

    def plan_for_price(self, price_id: Optional[str]) -> Optional[PlanId]:
        """Reverse lookup of a configured price ID."""
        for plan_id, configured in self._price_map.items():
            if price_id and configured == price_id:
                return plan_id
        return None

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> stripe.Event:
        """
        Verify webhook signature and construct event.

        Raises:
            StripeServiceError: payload, signature, or secret is invalid
        """
        if not self._webhook_secret:
            raise StripeServiceError("Webhook secret not configured")
        try:
            return stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
        except ValueError as e:
            raise StripeServiceError(f"Invalid payload: {e}", original_error=e)
        except stripe.SignatureVerificationError as e:
            raise StripeServiceError(f"Invalid signature: {e}", original_error=e)


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_service_instance: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get or create Stripe service singleton."""
    global _stripe_service_instance

    if _stripe_service_instance is None:
        _stripe_service_instance = StripeService()

    return _stripe_service_instance
