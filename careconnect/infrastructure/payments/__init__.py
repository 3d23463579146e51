"""
Payments Infrastructure Module

Stripe payment processing for provider subscriptions.
"""

from careconnect.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)

__all__ = ["StripeService", "StripeServiceError", "get_stripe_service"]
