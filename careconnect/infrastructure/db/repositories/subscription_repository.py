"""
Subscription Repository

Data access layer for provider subscription fields and Stripe webhook
bookkeeping. Follows Repository pattern for Clean Architecture.
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from careconnect.domain.subscription import (
    PaymentOutcome,
    PaymentRecord,
    ProviderAccount,
    SubscriptionRecord,
    SubscriptionUpdate,
    parse_stored_status,
)
from careconnect.infrastructure.db.models import (
    CareSeeker,
    Provider,
    ProcessedWebhookEvent,
    SubscriptionHistory,
)
from careconnect.infrastructure.db.models.base import as_utc, utcnow
from careconnect.infrastructure.db.repositories.base_repository import (
    ISubscriptionStore,
    SessionRepository,
    store_operation,
    to_uuid,
)


logger = logging.getLogger(__name__)


# Provider column names for each SubscriptionUpdate field
_UPDATE_COLUMNS = {
    "status": "subscription_status",
    "plan_id": "subscription_plan_id",
    "period_start": "subscription_start_date",
    "period_end": "subscription_end_date",
    "stripe_customer_id": "stripe_customer_id",
    "stripe_subscription_id": "stripe_subscription_id",
}


class SubscriptionRepository(SessionRepository, ISubscriptionStore):
    """
    Repository for provider subscription data access.

    Subscription fields live on the providers table; every read maps them
    into a SubscriptionRecord domain model.
    """

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_user_id(self, user_id: str) -> Optional[SubscriptionRecord]:
        """
        Get the subscription record for a provider's auth user.

        Args:
            user_id: Auth user ID

        Returns:
            SubscriptionRecord or None when the user is not a provider
        """
        model = await self._get_provider(Provider.user_id == user_id, "get_by_user_id")
        return self._to_domain(model) if model else None

    async def get_provider_account(self, user_id: str) -> Optional[ProviderAccount]:
        """Get provider identity and subscription for billing flows."""
        model = await self._get_provider(Provider.user_id == user_id, "get_provider_account")
        if model is None:
            return None
        return ProviderAccount(
            id=str(model.id),
            user_id=model.user_id,
            business_name=model.business_name,
            contact_email=model.contact_email,
            subscription=self._to_domain(model),
        )

    async def get_by_provider_id(self, provider_id: str) -> Optional[SubscriptionRecord]:
        """Get the subscription record of a provider row."""
        provider_uuid = to_uuid(provider_id)
        if provider_uuid is None:
            return None
        model = await self._get_provider(Provider.id == provider_uuid, "get_by_provider_id")
        return self._to_domain(model) if model else None

    async def get_by_stripe_customer_id(
        self,
        stripe_customer_id: str,
    ) -> Optional[SubscriptionRecord]:
        """
        Get subscription by Stripe customer ID.

        Args:
            stripe_customer_id: Stripe customer ID

        Returns:
            SubscriptionRecord or None
        """
        model = await self._get_provider(
            Provider.stripe_customer_id == stripe_customer_id,
            "get_by_stripe_customer_id",
        )
        return self._to_domain(model) if model else None

    async def is_provider(self, user_id: str) -> bool:
        model = await self._get_provider(Provider.user_id == user_id, "is_provider")
        return model is not None

    async def is_care_seeker(self, user_id: str) -> bool:
        async with store_operation("is_care_seeker", "care_seekers"):
            async with self.session_factory() as session:
                statement = select(CareSeeker.id).where(CareSeeker.user_id == user_id)
                result = await session.execute(statement)
                return result.first() is not None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def update_subscription(
        self,
        provider_id: str,
        update: SubscriptionUpdate,
    ) -> Optional[SubscriptionRecord]:
        """
        Apply a partial subscription update to a provider.

        Args:
            provider_id: Provider row ID
            update: Fields to write; unset fields are left untouched

        Returns:
            Updated SubscriptionRecord or None if the provider does not exist
        """
        provider_uuid = to_uuid(provider_id)
        if provider_uuid is None:
            return None

        async with store_operation("update_subscription", "providers"):
            async with self.session_factory() as session:
                model = await session.get(Provider, provider_uuid)
                if model is None:
                    return None

                for field, value in update.model_dump(exclude_unset=True).items():
                    if field == "status" and value is not None:
                        value = value.value if hasattr(value, "value") else value
                    setattr(model, _UPDATE_COLUMNS[field], value)
                model.updated_at = utcnow()

                session.add(model)
                await session.commit()
                await session.refresh(model)

                logger.info(
                    f"Updated subscription for provider {provider_id}: "
                    f"status={model.subscription_status}"
                )
                return self._to_domain(model)

    # =========================================================================
    # Billing History
    # =========================================================================

    async def record_payment(self, entry: PaymentRecord) -> Optional[PaymentRecord]:
        """
        Append a billing history row for a provider.

        Returns:
            The stored entry, or None if the provider does not exist
        """
        provider_uuid = to_uuid(entry.provider_id)
        if provider_uuid is None:
            return None

        async with store_operation("record_payment", "subscription_history"):
            async with self.session_factory() as session:
                if await session.get(Provider, provider_uuid) is None:
                    return None
                model = SubscriptionHistory(
                    provider_id=provider_uuid,
                    plan_id=entry.plan_id,
                    amount_cents=entry.amount_cents,
                    status=entry.status.value,
                    payment_method=entry.payment_method,
                    stripe_invoice_id=entry.stripe_invoice_id,
                    notes=entry.notes,
                )
                session.add(model)
                await session.commit()
                await session.refresh(model)

                logger.info(f"Logged {entry.status.value} payment for provider {entry.provider_id}")
                return self._payment_to_domain(model)

    async def list_payments(self, provider_id: str) -> List[PaymentRecord]:
        """Billing history of a provider, newest first."""
        provider_uuid = to_uuid(provider_id)
        if provider_uuid is None:
            return []
        async with store_operation("list_payments", "subscription_history"):
            async with self.session_factory() as session:
                statement = (
                    select(SubscriptionHistory)
                    .where(SubscriptionHistory.provider_id == provider_uuid)
                    .order_by(SubscriptionHistory.created_at.desc())
                )
                result = await session.execute(statement)
                return [self._payment_to_domain(m) for m in result.scalars().all()]

    # =========================================================================
    # Webhook Idempotency
    # =========================================================================

    async def is_event_processed(self, event_id: str) -> bool:
        """Check if a Stripe event has already been applied."""
        async with store_operation("is_event_processed", "processed_webhook_events"):
            async with self.session_factory() as session:
                model = await session.get(ProcessedWebhookEvent, event_id)
                return model is not None

    async def mark_event_processed(self, event_id: str, event_type: str) -> None:
        """Record a Stripe event as applied; repeated calls are no-ops."""
        async with store_operation("mark_event_processed", "processed_webhook_events"):
            async with self.session_factory() as session:
                await session.merge(
                    ProcessedWebhookEvent(event_id=event_id, event_type=event_type)
                )
                await session.commit()

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_provider(self, condition, operation: str) -> Optional[Provider]:
        async with store_operation(operation, "providers"):
            async with self.session_factory() as session:
                result = await session.execute(select(Provider).where(condition))
                return result.scalars().first()

    @staticmethod
    def _payment_to_domain(model: SubscriptionHistory) -> PaymentRecord:
        return PaymentRecord(
            id=str(model.id),
            provider_id=str(model.provider_id),
            status=PaymentOutcome(model.status),
            plan_id=model.plan_id,
            amount_cents=model.amount_cents,
            payment_method=model.payment_method,
            stripe_invoice_id=model.stripe_invoice_id,
            notes=model.notes,
            created_at=as_utc(model.created_at),
        )

    @staticmethod
    def _to_domain(model: Provider) -> SubscriptionRecord:
        """Convert database model to domain model."""
        return SubscriptionRecord(
            provider_id=str(model.id),
            status=parse_stored_status(model.subscription_status),
            plan_id=model.subscription_plan_id,
            period_start=as_utc(model.subscription_start_date),
            period_end=as_utc(model.subscription_end_date),
            stripe_customer_id=model.stripe_customer_id,
            stripe_subscription_id=model.stripe_subscription_id,
        )


# Singleton instance
_subscription_repository: Optional[SubscriptionRepository] = None


def get_subscription_repository(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> SubscriptionRepository:
    """Get or create the subscription repository singleton."""
    global _subscription_repository
    if _subscription_repository is None:
        _subscription_repository = SubscriptionRepository(session_factory)
    return _subscription_repository
