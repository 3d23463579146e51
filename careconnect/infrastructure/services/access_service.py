"""
Access Service

Fetches a caller's subscription record and applies the access resolver.
Any failure while reading the store produces a deny decision; access is
never granted because of an error.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from careconnect.config.settings import settings
from careconnect.domain.subscription import (
    AccessDecision,
    SubscriptionStatus,
    no_account_decision,
    resolve_access,
)
from careconnect.infrastructure.db.repositories.base_repository import ISubscriptionStore
from careconnect.infrastructure.db.repositories.subscription_repository import (
    get_subscription_repository,
)
from careconnect.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)

MSG_CHECK_FAILED = "Error checking subscription status"
MSG_CARE_SEEKER = "Care seekers have free access to browse providers"
MSG_INCOMPLETE_REGISTRATION = "Please complete your registration"


class AccessService:
    """Subscription gatekeeping for providers and role-aware access for any user."""

    def __init__(self, store: ISubscriptionStore, grandfather_years: Optional[int] = None):
        self._store = store
        self._grandfather_years = grandfather_years or settings.grandfather_threshold_years

    async def check_provider_access(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> AccessDecision:
        """
        Resolve paid-feature access for a provider.

        Args:
            user_id: Auth user ID of the provider
            now: Evaluation time, defaults to the current UTC time

        Returns:
            AccessDecision; a fail-closed no_account decision on store errors
        """
        try:
            record = await self._store.get_by_user_id(user_id)
        except (DatabaseError, SQLAlchemyError) as e:
            logger.error(f"Failed to load subscription for {user_id}: {e}")
            return no_account_decision(message=MSG_CHECK_FAILED)

        return resolve_access(record, now=now, grandfather_years=self._grandfather_years)

    async def check_user_access(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> AccessDecision:
        """
        Resolve access for any signed-in user.

        Care seekers browse for free, providers go through the subscription
        check, and users with neither profile are asked to finish signing up.
        """
        try:
            if await self._store.is_care_seeker(user_id):
                return AccessDecision(
                    has_access=True,
                    status=SubscriptionStatus.ACTIVE,
                    requires_payment=False,
                    message=MSG_CARE_SEEKER,
                )
            is_provider = await self._store.is_provider(user_id)
        except (DatabaseError, SQLAlchemyError) as e:
            logger.error(f"Failed to detect role for {user_id}: {e}")
            return no_account_decision(message=MSG_CHECK_FAILED)

        if is_provider:
            return await self.check_provider_access(user_id, now=now)

        return no_account_decision(
            message=MSG_INCOMPLETE_REGISTRATION,
            requires_payment=False,
        )


def get_access_service() -> AccessService:
    """Create an access service backed by the subscription repository."""
    return AccessService(get_subscription_repository())
