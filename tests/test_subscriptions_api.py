"""
API tests for subscription access and billing endpoints.

Stripe and the repository are mocked; access decisions come from a mocked
AccessService so only routing and request handling are exercised here.
"""

from unittest.mock import MagicMock

import pytest

from careconnect.domain.subscription import (
    PlanId,
    ProviderAccount,
    SubscriptionRecord,
    SubscriptionStatus,
    no_account_decision,
)
from careconnect.infrastructure.payments.stripe_service import (
    StripeServiceError,
    get_stripe_service,
)

from tests.conftest import CUSTOMER_ID, PROVIDER_ID


@pytest.fixture
def stripe_service(app, mock_stripe_service):
    app.dependency_overrides[get_stripe_service] = lambda: mock_stripe_service
    return mock_stripe_service


def provider_account(customer_id=None):
    return ProviderAccount(
        id=PROVIDER_ID,
        user_id=CUSTOMER_ID,
        business_name="Sunrise Home",
        contact_email="owner@sunrise.example",
        subscription=SubscriptionRecord(provider_id=PROVIDER_ID, stripe_customer_id=customer_id),
    )


class TestAccessEndpoints:

    def test_access_requires_login(self, client):
        assert client.get("/api/subscriptions/access").status_code == 401

    def test_user_access(self, client, login, mock_access_service):
        login()
        mock_access_service.check_user_access.return_value = no_account_decision()

        response = client.get("/api/subscriptions/access")

        assert response.status_code == 200
        assert response.json() == {
            "has_access": False,
            "status": "no_account",
            "requires_payment": True,
            "message": "No provider account found",
        }
        mock_access_service.check_user_access.assert_awaited_once_with(CUSTOMER_ID)

    def test_provider_access(self, client, login, mock_access_service):
        login()
        mock_access_service.check_provider_access.return_value = no_account_decision()

        response = client.get("/api/subscriptions/provider-access")

        assert response.status_code == 200
        mock_access_service.check_provider_access.assert_awaited_once_with(CUSTOMER_ID)

    def test_plans_are_public(self, client):
        response = client.get("/api/subscriptions/plans")

        assert response.status_code == 200
        assert {plan["id"] for plan in response.json()} == {"basic", "premium"}


class TestCheckout:

    def test_unknown_provider(self, client, login, mock_subscription_repo, stripe_service):
        login()

        response = client.post("/api/subscriptions/checkout", json={"plan_id": "basic"})

        assert response.status_code == 404
        stripe_service.create_checkout_session.assert_not_awaited()

    def test_first_checkout_saves_customer(self, client, login, mock_subscription_repo, stripe_service):
        login()
        mock_subscription_repo.get_provider_account.return_value = provider_account()
        stripe_service.get_or_create_customer.return_value = MagicMock(id="cus_new")
        stripe_service.create_checkout_session.return_value = MagicMock(
            url="https://checkout.stripe.com/c/pay/cs_1", id="cs_1"
        )

        response = client.post("/api/subscriptions/checkout", json={"plan_id": "premium"})

        assert response.status_code == 200
        assert response.json() == {
            "checkout_url": "https://checkout.stripe.com/c/pay/cs_1",
            "session_id": "cs_1",
        }
        provider_id, update = mock_subscription_repo.update_subscription.await_args.args
        assert provider_id == PROVIDER_ID
        assert update.model_dump(exclude_unset=True) == {"stripe_customer_id": "cus_new"}
        kwargs = stripe_service.create_checkout_session.await_args.kwargs
        assert kwargs["plan_id"] == PlanId.PREMIUM
        assert kwargs["provider_id"] == PROVIDER_ID
        assert "{CHECKOUT_SESSION_ID}" in kwargs["success_url"]

    def test_existing_customer_is_reused(self, client, login, mock_subscription_repo, stripe_service):
        login()
        mock_subscription_repo.get_provider_account.return_value = provider_account("cus_old")
        stripe_service.get_or_create_customer.return_value = MagicMock(id="cus_old")
        stripe_service.create_checkout_session.return_value = MagicMock(url="https://x", id="cs_2")

        response = client.post("/api/subscriptions/checkout", json={})

        assert response.status_code == 200
        mock_subscription_repo.update_subscription.assert_not_awaited()
        assert stripe_service.create_checkout_session.await_args.kwargs["plan_id"] == PlanId.BASIC

    def test_stripe_failure(self, client, login, mock_subscription_repo, stripe_service):
        login()
        mock_subscription_repo.get_provider_account.return_value = provider_account("cus_old")
        stripe_service.get_or_create_customer.side_effect = StripeServiceError(
            "Payment system not configured. Please contact support."
        )

        response = client.post("/api/subscriptions/checkout", json={"plan_id": "basic"})

        assert response.status_code == 500
        assert response.json()["detail"] == "Payment system not configured. Please contact support."

    def test_unknown_plan_is_rejected(self, client, login, mock_subscription_repo, stripe_service):
        login()

        response = client.post("/api/subscriptions/checkout", json={"plan_id": "gold"})

        assert response.status_code == 422


class TestPortal:

    def test_no_billing_account(self, client, login, mock_subscription_repo, stripe_service):
        login()
        mock_subscription_repo.get_by_user_id.return_value = SubscriptionRecord(
            status=SubscriptionStatus.ACTIVE
        )

        response = client.post("/api/subscriptions/portal")

        assert response.status_code == 404
        assert response.json()["detail"] == "No billing account found. Please subscribe first."

    def test_portal_session(self, client, login, mock_subscription_repo, stripe_service):
        login()
        mock_subscription_repo.get_by_user_id.return_value = SubscriptionRecord(stripe_customer_id="cus_1")
        stripe_service.create_portal_session.return_value = MagicMock(url="https://billing.stripe.com/p/1")

        response = client.post("/api/subscriptions/portal")

        assert response.status_code == 200
        assert response.json() == {"portal_url": "https://billing.stripe.com/p/1"}
        assert stripe_service.create_portal_session.await_args.kwargs["customer_id"] == "cus_1"
