"""
Test configuration and fixtures for CareConnect.

Provides shared fixtures for unit and integration tests. Database-backed
tests run against a fresh SQLite file per test through aiosqlite, so
concurrent sessions use separate connections just like on Postgres.
"""

import os

# Settings are cached on first import; test values must be in place before
TEST_JWT_SECRET = "test-jwt-secret-for-careconnect-unit-tests-0123456789"
os.environ.setdefault("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("ENVIRONMENT", "test")

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from careconnect.api.dependencies import CurrentUser, get_current_user
from careconnect.config.settings import get_settings
from careconnect.infrastructure.db import models  # noqa: F401
from careconnect.infrastructure.db.database import build_engine, build_session_factory
from careconnect.infrastructure.db.dependencies import (
    provide_access_service,
    provide_messaging_service,
    provide_subscription_repository,
)
from careconnect.infrastructure.db.messaging_service import MessagingService
from careconnect.infrastructure.db.repositories import (
    ConversationRepository,
    SubscriptionRepository,
)
from careconnect.infrastructure.realtime.change_feed import ConversationChangeFeed


PROVIDER_ID = "7d1c3f9e-0b4a-4b8e-9a51-3f7b2c6d8e10"
CUSTOMER_ID = "11111111-2222-3333-4444-555555555555"
CUSTOMER_EMAIL = "jordan@example.com"
SUPPORT_ID = get_settings().support_user_id
WELCOME_TEMPLATE = "Hello {customer}! How can we help?"


# =============================================================================
# JWT Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def no_jwks(monkeypatch):
    """Keep JWT checks offline; tokens are verified with the HS256 secret."""
    def _unavailable(token, issuer):
        raise jwt.exceptions.PyJWKClientError("JWKS unavailable in tests")

    monkeypatch.setattr("careconnect.api.dependencies._decode_with_jwks", _unavailable)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database with all tables."""
    engine = build_engine(f"sqlite:///{tmp_path / 'careconnect.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def conversation_repo(session_factory) -> ConversationRepository:
    return ConversationRepository(session_factory)


@pytest.fixture
def subscription_repo(session_factory) -> SubscriptionRepository:
    return SubscriptionRepository(session_factory)


@pytest.fixture
def change_feed() -> ConversationChangeFeed:
    return ConversationChangeFeed()


@pytest.fixture
def messaging_service(conversation_repo, change_feed) -> MessagingService:
    return MessagingService(
        store=conversation_repo,
        feed=change_feed,
        support_sender_id=SUPPORT_ID,
        welcome_template=WELCOME_TEMPLATE,
    )


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application; overrides are reset afterwards."""
    from careconnect.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client running in the test's event loop."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def login(app):
    """Authenticate requests as the given user."""
    def _login(user_id: str = CUSTOMER_ID, email: str = CUSTOMER_EMAIL) -> CurrentUser:
        user = CurrentUser(id=user_id, email=email)
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    return _login


@pytest.fixture
def use_messaging_service(app, messaging_service):
    """Route handlers use the SQLite-backed messaging service."""
    app.dependency_overrides[provide_messaging_service] = lambda: messaging_service
    return messaging_service


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_stripe_service():
    """Mock for StripeService."""
    mock = MagicMock()
    mock.get_or_create_customer = AsyncMock()
    mock.create_checkout_session = AsyncMock()
    mock.create_portal_session = AsyncMock()
    mock.retrieve_subscription = AsyncMock()
    mock.list_customer_subscriptions = AsyncMock(return_value=[])
    mock.plan_for_price = MagicMock(return_value=None)
    mock.verify_webhook_signature = MagicMock()
    return mock


@pytest.fixture
def mock_subscription_repo(app):
    """Mock SubscriptionRepository wired into the routes."""
    mock = MagicMock()
    mock.get_by_user_id = AsyncMock(return_value=None)
    mock.get_provider_account = AsyncMock(return_value=None)
    mock.get_by_stripe_customer_id = AsyncMock(return_value=None)
    mock.update_subscription = AsyncMock()
    mock.is_event_processed = AsyncMock(return_value=False)
    mock.mark_event_processed = AsyncMock()
    app.dependency_overrides[provide_subscription_repository] = lambda: mock
    return mock


@pytest.fixture
def mock_access_service(app):
    """Mock AccessService wired into the routes."""
    mock = MagicMock()
    mock.check_user_access = AsyncMock()
    mock.check_provider_access = AsyncMock()
    app.dependency_overrides[provide_access_service] = lambda: mock
    return mock
