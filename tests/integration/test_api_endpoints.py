"""
Integration tests for the application shell.

Tests health, readiness and error mapping through the full request cycle.
"""

import pytest
from fastapi.testclient import TestClient

from careconnect.infrastructure.db.database import (
    build_engine,
    build_session_factory,
    get_session,
)


def override_session(app, session_factory):
    async def _session():
        async with session_factory() as session:
            yield session
    app.dependency_overrides[get_session] = _session


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        """Root endpoint should return service info."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "CareConnect API"
        assert data["docs"] == "/docs"

    def test_health_endpoint(self, client: TestClient):
        """Health endpoint should return healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "careconnect"}


class TestReadiness:

    async def test_ready_with_database(self, app, async_client, session_factory):
        override_session(app, session_factory)

        response = await async_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    async def test_unreachable_database_is_503(self, app, async_client, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
        override_session(app, build_session_factory(engine))

        response = await async_client.get("/health/ready")

        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"
        assert response.json()["error"] == "StoreUnavailableError"
        assert response.json()["retryable"] is True
        await engine.dispose()


class TestRouting:

    @pytest.mark.parametrize("method,path", [
        ("post", "/api/conversations"),
        ("get", "/api/subscriptions/access"),
        ("get", "/api/admin/conversations"),
    ])
    def test_protected_routes_need_a_token(self, client: TestClient, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401

    def test_webhook_route_is_public(self, client: TestClient):
        """Stripe calls without a bearer token; only the signature is checked."""
        response = client.post("/api/webhooks/stripe", content=b"{}")
        assert response.status_code == 400
