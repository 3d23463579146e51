"""
Integration Tests for Authentication

Verifies that the main application correctly integrates:
- JWT verification dependency
- Protected route denial (401)
- Protected route access (200) w/ valid token
"""

import time

import jwt

from careconnect.config.settings import get_settings
from careconnect.domain.subscription import no_account_decision

from tests.conftest import TEST_JWT_SECRET


def bearer(sub="00000000-0000-0000-0000-000000000001", **claims):
    payload = {
        "sub": sub,
        "aud": "authenticated",
        "iss": f"{get_settings().supabase_url}/auth/v1",
        "exp": int(time.time()) + 3600,
        **claims,
    }
    return {"Authorization": f"Bearer {jwt.encode(payload, TEST_JWT_SECRET, algorithm='HS256')}"}


class TestAuthIntegration:

    def test_protected_route_no_auth(self, client):
        """Accessing a protected route without auth should return 401."""
        response = client.get("/api/subscriptions/access")
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing authorization token"

    def test_protected_route_invalid_token(self, client):
        """Accessing with invalid token should return 401."""
        response = client.get(
            "/api/subscriptions/access",
            headers={"Authorization": "Bearer invalid.token.here"},
        )
        assert response.status_code == 401

    def test_protected_route_valid_auth(self, client, mock_access_service):
        """A valid token reaches the route with the token's subject."""
        mock_access_service.check_user_access.return_value = no_account_decision()

        response = client.get("/api/subscriptions/access", headers=bearer(sub="user-42"))

        assert response.status_code == 200
        mock_access_service.check_user_access.assert_awaited_once_with("user-42")

    def test_admin_route_rejects_customer_token(self, client):
        response = client.get("/api/admin/conversations", headers=bearer(email="jordan@example.com"))
        assert response.status_code == 403
