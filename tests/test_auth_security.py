"""
Security tests for the authentication module.

Tests cover:
- Password strength validation (strong passwords, weak passwords, missing complexity)
- JWT security (missing secret key)
- Token expiration handling
- Plan guard on the AI feature endpoints
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from auth_utils import create_jwt, create_expired_jwt, extract_token
from tests.conftest import auth_headers


def test_strong_password_success(client):
    """
    Verify a signup request succeeds with a strong, 12+ character password
    containing all required complexity rules.
    """
    response = client.post(
        "/api/auth/signup",
        json={"email": "test_strong@example.com", "password": "StrongPass123!"}
    )

    assert response.status_code == 200
    response_data = response.json()
    assert response_data["ok"] is True
    assert response_data["data"]["user"]["user_id"]
    assert "auth_token=" in response.headers["set-cookie"]


def test_weak_password_rejection_min_length(client):
    """Verify signup is rejected (HTTP 400) if the password is less than 12 characters."""
    response = client.post(
        "/api/auth/signup",
        json={"email": "test_short@example.com", "password": "ShortPass1!"}
    )

    assert response.status_code == 400
    response_data = response.json()
    assert response_data["error"] == "weak_password"
    assert "12 characters" in response_data["message"].lower()


@pytest.mark.parametrize("password,missing_type", [
    ("lowercasepass123!", "uppercase"),
    ("NOLOWERCASE123!", "lowercase"),
    ("NoDigitsSpecial!", "digit"),
    ("NoSpecialChars123", "special"),
])
def test_weak_password_rejection_missing_complexity(client, password, missing_type):
    """Verify signup is rejected if the password is 12+ characters but lacks complexity."""
    response = client.post(
        "/api/auth/signup",
        json={"email": f"test_{missing_type}@example.com", "password": password}
    )

    assert response.status_code == 400, f"Password '{password}' should be rejected for missing {missing_type}"
    assert missing_type in response.json()["message"].lower()


def test_jwt_security_missing_key():
    """create_jwt() raises a ValueError if the secret key is None or empty."""
    with patch('auth_utils.settings.jwt_secret_key', None):
        with pytest.raises(ValueError, match="JWT_SECRET_KEY is not set"):
            create_jwt("test_user_id")

    with patch('auth_utils.settings.jwt_secret_key', ""):
        with pytest.raises(ValueError, match="JWT_SECRET_KEY is not set"):
            create_jwt("test_user_id")


def test_extract_token_prefers_cookie():
    assert extract_token("cookie-token", "Bearer header-token") == "cookie-token"
    assert extract_token(None, "Bearer header-token") == "header-token"
    assert extract_token(None, "Basic abc") is None
    assert extract_token(None, None) is None


def test_authentication_failure_expired_token(client, create_profile):
    """An endpoint protected by get_current_profile returns 401 for an expired token."""
    profile = create_profile(email="test_expired@example.com")
    expired_token = create_expired_jwt(profile.id, expired_seconds_ago=1)

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired_token}"})
    assert response.status_code == 401
    assert response.json()["error"] == "not_logged_in"

    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_feature_requires_login(client):
    response = client.post("/api/chat", json={"user_text": "hello"})
    assert response.status_code == 401
    assert response.json()["error"] == "not_logged_in"


def test_feature_rejects_unknown_profile(client):
    response = client.post(
        "/api/chat",
        json={"user_text": "hello"},
        headers={"Authorization": f"Bearer {create_jwt('no-such-user')}"},
    )
    assert response.status_code == 401
    assert response.json()["error"] == "profile_not_found"


def test_feature_rejects_expired_trial(client, create_profile):
    profile = create_profile(registered_at=datetime.now(timezone.utc) - timedelta(days=8))
    response = client.post("/api/chat", json={"user_text": "hello"}, headers=auth_headers(profile))
    assert response.status_code == 403
    assert response.json()["error"] == "trial_expired"


def test_feature_rejects_lapsed_paid_plan(client, create_profile):
    profile = create_profile(
        plan_status="paid",
        plan_tier="pro",
        plan_valid_until=datetime.now(timezone.utc) - timedelta(days=1),
    )
    response = client.post("/api/chat", json={"user_text": "hello"}, headers=auth_headers(profile))
    assert response.status_code == 403
    assert response.json()["error"] == "trial_expired"


def test_security_headers_present(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
