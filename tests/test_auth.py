"""
Store Rating - Authentication Test Suite

Integration tests for:
- Registration and login
- Token refresh, rotation and revocation
- Logout / logout-all
- Profile, verify and password change
- Per-request account re-validation
- Response envelope and security headers

Run with: pytest tests/test_auth.py -v
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr
from structlog.testing import capture_logs

from store_rating.app import app
from store_rating.auth.models import Role, User, utcnow
from store_rating.auth.tokens import (
    create_access_token,
    create_refresh_token,
    verify_access_token,
)
from store_rating.config import settings
from tests.conftest import (
    ADMIN_PASSWORD,
    INACTIVE_PASSWORD,
    USER_PASSWORD,
    auth_headers,
    login_user,
)


def _error_code(response) -> str:
    return response.json()["error"]["code"]


# =============================================================================
# REGISTRATION TESTS
# =============================================================================

class TestRegisterEndpoint:
    """Integration tests for POST /auth/register."""

    def test_register_success(self, client):
        """New account is created with tokens and without its hash."""
        response = client.post(
            "/api/auth/register",
            json={"email": "a@x.com", "username": "alice", "password": "Abc12345!"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True

        user = body["data"]["user"]
        assert user["email"] == "a@x.com"
        assert user["username"] == "alice"
        assert user["role"] == "user"
        assert user["is_active"] is True
        assert "password" not in user
        assert "password_hash" not in user

        tokens = body["data"]["tokens"]
        assert tokens["access_token"]
        assert tokens["refresh_token"]
        assert tokens["token_type"] == "bearer"
        assert tokens["expires_in"] == 3600

    def test_register_tokens_work(self, client, registry):
        """Issued access token authenticates and refresh token is tracked."""
        response = client.post(
            "/api/auth/register",
            json={"email": "a@x.com", "username": "alice", "password": "Abc12345!"},
        )
        tokens = response.json()["data"]["tokens"]

        verify = client.get("/api/auth/verify", headers=auth_headers(tokens["access_token"]))

        assert verify.status_code == 200
        assert registry.is_valid(tokens["refresh_token"]) is True

    def test_register_ignores_requested_role(self, client):
        """Self-registration cannot pick a role."""
        response = client.post(
            "/api/auth/register",
            json={"email": "a@x.com", "username": "alice", "password": "Abc12345!", "role": "admin"},
        )

        assert response.status_code == 201
        assert response.json()["data"]["user"]["role"] == "user"

    def test_register_with_address(self, client):
        response = client.post(
            "/api/auth/register",
            json={
                "email": "a@x.com",
                "username": "alice",
                "password": "Abc12345!",
                "address": "  12 Market Street  ",
            },
        )

        assert response.status_code == 201
        assert response.json()["data"]["user"]["address"] == "12 Market Street"

    def test_duplicate_email(self, client, test_user):
        """Registering a taken email returns 409."""
        response = client.post(
            "/api/auth/register",
            json={"email": "user@test.com", "username": "someoneelse", "password": "Abc12345!"},
        )

        assert response.status_code == 409
        assert _error_code(response) == "USER_EXISTS"

    def test_duplicate_username(self, client, test_user):
        response = client.post(
            "/api/auth/register",
            json={"email": "new@test.com", "username": "testuser", "password": "Abc12345!"},
        )

        assert response.status_code == 409
        assert _error_code(response) == "USER_EXISTS"

    def test_weak_password_lists_every_rule(self, client):
        """Weak passwords return 400 with every failed rule."""
        response = client.post(
            "/api/auth/register",
            json={"email": "a@x.com", "username": "alice", "password": "abcdefgh"},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert len(error["details"]) == 3

    def test_invalid_email(self, client):
        response = client.post(
            "/api/auth/register",
            json={"email": "not-an-email", "username": "alice", "password": "Abc12345!"},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["field"] == "email"

    def test_invalid_username(self, client):
        response = client.post(
            "/api/auth/register",
            json={"email": "a@x.com", "username": "a b", "password": "Abc12345!"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "username"

    def test_markup_in_address_rejected(self, client):
        response = client.post(
            "/api/auth/register",
            json={
                "email": "a@x.com",
                "username": "alice",
                "password": "Abc12345!",
                "address": "<script>alert(1)</script>",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "address"

    def test_missing_fields(self, client):
        response = client.post("/api/auth/register", json={})

        assert response.status_code == 400
        fields = {d["field"] for d in response.json()["error"]["details"]}
        assert fields == {"email", "username", "password"}


# =============================================================================
# LOGIN ENDPOINT TESTS
# =============================================================================

class TestLoginEndpoint:
    """Integration tests for POST /auth/login."""

    def test_login_with_email(self, client, test_user):
        """Successful login returns account and a token pair."""
        response = client.post(
            "/api/auth/login",
            json={"email": "user@test.com", "password": USER_PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["id"] == str(test_user.id)
        assert data["tokens"]["access_token"]
        assert data["tokens"]["refresh_token"]

    def test_login_with_username(self, client, test_user):
        response = client.post(
            "/api/auth/login",
            json={"username": "testuser", "password": USER_PASSWORD},
        )

        assert response.status_code == 200

    def test_login_with_identifier(self, client, test_user):
        assert login_user(client, "testuser", USER_PASSWORD) is not None
        assert login_user(client, "user@test.com", USER_PASSWORD) is not None

    def test_each_login_gets_new_pair(self, client, test_user, registry):
        """Multi-device: independent valid pairs."""
        first = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        second = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        assert first["refresh_token"] != second["refresh_token"]
        assert registry.is_valid(first["refresh_token"]) is True
        assert registry.is_valid(second["refresh_token"]) is True

    def test_login_invalid_password(self, client, test_user):
        """Invalid password returns 401."""
        response = client.post(
            "/api/auth/login",
            json={"email": "user@test.com", "password": "WrongPassword123!"},
        )

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_CREDENTIALS"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_user_same_error(self, client, test_user):
        """Unknown identifier and wrong password are indistinguishable."""
        wrong_password = client.post(
            "/api/auth/login",
            json={"email": "user@test.com", "password": "WrongPassword123!"},
        )
        unknown_user = client.post(
            "/api/auth/login",
            json={"email": "nonexistent@test.com", "password": "SomePassword123!"},
        )

        assert unknown_user.status_code == 401
        assert unknown_user.json()["error"] == wrong_password.json()["error"]

    def test_login_inactive_user(self, client, inactive_user):
        """Inactive account with the right password is told it is deactivated."""
        response = client.post(
            "/api/auth/login",
            json={"email": "inactive@test.com", "password": INACTIVE_PASSWORD},
        )

        assert response.status_code == 401
        assert _error_code(response) == "ACCOUNT_DEACTIVATED"

    def test_login_inactive_user_wrong_password(self, client, inactive_user):
        """Deactivation is not revealed without the right password."""
        response = client.post(
            "/api/auth/login",
            json={"email": "inactive@test.com", "password": "WrongPassword123!"},
        )

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_CREDENTIALS"

    def test_email_compared_literally(self, client, test_user):
        """Without NORMALIZE_IDENTIFIERS, email case matters."""
        response = client.post(
            "/api/auth/login",
            json={"email": "USER@test.com", "password": USER_PASSWORD},
        )

        assert response.status_code == 401

    def test_email_normalization(self, client, monkeypatch):
        """With NORMALIZE_IDENTIFIERS, emails are case-insensitive."""
        monkeypatch.setattr(settings, "NORMALIZE_IDENTIFIERS", True)
        client.post(
            "/api/auth/register",
            json={"email": "Alice@X.com", "username": "alice", "password": "Abc12345!"},
        )

        assert login_user(client, "ALICE@x.com", "Abc12345!") is not None
        duplicate = client.post(
            "/api/auth/register",
            json={"email": "alice@x.COM", "username": "alice2", "password": "Abc12345!"},
        )
        assert duplicate.status_code == 409

    def test_missing_password(self, client):
        response = client.post("/api/auth/login", json={"email": "user@test.com"})

        assert response.status_code == 400
        assert _error_code(response) == "VALIDATION_ERROR"

    def test_malformed_json(self, client):
        response = client.post(
            "/api/auth/login",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert _error_code(response) == "VALIDATION_ERROR"

    def test_rehash_on_login(self, client, test_user, accounts, monkeypatch):
        """Raising the cost factor upgrades stored hashes at next login."""
        monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 5)

        assert login_user(client, "testuser", USER_PASSWORD) is not None

        upgraded = accounts.get_by_id(test_user.id)
        assert upgraded.password_hash.startswith("$2b$05$")
        assert login_user(client, "testuser", USER_PASSWORD) is not None


# =============================================================================
# REFRESH ENDPOINT TESTS
# =============================================================================

class TestRefreshEndpoint:
    """Integration tests for POST /auth/refresh."""

    def test_refresh_rotates_token(self, client, test_user, registry):
        """Refresh returns a new pair and consumes the old refresh token."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 200
        new_tokens = response.json()["data"]["tokens"]
        assert new_tokens["refresh_token"] != tokens["refresh_token"]
        assert verify_access_token(new_tokens["access_token"]).sub == str(test_user.id)
        assert registry.is_valid(tokens["refresh_token"]) is False
        assert registry.is_valid(new_tokens["refresh_token"]) is True

    def test_reused_refresh_token_rejected(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_refresh_without_rotation(self, client, test_user, monkeypatch):
        """With rotation off the same refresh token keeps working."""
        monkeypatch.setattr(settings, "ROTATE_REFRESH_TOKENS", False)
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        first = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        second = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["data"]["tokens"]["refresh_token"] == tokens["refresh_token"]

    def test_refresh_after_logout(self, client, test_user):
        """Refresh with a logged-out token is INVALID_TOKEN, not a crash."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]})

        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 401
        assert response.json()["success"] is False
        assert _error_code(response) == "INVALID_TOKEN"

    def test_access_token_cannot_refresh(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["access_token"]})

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_unregistered_refresh_token(self, client, test_user):
        """A correctly signed token that was never stored is refused."""
        token = create_refresh_token(test_user.id, "user").token

        response = client.post("/api/auth/refresh", json={"refresh_token": token})

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_expired_refresh_token(self, client, test_user, registry):
        """Expired refresh tokens report INVALID_TOKEN."""
        issued_at = utcnow() - settings.JWT_REFRESH_EXPIRES_IN - timedelta(minutes=5)
        issued = create_refresh_token(test_user.id, "user", now=issued_at)
        registry.store(test_user.id, issued.token, utcnow() + timedelta(hours=1))

        response = client.post("/api/auth/refresh", json={"refresh_token": issued.token})

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_refresh_uses_current_role(self, client, test_user, accounts):
        """The new access token carries the role stored now, not at login."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        accounts.set_role(test_user.id, Role.OWNER)

        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        access = response.json()["data"]["tokens"]["access_token"]
        assert verify_access_token(access).role == "owner"

    def test_refresh_for_deactivated_account(self, client, test_user, accounts, registry):
        """Deactivated accounts cannot refresh and lose their tokens."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        login_user(client, "testuser", USER_PASSWORD)
        accounts.set_active(test_user.id, False)

        response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"
        assert registry.tokens_for_account(test_user.id) == 0

    def test_refresh_garbage(self, client):
        response = client.post("/api/auth/refresh", json={"refresh_token": "garbage"})

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_refresh_missing_field(self, client):
        response = client.post("/api/auth/refresh", json={})

        assert response.status_code == 400
        assert _error_code(response) == "VALIDATION_ERROR"


# =============================================================================
# LOGOUT ENDPOINT TESTS
# =============================================================================

class TestLogoutEndpoint:
    """Integration tests for POST /auth/logout and /auth/logout-all."""

    def test_logout_is_idempotent(self, client, test_user, registry):
        """Logging out twice succeeds both times."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        first = client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert first.status_code == 200
        assert first.json()["success"] is True
        assert registry.is_valid(tokens["refresh_token"]) is False

        second = client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert second.status_code == 200
        assert registry.is_valid(tokens["refresh_token"]) is False

    def test_logout_unknown_token(self, client):
        response = client.post("/api/auth/logout", json={"refresh_token": "never-issued"})

        assert response.status_code == 200

    def test_logout_only_revokes_one_device(self, client, test_user, registry):
        first = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        second = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        client.post("/api/auth/logout", json={"refresh_token": first["refresh_token"]})

        assert registry.is_valid(second["refresh_token"]) is True

    def test_logout_missing_field(self, client):
        response = client.post("/api/auth/logout", json={})

        assert response.status_code == 400

    def test_logout_all_sessions(self, client, test_user, test_admin, registry):
        """Logout-all revokes every refresh token of the caller only."""
        tokens1 = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        tokens2 = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        admin_tokens = login_user(client, "testadmin", ADMIN_PASSWORD)["tokens"]

        response = client.post("/api/auth/logout-all", headers=auth_headers(tokens1["access_token"]))

        assert response.status_code == 200
        assert response.json()["data"]["revoked"] == 2
        assert registry.is_valid(tokens1["refresh_token"]) is False
        assert registry.is_valid(tokens2["refresh_token"]) is False
        assert registry.is_valid(admin_tokens["refresh_token"]) is True

    def test_logout_all_requires_auth(self, client):
        response = client.post("/api/auth/logout-all")

        assert response.status_code == 401
        assert _error_code(response) == "UNAUTHENTICATED"


# =============================================================================
# AUTHENTICATION GATE TESTS
# =============================================================================

class TestAuthenticationGate:
    """Bearer token handling on protected routes."""

    def test_profile(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.get("/api/auth/profile", headers=auth_headers(tokens["access_token"]))

        assert response.status_code == 200
        user = response.json()["data"]["user"]
        assert user["email"] == "user@test.com"
        assert "password_hash" not in user

    def test_verify_returns_identity(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.get("/api/auth/verify", headers=auth_headers(tokens["access_token"]))

        assert response.status_code == 200
        identity = response.json()["data"]["user"]
        assert identity == {
            "id": str(test_user.id),
            "username": "testuser",
            "email": "user@test.com",
            "role": "user",
        }

    def test_missing_header(self, client):
        response = client.get("/api/auth/profile")

        assert response.status_code == 401
        assert _error_code(response) == "UNAUTHENTICATED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_non_bearer_scheme(self, client):
        response = client.get("/api/auth/profile", headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert response.status_code == 401
        assert _error_code(response) == "UNAUTHENTICATED"

    def test_garbage_token(self, client):
        response = client.get("/api/auth/verify", headers=auth_headers("garbage"))

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_expired_token(self, client, test_user):
        """Expired access tokens are distinguishable so clients can refresh."""
        issued_at = utcnow() - settings.JWT_EXPIRES_IN - timedelta(minutes=5)
        token = create_access_token(test_user.id, "user", now=issued_at).token

        response = client.get("/api/auth/verify", headers=auth_headers(token))

        assert response.status_code == 401
        assert _error_code(response) == "TOKEN_EXPIRED"

    def test_refresh_token_as_bearer(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.get("/api/auth/verify", headers=auth_headers(tokens["refresh_token"]))

        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"

    def test_deleted_account(self, client, test_user, session_factory):
        """A valid token for a vanished account is unauthenticated."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        with session_factory() as db:
            db.delete(db.get(User, test_user.id))
            db.commit()

        response = client.get("/api/auth/verify", headers=auth_headers(tokens["access_token"]))

        assert response.status_code == 401
        assert _error_code(response) == "UNAUTHENTICATED"

    def test_deactivated_after_login(self, client, test_user, accounts):
        """Deactivation takes effect before the access token expires."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        accounts.set_active(test_user.id, False)

        response = client.get("/api/auth/verify", headers=auth_headers(tokens["access_token"]))

        assert response.status_code == 401
        assert _error_code(response) == "ACCOUNT_DEACTIVATED"

    def test_role_reread_per_request(self, client, test_user, accounts):
        """The identity carries the stored role, not the token's."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]
        accounts.set_role(test_user.id, Role.OWNER)

        response = client.get("/api/auth/verify", headers=auth_headers(tokens["access_token"]))

        assert response.json()["data"]["user"]["role"] == "owner"


# =============================================================================
# PASSWORD CHANGE TESTS
# =============================================================================

class TestPasswordEndpoint:
    """Integration tests for PUT /auth/password."""

    NEW_PASSWORD = "BrandNew456$"

    def test_change_password(self, client, test_user, registry):
        """New password works, old fails, refresh tokens are revoked."""
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.put(
            "/api/auth/password",
            json={"current_password": USER_PASSWORD, "new_password": self.NEW_PASSWORD},
            headers=auth_headers(tokens["access_token"]),
        )

        assert response.status_code == 200
        assert response.json()["data"]["revoked"] == 1
        assert registry.is_valid(tokens["refresh_token"]) is False
        assert login_user(client, "testuser", USER_PASSWORD) is None
        assert login_user(client, "testuser", self.NEW_PASSWORD) is not None

    def test_wrong_current_password(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.put(
            "/api/auth/password",
            json={"current_password": "NotMyPassword1!", "new_password": self.NEW_PASSWORD},
            headers=auth_headers(tokens["access_token"]),
        )

        assert response.status_code == 400
        assert _error_code(response) == "INVALID_CURRENT_PASSWORD"

    def test_weak_new_password(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.put(
            "/api/auth/password",
            json={"current_password": USER_PASSWORD, "new_password": "weak"},
            headers=auth_headers(tokens["access_token"]),
        )

        assert response.status_code == 400
        assert _error_code(response) == "VALIDATION_ERROR"
        assert login_user(client, "testuser", USER_PASSWORD) is not None

    def test_unchanged_password(self, client, test_user):
        tokens = login_user(client, "testuser", USER_PASSWORD)["tokens"]

        response = client.put(
            "/api/auth/password",
            json={"current_password": USER_PASSWORD, "new_password": USER_PASSWORD},
            headers=auth_headers(tokens["access_token"]),
        )

        assert response.status_code == 400
        assert _error_code(response) == "VALIDATION_ERROR"

    def test_requires_auth(self, client):
        response = client.put(
            "/api/auth/password",
            json={"current_password": USER_PASSWORD, "new_password": self.NEW_PASSWORD},
        )

        assert response.status_code == 401


# =============================================================================
# ENVELOPE, HEADERS AND FAILURE HANDLING
# =============================================================================

class TestEnvelopeAndHeaders:
    """Response format and cross-cutting behaviour."""

    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["X-Request-ID"]

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_unknown_route(self, client):
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json()["success"] is False
        assert _error_code(response) == "NOT_FOUND"

    def test_health_reports_registry(self, client, test_user):
        login_user(client, "testuser", USER_PASSWORD)

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["database"] is True
        assert body["refresh_tokens"] == {"accounts": 1, "tokens": 1}

    def test_root(self, client):
        assert client.get("/").json()["name"] == "Store Rating"

    def test_internal_errors_are_not_leaked(self, test_engine, test_user):
        """Unexpected failures become a generic 500 envelope."""
        app.state.db_engine = test_engine

        async def explode(identifier, password):
            raise RuntimeError("database exploded at /var/lib/secret")

        with TestClient(app, raise_server_exceptions=False) as c:
            c.app.state.auth_service.login = explode
            response = c.post("/api/auth/login", json={"email": "user@test.com", "password": USER_PASSWORD})

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "exploded" not in error["message"]

    def test_crash_still_logged_with_headers(self, test_engine, test_user, monkeypatch):
        """A crashing handler still gets request id, security headers and an access log entry."""
        app.state.db_engine = test_engine
        # conftest sets LOG_LEVEL=WARNING; the info-level access entry needs INFO
        monkeypatch.setattr(settings, "LOG_LEVEL", "INFO")

        async def explode(identifier, password):
            raise RuntimeError("boom")

        with TestClient(app) as c:
            c.app.state.auth_service.login = explode
            with capture_logs() as logs:
                response = c.post(
                    "/api/auth/login",
                    json={"email": "user@test.com", "password": USER_PASSWORD},
                    headers={"X-Request-ID": "crash-1"},
                )

        assert response.status_code == 500
        assert response.headers["X-Request-ID"] == "crash-1"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        access = [entry for entry in logs if entry["event"] == "http.request"]
        assert len(access) == 1
        assert access[0]["status_code"] == 500

    def test_missing_signing_secret_is_internal_error(self, client, test_user, monkeypatch):
        """A secret vanishing at runtime never mints tokens."""
        monkeypatch.setattr(settings, "JWT_SECRET", SecretStr(""))

        response = client.post("/api/auth/login", json={"email": "user@test.com", "password": USER_PASSWORD})

        assert response.status_code == 500
        assert _error_code(response) == "INTERNAL_ERROR"


# =============================================================================
# DATABASE REGISTRY END-TO-END
# =============================================================================

class TestDatabaseBackend:
    """The HTTP flows behave the same with the database registry."""

    @pytest.fixture
    def db_client(self, test_engine, monkeypatch):
        monkeypatch.setattr(settings, "REFRESH_TOKEN_BACKEND", "database")
        app.state.db_engine = test_engine
        with TestClient(app) as c:
            yield c

    def test_login_refresh_logout(self, db_client, test_user):
        tokens = login_user(db_client, "testuser", USER_PASSWORD)["tokens"]

        refreshed = db_client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 200
        new_refresh = refreshed.json()["data"]["tokens"]["refresh_token"]

        db_client.post("/api/auth/logout", json={"refresh_token": new_refresh})

        response = db_client.post("/api/auth/refresh", json={"refresh_token": new_refresh})
        assert response.status_code == 401
        assert _error_code(response) == "INVALID_TOKEN"
