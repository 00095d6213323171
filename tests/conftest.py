"""
Store Rating - Test Configuration

Pytest fixtures for authentication testing.
Provides test database, client, registry and account fixtures.
"""

import os

# Settings are validated at import time; these must exist before any
# store_rating module is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-access-secret-0123456789-abcdefghijklmnop"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-0123456789-abcdefghijklmn"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REFRESH_TOKEN_BACKEND"] = "memory"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from store_rating.app import app
from store_rating.auth.accounts import AccountStore
from store_rating.auth.database import get_engine, get_session_factory, init_db
from store_rating.auth.models import User, Role
from store_rating.auth.password import hash_password


USER_PASSWORD = "UserPass123!"
OWNER_PASSWORD = "OwnerPass123!"
ADMIN_PASSWORD = "AdminPass123!"
INACTIVE_PASSWORD = "InactivePass123!"


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh in-memory database for each test."""
    engine = get_engine("sqlite://")
    init_db(engine)

    yield engine

    # Cleanup
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return get_session_factory(test_engine)


@pytest.fixture(scope="function")
def accounts(session_factory) -> AccountStore:
    return AccountStore(session_factory)


@pytest.fixture(scope="function")
def client(test_engine) -> Generator[TestClient, None, None]:
    """Create a test client bound to the fresh database."""
    app.state.db_engine = test_engine

    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def registry(client):
    """The refresh token registry built by the running app."""
    return client.app.state.token_registry


def _create_user(
    accounts: AccountStore,
    email: str,
    username: str,
    password: str,
    role: Role,
    is_active: bool = True,
) -> User:
    user = accounts.create(
        email=email,
        username=username,
        password_hash=hash_password(password),
        role=role,
    )
    if not is_active:
        user = accounts.set_active(user.id, False)
    return user


@pytest.fixture(scope="function")
def test_user(accounts) -> User:
    """Create a test account with the user role."""
    return _create_user(accounts, "user@test.com", "testuser", USER_PASSWORD, Role.USER)


@pytest.fixture(scope="function")
def test_owner(accounts) -> User:
    """Create a test store owner."""
    return _create_user(accounts, "owner@test.com", "testowner", OWNER_PASSWORD, Role.OWNER)


@pytest.fixture(scope="function")
def test_admin(accounts) -> User:
    """Create a test admin."""
    return _create_user(accounts, "admin@test.com", "testadmin", ADMIN_PASSWORD, Role.ADMIN)


@pytest.fixture(scope="function")
def inactive_user(accounts) -> User:
    """Create an inactive test account."""
    return _create_user(
        accounts, "inactive@test.com", "inactive", INACTIVE_PASSWORD, Role.USER, is_active=False
    )


def login_user(client: TestClient, identifier: str, password: str) -> Optional[dict]:
    """Helper function to login and return the envelope data (user + tokens)."""
    response = client.post(
        "/api/auth/login",
        json={"identifier": identifier, "password": password},
    )
    return response.json()["data"] if response.status_code == 200 else None


def auth_headers(access_token: str) -> dict:
    """Create authorization headers for authenticated requests."""
    return {"Authorization": f"Bearer {access_token}"}
