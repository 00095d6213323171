"""
Store Rating - Database Seed Script

Creates the initial admin account. Safe to run repeatedly.

Usage:
    SEED_ADMIN_PASSWORD='...' python -m scripts.seed_users
"""

import os
from typing import Optional

from sqlalchemy.engine import Engine

from store_rating.auth.accounts import AccountStore
from store_rating.auth.database import get_engine, get_session_factory, init_db
from store_rating.auth.models import Role, User
from store_rating.auth.password import hash_password, validate_password_strength
from store_rating.config import settings
from store_rating.errors import InvalidInputError
from store_rating.logging import configure_logging, get_logger


logger = get_logger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@storerating.local"
DEFAULT_ADMIN_USERNAME = "admin"


def seed_admin_user(engine: Engine, email: str, username: str, password: str) -> Optional[User]:
    """
    Create an admin account unless the email or username is taken.

    Args:
        engine: Database to seed
        email: Admin email
        username: Admin username
        password: Plaintext password (must pass the strength policy)

    Returns:
        The new admin, or None if an account already exists

    Raises:
        InvalidInputError: Password fails the strength policy
    """
    errors = validate_password_strength(password)
    if errors:
        raise InvalidInputError("Password does not meet requirements", details=errors)

    init_db(engine)
    accounts = AccountStore(get_session_factory(engine))

    if accounts.exists(email, username):
        logger.info("seed.admin_exists", email=email)
        return None

    admin = accounts.create(
        email=email,
        username=username,
        password_hash=hash_password(password),
        role=Role.ADMIN,
    )
    logger.info("seed.admin_created", user_id=str(admin.id), email=admin.email)
    return admin


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL, json_output=False)

    admin_password = os.environ.get("SEED_ADMIN_PASSWORD")
    if not admin_password:
        raise SystemExit("SEED_ADMIN_PASSWORD must be set")

    seed_admin_user(
        get_engine(settings.DATABASE_URL),
        os.environ.get("SEED_ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL),
        os.environ.get("SEED_ADMIN_USERNAME", DEFAULT_ADMIN_USERNAME),
        admin_password,
    )
