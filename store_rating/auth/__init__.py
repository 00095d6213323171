"""
Store Rating - Authentication Package

Authentication with:
- Short-lived JWT access tokens, revocable refresh tokens
- bcrypt password hashing
- Per-request account re-validation
- RBAC with deny-by-default
"""

from store_rating.auth.models import User, RefreshToken, Role
from store_rating.auth.dependencies import get_current_user, require_roles, require_permission
from store_rating.auth.tokens import create_access_token, verify_access_token

__all__ = [
    "User",
    "RefreshToken",
    "Role",
    "get_current_user",
    "require_roles",
    "require_permission",
    "create_access_token",
    "verify_access_token",
]
