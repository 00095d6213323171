"""
Store Rating - Security Dependencies

FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/protected")
    async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

    @router.get("/admin-only")
    async def admin_route(user: AuthenticatedUser = Depends(require_roles(Role.ADMIN))):
        ...

    @router.post("/stores")
    async def create_store(user: AuthenticatedUser = Depends(require_permission(Permission.STORE_CREATE))):
        ...

Security:
- Every protected request re-reads the account: role changes and
  deactivation take effect before the access token expires
- RBAC is deny-by-default
- Denials are logged
"""

from typing import FrozenSet, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

from store_rating.auth.accounts import AccountStore
from store_rating.auth.models import Role
from store_rating.auth.registry import RefreshTokenRegistry
from store_rating.auth.service import AuthService
from store_rating.auth.tokens import verify_access_token
from store_rating.errors import AccountDeactivatedError, ForbiddenError, UnauthenticatedError
from store_rating.gateway.rbac import Permission, RBACPolicy
from store_rating.logging import get_logger


logger = get_logger(__name__)

# HTTP Bearer scheme; missing headers are reported as UNAUTHENTICATED by us
security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """
    Represents a validated, authenticated identity.

    Available in route handlers via Depends(get_current_user).
    The role is the one stored on the account at request time, not the
    one embedded in the token.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    role: Role
    username: str
    email: str
    token_id: str  # jti for log correlation


def get_account_store(request: Request) -> AccountStore:
    """Account store bound to the application's database."""
    return request.app.state.account_store


def get_registry(request: Request) -> RefreshTokenRegistry:
    """Refresh token registry chosen at startup."""
    return request.app.state.token_registry


def get_auth_service(request: Request) -> AuthService:
    """Application-wide AuthService."""
    return request.app.state.auth_service


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    accounts: AccountStore = Depends(get_account_store),
) -> AuthenticatedUser:
    """
    Validate request authentication and return the current identity.

    This dependency performs:
    1. Extract the bearer token from the Authorization header
    2. Verify signature, issuer, audience and expiry
    3. Re-read the account named by the token subject
    4. Refuse deleted and deactivated accounts
    5. Attach the identity to request.state.user

    Raises:
        UnauthenticatedError: No bearer token, or the account no longer exists
        TokenExpiredError: Authentic token past its expiry
        InvalidTokenError: Any other token defect
        AccountDeactivatedError: Account has been deactivated
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthenticatedError("Access token required")

    claims = verify_access_token(credentials.credentials)

    user = accounts.get_by_id(claims.sub)
    if user is None:
        raise UnauthenticatedError("User not found")
    if not user.is_active:
        raise AccountDeactivatedError()

    identity = AuthenticatedUser(
        id=user.id,
        role=user.role,
        username=user.username,
        email=user.email,
        token_id=claims.jti,
    )
    request.state.user = identity
    return identity


def authorize(user: Optional[AuthenticatedUser], allowed_roles: FrozenSet[Role] = frozenset()) -> AuthenticatedUser:
    """
    Pure role check behind require_roles.

    Args:
        user: Identity attached by get_current_user (None if absent)
        allowed_roles: Roles admitted by the route; empty admits everyone

    Raises:
        UnauthenticatedError: No identity
        ForbiddenError: Role not in a non-empty allowed set
    """
    if user is None:
        raise UnauthenticatedError()
    if allowed_roles and user.role not in allowed_roles:
        logger.info(
            "auth.forbidden",
            user_id=str(user.id),
            role=user.role.value,
            required_roles=sorted(r.value for r in allowed_roles),
        )
        raise ForbiddenError()
    return user


def require_roles(*roles: Role):
    """
    Dependency factory restricting a route to the given roles.

    With no roles, any authenticated identity passes.

    Raises:
        UnauthenticatedError: No identity on the request
        ForbiddenError: Identity's role is not in the allowed set
    """
    allowed = frozenset(roles)

    async def dependency(user: Optional[AuthenticatedUser] = Depends(get_current_user)) -> AuthenticatedUser:
        return authorize(user, allowed)

    return dependency


def require_permission(permission: Permission):
    """
    Dependency factory requiring a capability from policies.yaml.

    Example:
        @router.post("/users")
        async def create_user(user: AuthenticatedUser = Depends(require_permission(Permission.USER_MANAGE))):
            ...
    """
    async def dependency(user: Optional[AuthenticatedUser] = Depends(get_current_user)) -> AuthenticatedUser:
        if user is None:
            raise UnauthenticatedError()
        if not RBACPolicy().has_permission(user.role, permission):
            logger.info(
                "auth.forbidden",
                user_id=str(user.id),
                role=user.role.value,
                permission=permission.value,
            )
            raise ForbiddenError(f"Permission denied: {permission.value}")
        return user

    return dependency
