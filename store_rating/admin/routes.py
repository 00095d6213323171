"""
Store Rating - Admin API Routes

Admin-only endpoints for account management:
- List accounts
- Activate / deactivate accounts
- Change roles
- Revoke refresh tokens

All routes require the admin role. Deactivation and role changes revoke
the target's refresh tokens; its access tokens are refused on the next
request because every request re-reads the account.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path

from store_rating.auth.accounts import AccountStore
from store_rating.auth.dependencies import (
    AuthenticatedUser,
    get_account_store,
    get_auth_service,
    require_roles,
)
from store_rating.auth.models import Role
from store_rating.auth.schemas import (
    AdminUserUpdateResponse,
    Envelope,
    RevokedResponse,
    UpdateRoleRequest,
    UpdateStatusRequest,
    UserListResponse,
    UserResponse,
)
from store_rating.auth.service import AuthService
from store_rating.errors import InvalidInputError


router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_roles(Role.ADMIN)


# =============================================================================
# User Management Endpoints
# =============================================================================

@router.get("/users", response_model=Envelope[UserListResponse], summary="List All Users")
async def list_users(
    admin: AuthenticatedUser = Depends(require_admin),
    accounts: AccountStore = Depends(get_account_store),
):
    """List every account, oldest first."""
    users = [UserResponse.model_validate(u) for u in accounts.list_accounts()]
    return Envelope(data=UserListResponse(users=users, total=len(users)))


@router.patch(
    "/users/{target_user_id}/status",
    response_model=Envelope[AdminUserUpdateResponse],
    summary="Activate or Deactivate User",
)
async def update_user_status(
    body: UpdateStatusRequest,
    target_user_id: UUID = Path(..., description="User ID to update"),
    admin: AuthenticatedUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """
    Activate or deactivate an account.

    Deactivating revokes every refresh token of the account.
    """
    # Prevent self-deactivation
    if target_user_id == admin.id and not body.is_active:
        raise InvalidInputError("Cannot deactivate your own account")

    user, revoked = await service.set_active(target_user_id, body.is_active)
    return Envelope(
        data=AdminUserUpdateResponse(user=UserResponse.model_validate(user), revoked=revoked),
        message="User activated" if body.is_active else "User deactivated",
    )


@router.patch(
    "/users/{target_user_id}/role",
    response_model=Envelope[AdminUserUpdateResponse],
    summary="Change User Role",
)
async def update_user_role(
    body: UpdateRoleRequest,
    target_user_id: UUID = Path(..., description="User ID to update"),
    admin: AuthenticatedUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Change an account's role; its refresh tokens are revoked."""
    # An admin demoting itself would lock the last admin out
    if target_user_id == admin.id and body.role != Role.ADMIN:
        raise InvalidInputError("Cannot change your own role")

    user, revoked = await service.set_role(target_user_id, body.role)
    return Envelope(
        data=AdminUserUpdateResponse(user=UserResponse.model_validate(user), revoked=revoked),
        message="User role updated",
    )


@router.post(
    "/users/{target_user_id}/revoke-tokens",
    response_model=Envelope[RevokedResponse],
    summary="Revoke User Sessions",
)
async def revoke_user_tokens(
    target_user_id: UUID = Path(..., description="User ID to revoke tokens for"),
    admin: AuthenticatedUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke all refresh tokens of an account. Forces re-login."""
    revoked = await service.revoke_sessions(target_user_id)
    return Envelope(data=RevokedResponse(revoked=revoked), message=f"Revoked {revoked} refresh tokens")
