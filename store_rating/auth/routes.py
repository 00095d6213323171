"""
Store Rating - Authentication Routes

API endpoints for authentication:
- POST /auth/register    - Create account and issue tokens
- POST /auth/login       - Authenticate by email or username
- POST /auth/refresh     - Exchange refresh token for a new access token
- POST /auth/logout      - Revoke one refresh token
- POST /auth/logout-all  - Revoke every refresh token of the caller
- GET  /auth/profile     - Current account
- GET  /auth/verify      - Validate access token, return identity
- PUT  /auth/password    - Change password (revokes all refresh tokens)
- GET  /auth/permissions - Capabilities of the caller's role
- POST /auth/users       - Create account with a role (user:manage)

Every response uses the {success, data, message, error} envelope.
"""

from fastapi import APIRouter, Depends, status

from store_rating.auth.accounts import AccountStore
from store_rating.auth.dependencies import (
    AuthenticatedUser,
    get_account_store,
    get_auth_service,
    get_current_user,
    require_permission,
)
from store_rating.auth.schemas import (
    AuthResponse,
    CreateUserRequest,
    Envelope,
    IdentityResponse,
    LoginRequest,
    LogoutRequest,
    PermissionsResponse,
    ProfileResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RevokedResponse,
    UpdatePasswordRequest,
    UserResponse,
    VerifyResponse,
)
from store_rating.auth.service import AuthService
from store_rating.errors import UnauthenticatedError
from store_rating.gateway.rbac import Permission, RBACPolicy


router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post(
    "/register",
    response_model=Envelope[AuthResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Create a user-role account and log it in.

    Raises:
        400: Invalid input or weak password (every failed rule in details)
        409: Email or username already registered
    """
    user, tokens = await service.register(body)
    return Envelope(
        data=AuthResponse(user=UserResponse.model_validate(user), tokens=tokens),
        message="User registered successfully",
    )


@router.post(
    "/login",
    response_model=Envelope[AuthResponse],
    summary="Authenticate and issue tokens",
)
async def login(
    credentials: LoginRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate with an email or username and a password.

    Raises:
        401 INVALID_CREDENTIALS: Unknown identifier or wrong password
        401 ACCOUNT_DEACTIVATED: Correct password, inactive account
    """
    user, tokens = await service.login(credentials.identifier, credentials.password)
    return Envelope(
        data=AuthResponse(user=UserResponse.model_validate(user), tokens=tokens),
        message="Login successful",
    )


@router.post(
    "/refresh",
    response_model=Envelope[RefreshResponse],
    summary="Refresh access token",
)
async def refresh(
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
):
    tokens = await service.refresh(body.refresh_token)
    return Envelope(data=RefreshResponse(tokens=tokens), message="Token refreshed successfully")


@router.post("/logout", response_model=Envelope, summary="Revoke a refresh token")
async def logout(
    body: LogoutRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Always succeeds, even for unknown or already revoked tokens."""
    await service.logout(body.refresh_token)
    return Envelope(message="Logged out successfully")


@router.post(
    "/logout-all",
    response_model=Envelope[RevokedResponse],
    summary="Revoke every refresh token of the caller",
)
async def logout_all(
    user: AuthenticatedUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    revoked = await service.logout_all(user.id)
    return Envelope(data=RevokedResponse(revoked=revoked), message="Logged out from all devices")


@router.get(
    "/profile",
    response_model=Envelope[ProfileResponse],
    summary="Get current account",
)
async def get_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    accounts: AccountStore = Depends(get_account_store),
):
    account = accounts.get_by_id(user.id)
    if account is None:
        raise UnauthenticatedError("User not found")
    return Envelope(data=ProfileResponse(user=UserResponse.model_validate(account)))


@router.get(
    "/verify",
    response_model=Envelope[VerifyResponse],
    summary="Validate the presented access token",
)
async def verify(user: AuthenticatedUser = Depends(get_current_user)):
    identity = IdentityResponse(id=user.id, username=user.username, email=user.email, role=user.role)
    return Envelope(data=VerifyResponse(user=identity), message="Token is valid")


@router.put(
    "/password",
    response_model=Envelope[RevokedResponse],
    summary="Change password",
)
async def update_password(
    body: UpdatePasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """
    Replace the caller's password.

    All refresh tokens of the account are revoked; the caller keeps its
    current access token until it expires.

    Raises:
        400 INVALID_CURRENT_PASSWORD: current_password is wrong
        400 VALIDATION_ERROR: new password is weak or unchanged
    """
    revoked = await service.change_password(user.id, body.current_password, body.new_password)
    return Envelope(data=RevokedResponse(revoked=revoked), message="Password updated successfully")


@router.get(
    "/permissions",
    response_model=Envelope[PermissionsResponse],
    summary="List permissions of the caller's role",
)
async def get_permissions(user: AuthenticatedUser = Depends(get_current_user)):
    permissions = sorted(RBACPolicy().get_role_permissions(user.role))
    return Envelope(data=PermissionsResponse(role=user.role, permissions=permissions))


@router.post(
    "/users",
    response_model=Envelope[ProfileResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create new user (admin only)",
)
async def create_user(
    body: CreateUserRequest,
    user: AuthenticatedUser = Depends(require_permission(Permission.USER_MANAGE)),
    service: AuthService = Depends(get_auth_service),
):
    """
    Create an account with an explicit role.

    Requires the user:manage permission. No tokens are issued.
    """
    account = await service.create_account(body, actor_id=user.id)
    return Envelope(
        data=ProfileResponse(user=UserResponse.model_validate(account)),
        message="User created successfully",
    )
