"""
Store Rating - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.

Every response is wrapped in the envelope:
    {"success": bool, "data": ..., "message": ..., "error": {"code", "message", "details"}}
"""

import re
from datetime import datetime
from typing import Annotated, Any, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator

from store_rating.auth.models import Role


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,20}$")
MARKUP_PATTERN = re.compile(r"[<>]")

T = TypeVar("T")


def _check_email(v: str) -> str:
    v = v.strip()
    if len(v) > 255 or not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email format")
    return v


def _check_username(v: str) -> str:
    v = v.strip()
    if not USERNAME_PATTERN.match(v):
        raise ValueError(
            "Username must be 3-20 characters of letters, digits, '.', '_' or '-'"
        )
    return v


def _check_address(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if len(v) > 400:
        raise ValueError("Address must be at most 400 characters")
    if MARKUP_PATTERN.search(v):
        raise ValueError("Address must not contain markup")
    return v or None


Email = Annotated[str, AfterValidator(_check_email)]
Username = Annotated[str, AfterValidator(_check_username)]
Address = Annotated[Optional[str], AfterValidator(_check_address)]


# =============================================================================
# Envelope
# =============================================================================

class ErrorBody(BaseModel):
    """Stable error description."""
    code: str
    message: str
    details: Optional[Any] = None


class Envelope(BaseModel, Generic[T]):
    """Standard response wrapper."""
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[ErrorBody] = None


# =============================================================================
# Requests
# =============================================================================

class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    email: Email = Field(..., description="User email address")
    username: Username = Field(..., description="Public username")
    password: str = Field(..., min_length=1, max_length=1024, description="Plaintext password")
    address: Address = None


class CreateUserRequest(RegisterRequest):
    """Request body for POST /auth/users (admin only)."""
    role: Role = Field(default=Role.USER)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login. The identifier is an email or a username."""
    identifier: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("identifier", "email", "username"),
    )
    password: str = Field(..., min_length=1, max_length=1024)

    @field_validator("identifier")
    @classmethod
    def strip_identifier(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Identifier is required")
        return v


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""
    refresh_token: str = Field(..., min_length=1, description="Refresh token")


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout."""
    refresh_token: str = Field(..., min_length=1, description="Refresh token to revoke")


class UpdatePasswordRequest(BaseModel):
    """Request body for PUT /auth/password."""
    current_password: str = Field(..., min_length=1, max_length=1024)
    new_password: str = Field(..., min_length=1, max_length=1024)


class UpdateStatusRequest(BaseModel):
    """Request body for PATCH /admin/users/{id}/status."""
    is_active: bool


class UpdateRoleRequest(BaseModel):
    """Request body for PATCH /admin/users/{id}/role."""
    role: Role


# =============================================================================
# Responses
# =============================================================================

class UserResponse(BaseModel):
    """Public view of an account. Never carries the password hash."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    username: str
    role: Role
    is_active: bool
    address: Optional[str] = None
    created_at: datetime


class TokenResponse(BaseModel):
    """Access/refresh token bundle."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the access token expires")


class AuthResponse(BaseModel):
    """Register/login payload."""
    user: UserResponse
    tokens: TokenResponse


class RefreshResponse(BaseModel):
    """Refresh payload."""
    tokens: TokenResponse


class IdentityResponse(BaseModel):
    """Authenticated identity as seen by the gate."""
    id: UUID
    username: str
    email: str
    role: Role


class VerifyResponse(BaseModel):
    user: IdentityResponse


class ProfileResponse(BaseModel):
    user: UserResponse


class RevokedResponse(BaseModel):
    revoked: int


class PermissionsResponse(BaseModel):
    role: Role
    permissions: List[str]


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int


class AdminUserUpdateResponse(BaseModel):
    user: UserResponse
    revoked: int
