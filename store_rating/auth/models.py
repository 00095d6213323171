"""
Store Rating - Authentication Database Models

SQLModel-based models for accounts and tracked refresh tokens.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only
- Refresh tokens stored as SHA-256 hashes only
- All timestamps are naive UTC
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention for every timestamp)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """
    Principal categories driving authorization.

    Closed set; capabilities per role live in gateway/policies.yaml.
    """
    USER = "user"
    OWNER = "owner"
    ADMIN = "admin"


class User(SQLModel, table=True):
    """
    Registered account.

    Attributes:
        id: Unique identifier (UUIDv4)
        email: Login identifier (unique, indexed)
        username: Login identifier (unique, indexed)
        password_hash: bcrypt hash (never returned or logged)
        role: RBAC role
        is_active: Inactive accounts cannot authenticate
        address: Postal address supplied at registration
        created_at: Account creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
    """
    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique user identifier"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="User email address (login identifier)"
    )
    username: str = Field(
        sa_column=Column(String(20), unique=True, index=True, nullable=False),
        description="Public username (login identifier)"
    )
    password_hash: str = Field(
        sa_column=Column(String(255), nullable=False),
        description="bcrypt password hash"
    )
    role: Role = Field(
        default=Role.USER,
        sa_column=Column(SQLEnum(Role), nullable=False, default=Role.USER),
        description="User role for RBAC"
    )
    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True),
        description="Whether user can authenticate"
    )
    address: Optional[str] = Field(
        default=None,
        sa_column=Column(String(400), nullable=True),
        description="Postal address"
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
        description="Account creation timestamp"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
        description="Last update timestamp"
    )


class RefreshToken(SQLModel, table=True):
    """
    Live refresh token tracked by the database registry.

    A row exists only while the token may be exchanged; logout, rotation
    and revocation delete it.

    Attributes:
        token_id: Unique row identifier
        user_id: Owning account
        token_hash: SHA-256 hex digest of the token (never store plaintext)
        issued_at: When the row was recorded
        expires_at: Token expiration timestamp
    """
    __tablename__ = "refresh_tokens"

    token_id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique token identifier"
    )
    user_id: UUID = Field(
        foreign_key="users.id",
        nullable=False,
        index=True,
        description="Reference to user"
    )
    token_hash: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False),
        description="SHA-256 hash of refresh token"
    )
    issued_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
        description="Token creation timestamp"
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime, nullable=False),
        description="Token expiration timestamp"
    )
