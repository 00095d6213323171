"""
Store Rating - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
Both JWT secrets are required and must differ; the application refuses
to start otherwise.
"""

import re
from datetime import timedelta
from functools import lru_cache
from typing import List, Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# "90", "30s", "15m", "1h", "7d"
_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

# Secrets shorter than this trigger a startup warning
RECOMMENDED_SECRET_LENGTH = 32


def parse_duration(value) -> timedelta:
    """
    Parse a lifetime setting into a timedelta.

    Accepts plain seconds (int or digit string) or a number with a
    single unit suffix: s, m, h, d.

    Example:
        >>> parse_duration("7d")
        datetime.timedelta(days=7)
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value.lower())
        if match:
            amount, unit = match.groups()
            return timedelta(seconds=int(amount) * _DURATION_UNITS[unit])
    raise ValueError(f"Invalid duration: {value!r} (expected e.g. 30s, 15m, 1h, 7d)")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        JWT_SECRET: Access-token signing key (required)
        JWT_REFRESH_SECRET: Refresh-token signing key (required, distinct)
        JWT_EXPIRES_IN: Access-token lifetime
        JWT_REFRESH_EXPIRES_IN: Refresh-token lifetime
        BCRYPT_ROUNDS: Password hashing cost factor
        ROTATE_REFRESH_TOKENS: Issue a new refresh token on every refresh
        REFRESH_TOKEN_BACKEND: Where live refresh tokens are tracked
        DATABASE_URL: SQLAlchemy URL for accounts (and database registry)
        ALLOWED_ORIGINS: CORS allowed origins for the frontend
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    ENVIRONMENT: Literal["development", "test", "production"] = "development"

    # Token signing
    JWT_SECRET: SecretStr
    JWT_REFRESH_SECRET: SecretStr
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_IN: timedelta = timedelta(hours=1)
    JWT_REFRESH_EXPIRES_IN: timedelta = timedelta(days=7)
    JWT_ISSUER: str = "store-rating-app"
    JWT_AUDIENCE: str = "store-rating-users"
    JWT_CLOCK_TOLERANCE_SECONDS: int = 30

    # Passwords
    BCRYPT_ROUNDS: int = 12

    # Refresh token registry
    ROTATE_REFRESH_TOKENS: bool = True
    MAX_REFRESH_TOKENS_PER_ACCOUNT: int = 5
    REFRESH_TOKEN_BACKEND: Literal["memory", "database"] = "memory"
    REFRESH_TOKEN_SWEEP_INTERVAL_SECONDS: int = 3600

    # Identifier comparison (emails are compared literally unless enabled)
    NORMALIZE_IDENTIFIERS: bool = False

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./store_rating.db"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @field_validator("JWT_EXPIRES_IN", "JWT_REFRESH_EXPIRES_IN", mode="before")
    @classmethod
    def validate_lifetime(cls, v):
        lifetime = parse_duration(v)
        if lifetime.total_seconds() <= 0:
            raise ValueError("Token lifetimes must be positive")
        return lifetime

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if v < 4 or v > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    @field_validator("JWT_CLOCK_TOLERANCE_SECONDS", "MAX_REFRESH_TOKENS_PER_ACCOUNT")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("REFRESH_TOKEN_SWEEP_INTERVAL_SECONDS")
    @classmethod
    def validate_sweep_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("REFRESH_TOKEN_SWEEP_INTERVAL_SECONDS must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_signing_secrets(self) -> "Settings":
        """Both secrets must be present and distinct, or startup fails."""
        access = self.JWT_SECRET.get_secret_value()
        refresh = self.JWT_REFRESH_SECRET.get_secret_value()
        if not access.strip():
            raise ValueError("JWT_SECRET must be set and non-empty")
        if not refresh.strip():
            raise ValueError("JWT_REFRESH_SECRET must be set and non-empty")
        if access == refresh:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different")
        return self

    def weak_secrets(self) -> List[str]:
        """Names of signing secrets shorter than the recommended length."""
        weak = []
        if len(self.JWT_SECRET.get_secret_value()) < RECOMMENDED_SECRET_LENGTH:
            weak.append("JWT_SECRET")
        if len(self.JWT_REFRESH_SECRET.get_secret_value()) < RECOMMENDED_SECRET_LENGTH:
            weak.append("JWT_REFRESH_SECRET")
        return weak


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()


settings = get_settings()
