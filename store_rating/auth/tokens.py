"""
Store Rating - JWT Token Management

Creates and validates the two JWT kinds:
- Access tokens: short-lived (1 hour default), signed with JWT_SECRET
- Refresh tokens: long-lived (7 days default), signed with JWT_REFRESH_SECRET

Claims:
- sub: account id
- role: role at issuance (informational; requests re-read the account)
- typ: "access" or "refresh"
- iss / aud: fixed issuer and audience strings
- iat / exp: issued-at and expiry (epoch seconds)
- jti: random token id, keeps every token unique for registry bookkeeping

Security:
- Distinct secrets: a refresh token never verifies as an access token
- Access tokens are never persisted; only secret rotation revokes them early
- Verification is pure and never consults the refresh token registry
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, Field, ValidationError

from store_rating.auth.models import utcnow
from store_rating.config import settings
from store_rating.errors import InvalidTokenError, SigningKeyError, TokenExpiredError


ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenClaims(BaseModel):
    """
    Decoded, verified JWT payload.

    Attributes:
        sub: Subject (account id)
        role: Role embedded at issuance
        typ: Token kind
        iss: Issuer
        aud: Audience
        iat: Issued-at (epoch seconds)
        exp: Expiration (epoch seconds)
        jti: Unique token ID
    """
    sub: str = Field(..., min_length=1, description="Account ID")
    role: str = Field(..., description="Role at issuance")
    typ: str = Field(..., description="access or refresh")
    iss: str
    aud: str
    iat: int
    exp: int
    jti: str = Field(..., description="Token ID")

    @property
    def expires_at(self) -> datetime:
        """Expiry as naive UTC, the registry's storage convention."""
        return datetime.fromtimestamp(self.exp, tz=timezone.utc).replace(tzinfo=None)


class IssuedToken(BaseModel):
    """A freshly signed token plus the metadata callers need to track it."""
    token: str
    token_id: str
    expires_at: datetime


def _signing_key(token_type: str) -> str:
    secret = settings.JWT_SECRET if token_type == ACCESS_TOKEN_TYPE else settings.JWT_REFRESH_SECRET
    value = secret.get_secret_value() if secret is not None else ""
    if not value:
        # Passed startup validation but vanished: refuse to mint anything
        raise SigningKeyError(f"Signing secret for {token_type} tokens is not configured")
    return value


def _lifetime(token_type: str) -> timedelta:
    if token_type == ACCESS_TOKEN_TYPE:
        return settings.JWT_EXPIRES_IN
    return settings.JWT_REFRESH_EXPIRES_IN


def _create_token(
    token_type: str,
    subject: str,
    role: str,
    now: Optional[datetime] = None,
) -> IssuedToken:
    issued_at = (now or utcnow()).replace(microsecond=0)
    expires_at = issued_at + _lifetime(token_type)
    token_id = secrets.token_hex(16)

    payload = {
        "sub": str(subject),
        "role": role,
        "typ": token_type,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": issued_at,
        "exp": expires_at,
        "jti": token_id,
    }

    encoded = jwt.encode(payload, _signing_key(token_type), algorithm=settings.JWT_ALGORITHM)
    return IssuedToken(token=encoded, token_id=token_id, expires_at=expires_at)


def create_access_token(subject, role: str, now: Optional[datetime] = None) -> IssuedToken:
    """
    Create a signed access token.

    Args:
        subject: Account ID
        role: Account role at issuance
        now: Issue time override (naive UTC), used by tests

    Returns:
        IssuedToken with the encoded JWT, its jti and expiry
    """
    return _create_token(ACCESS_TOKEN_TYPE, str(subject), role, now)


def create_refresh_token(subject, role: str, now: Optional[datetime] = None) -> IssuedToken:
    """Create a signed refresh token (distinct secret, longer lifetime)."""
    return _create_token(REFRESH_TOKEN_TYPE, str(subject), role, now)


def create_token_pair(subject, role: str) -> Tuple[IssuedToken, IssuedToken]:
    """Issue an (access, refresh) pair for a freshly authenticated account."""
    return create_access_token(subject, role), create_refresh_token(subject, role)


def _verify_token(token: str, token_type: str) -> TokenClaims:
    if not token or not isinstance(token, str):
        raise InvalidTokenError()

    try:
        payload = jwt.decode(
            token,
            _signing_key(token_type),
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options={"leeway": settings.JWT_CLOCK_TOLERANCE_SECONDS},
        )
    except ExpiredSignatureError:
        # Only raised after the signature checked out
        raise TokenExpiredError()
    except JWTError:
        raise InvalidTokenError()

    try:
        claims = TokenClaims(**payload)
    except (ValidationError, TypeError):
        raise InvalidTokenError()

    if claims.typ != token_type:
        raise InvalidTokenError()

    return claims


def verify_access_token(token: str) -> TokenClaims:
    """
    Verify and decode an access token.

    Raises:
        TokenExpiredError: Authentic but past expiry (client may refresh)
        InvalidTokenError: Anything else (client must log in again)
    """
    return _verify_token(token, ACCESS_TOKEN_TYPE)


def verify_refresh_token(token: str) -> TokenClaims:
    """Verify and decode a refresh token against the refresh secret."""
    return _verify_token(token, REFRESH_TOKEN_TYPE)


def get_token_expiry_seconds() -> int:
    """Access token lifetime in seconds for responses."""
    return int(settings.JWT_EXPIRES_IN.total_seconds())
