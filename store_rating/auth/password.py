"""
Store Rating - Password Hashing Utilities

Password hashing using bcrypt plus the password strength policy.
Work factor is configurable (BCRYPT_ROUNDS) and defaults to 12.

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt and cost in the hash string
- Supports hash upgrades on login
"""

import re
from functools import lru_cache
from typing import List, Optional

import bcrypt

from store_rating.config import settings
from store_rating.errors import InvalidInputError


PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

# bcrypt ignores everything past 72 bytes; newer releases raise instead
BCRYPT_MAX_BYTES = 72

SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?`~]")

COMMON_PASSWORDS = frozenset({
    "password", "123456", "123456789", "qwerty", "abc123",
    "password123", "admin", "letmein", "welcome", "monkey",
    "1234567890", "dragon", "princess", "login", "solo",
    "password1", "password1!", "qwerty123", "welcome1", "admin123",
})


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plaintext password
        rounds: Cost factor override (defaults to BCRYPT_ROUNDS)

    Returns:
        bcrypt hash string (includes salt and cost)

    Raises:
        InvalidInputError: Empty password or shorter than 8 characters

    Example:
        >>> hashed = hash_password("SecureP@ss123")
        >>> hashed.startswith("$2b$")
        True
    """
    if not password or not isinstance(password, str):
        raise InvalidInputError("Password must be a non-empty string")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise InvalidInputError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
        )

    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Never raises: empty or malformed input simply fails verification.
    The comparison itself is bcrypt's constant-time check.
    """
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_encode(plain_password), hashed_password.encode("utf-8"))
    except (ValueError, TypeError):
        # Invalid hash format
        return False


def needs_rehash(hashed_password: str, target_work_factor: Optional[int] = None) -> bool:
    """
    Check if a password hash should be regenerated with a higher cost.

    Example:
        # After raising BCRYPT_ROUNDS from 10 to 12:
        >>> needs_rehash(old_hash)  # Generated with factor 10
        True
    """
    target = target_work_factor or settings.BCRYPT_ROUNDS
    try:
        # bcrypt hash format: $2b$XX$...
        work_factor_str = hashed_password.split("$")[2]
        return int(work_factor_str) < target
    except (ValueError, IndexError, AttributeError):
        # Not a valid bcrypt hash, definitely needs rehash
        return True


def validate_password_strength(password: str) -> List[str]:
    """
    Check a candidate password against the strength policy.

    Returns every violated rule so callers can show them all at once;
    an empty list means the password is acceptable.

    Example:
        >>> validate_password_strength("Abc12345!")
        []
    """
    if not password or not isinstance(password, str):
        return ["Password is required"]

    errors = []

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters long")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain at least one special character")
    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common and easily guessable")

    return errors


@lru_cache(maxsize=4)
def _decoy_hash(rounds: int) -> str:
    return bcrypt.hashpw(b"decoy-password-never-matches", bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def burn_verify(password: str) -> bool:
    """
    Run a full bcrypt check against a decoy hash and return False.

    Used when the identifier is unknown so the response takes as long as
    a wrong password for a real account.
    """
    verify_password(password, _decoy_hash(settings.BCRYPT_ROUNDS))
    return False
