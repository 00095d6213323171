"""
Store Rating - Authentication Service

Orchestrates the auth components for the HTTP layer:
registration, login, token refresh, logout and the account mutations
that must revoke live sessions (password change, deactivation, role change).

Security:
- Unknown identifier and wrong password produce the same error
- ACCOUNT_DEACTIVATED is only reported after the password checked out
- Refresh failures never reveal why (always INVALID_TOKEN)
- bcrypt work runs in a worker thread, never on the event loop
"""

import asyncio
from typing import Optional, Tuple
from uuid import UUID

from store_rating.auth.accounts import AccountStore, parse_account_id
from store_rating.auth.models import Role, User
from store_rating.auth.password import (
    burn_verify,
    hash_password,
    needs_rehash,
    validate_password_strength,
    verify_password,
)
from store_rating.auth.registry import RefreshTokenRegistry
from store_rating.auth.schemas import CreateUserRequest, RegisterRequest, TokenResponse
from store_rating.auth.tokens import (
    create_access_token,
    create_refresh_token,
    create_token_pair,
    get_token_expiry_seconds,
    verify_refresh_token,
)
from store_rating.config import settings
from store_rating.errors import (
    AccountDeactivatedError,
    AccountNotFoundError,
    CurrentPasswordMismatchError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidTokenError,
    TokenExpiredError,
    UnauthenticatedError,
    UserExistsError,
)
from store_rating.logging import get_logger


logger = get_logger(__name__)


def _check_strength(password: str) -> None:
    errors = validate_password_strength(password)
    if errors:
        raise InvalidInputError("Password does not meet requirements", details=errors)


class AuthService:
    """
    Login/registration orchestration over the account store and the
    refresh token registry.

    One instance per application; holds no per-request state.
    """

    def __init__(self, accounts: AccountStore, registry: RefreshTokenRegistry) -> None:
        self.accounts = accounts
        self.registry = registry

    def _issue_tokens(self, user: User) -> TokenResponse:
        """Sign an access/refresh pair and start tracking the refresh token."""
        access, refresh = create_token_pair(user.id, user.role.value)
        self.registry.store(user.id, refresh.token, refresh.expires_at)
        return TokenResponse(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=get_token_expiry_seconds(),
        )

    async def _create(self, data: RegisterRequest, role: Role) -> User:
        _check_strength(data.password)
        if self.accounts.exists(data.email, data.username):
            raise UserExistsError()

        password_hash = await asyncio.to_thread(hash_password, data.password)
        return self.accounts.create(
            email=data.email,
            username=data.username,
            password_hash=password_hash,
            role=role,
            address=data.address,
        )

    async def register(self, data: RegisterRequest) -> Tuple[User, TokenResponse]:
        """
        Self-service registration. New accounts always get the user role.

        Raises:
            InvalidInputError: Password fails the strength policy (all reasons in details)
            UserExistsError: Email or username already taken
        """
        user = await self._create(data, Role.USER)
        tokens = self._issue_tokens(user)
        logger.info("auth.register", user_id=str(user.id), role=user.role.value)
        return user, tokens

    async def create_account(self, data: CreateUserRequest, actor_id: Optional[UUID] = None) -> User:
        """Admin account creation with an explicit role; no tokens are issued."""
        user = await self._create(data, data.role)
        logger.info(
            "auth.account.created",
            user_id=str(user.id),
            role=user.role.value,
            actor_id=str(actor_id) if actor_id else None,
        )
        return user

    async def login(self, identifier: str, password: str) -> Tuple[User, TokenResponse]:
        """
        Authenticate by email or username and issue a token pair.

        Raises:
            InvalidCredentialsError: Unknown identifier or wrong password
            AccountDeactivatedError: Correct password, inactive account
        """
        user = self.accounts.get_by_identifier(identifier)
        if user is None:
            await asyncio.to_thread(burn_verify, password)
            logger.info("auth.login.failure", reason="user_not_found")
            raise InvalidCredentialsError()

        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            logger.info("auth.login.failure", reason="invalid_password", user_id=str(user.id))
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.info("auth.login.failure", reason="account_inactive", user_id=str(user.id))
            raise AccountDeactivatedError()

        # Work factor upgrade
        if needs_rehash(user.password_hash):
            new_hash = await asyncio.to_thread(hash_password, password)
            user = self.accounts.update_password_hash(user.id, new_hash)
            logger.info("auth.password.rehashed", user_id=str(user.id))

        tokens = self._issue_tokens(user)
        logger.info("auth.login.success", user_id=str(user.id))
        return user, tokens

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a live refresh token for a new access token.

        With ROTATE_REFRESH_TOKENS the presented token is consumed and a
        replacement returned; otherwise the same refresh token comes back.
        The new access token carries the account's current role.

        Raises:
            InvalidTokenError: Any failure, including expiry and revocation
        """
        try:
            claims = verify_refresh_token(refresh_token)
        except (InvalidTokenError, TokenExpiredError) as e:
            logger.info("auth.refresh.rejected", reason=e.code.lower())
            raise InvalidTokenError("Invalid refresh token")

        if not self.registry.is_valid(refresh_token):
            logger.info("auth.refresh.rejected", reason="not_registered", user_id=claims.sub)
            raise InvalidTokenError("Invalid refresh token")

        user = self.accounts.get_by_id(claims.sub)
        if user is None or not user.is_active:
            account_id = parse_account_id(claims.sub)
            if account_id is not None:
                self.registry.remove_all_for_account(account_id)
            logger.info("auth.refresh.rejected", reason="account_unavailable", user_id=claims.sub)
            raise InvalidTokenError("Invalid refresh token")

        next_refresh_token = refresh_token
        if settings.ROTATE_REFRESH_TOKENS:
            replacement = create_refresh_token(user.id, user.role.value)
            if not self.registry.rotate(user.id, refresh_token, replacement.token, replacement.expires_at):
                # A concurrent refresh consumed it first
                logger.info("auth.refresh.rejected", reason="already_rotated", user_id=str(user.id))
                raise InvalidTokenError("Invalid refresh token")
            next_refresh_token = replacement.token

        access = create_access_token(user.id, user.role.value)
        logger.info("auth.refresh", user_id=str(user.id), rotated=settings.ROTATE_REFRESH_TOKENS)
        return TokenResponse(
            access_token=access.token,
            refresh_token=next_refresh_token,
            expires_in=get_token_expiry_seconds(),
        )

    async def logout(self, refresh_token: str) -> None:
        """Revoke one refresh token. Unknown or already-revoked tokens are fine."""
        self.registry.remove(refresh_token)
        logger.info("auth.logout")

    async def logout_all(self, account_id: UUID) -> int:
        """Revoke every refresh token of an account."""
        revoked = self.registry.remove_all_for_account(account_id)
        logger.info("auth.logout_all", user_id=str(account_id), revoked=revoked)
        return revoked

    async def change_password(self, account_id: UUID, current_password: str, new_password: str) -> int:
        """
        Self-service password change.

        Every refresh token of the account is revoked on success, so other
        devices must log in again once their access tokens lapse.

        Returns:
            Number of refresh tokens revoked

        Raises:
            CurrentPasswordMismatchError: current_password is wrong
            InvalidInputError: new password is weak or equals the current one
        """
        user = self.accounts.get_by_id(account_id)
        if user is None:
            raise UnauthenticatedError()

        if not await asyncio.to_thread(verify_password, current_password, user.password_hash):
            logger.info("auth.password.change_rejected", user_id=str(user.id))
            raise CurrentPasswordMismatchError()

        _check_strength(new_password)
        if new_password == current_password:
            raise InvalidInputError("New password must be different from the current password")

        new_hash = await asyncio.to_thread(hash_password, new_password)
        self.accounts.update_password_hash(user.id, new_hash)
        revoked = self.registry.remove_all_for_account(user.id)
        logger.info("auth.password.changed", user_id=str(user.id), revoked=revoked)
        return revoked

    async def set_active(self, account_id: UUID, is_active: bool) -> Tuple[User, int]:
        """
        Activate or deactivate an account.

        Deactivation revokes all refresh tokens; outstanding access tokens
        are refused by the per-request account check.
        """
        user = self.accounts.set_active(account_id, is_active)
        revoked = 0 if is_active else self.registry.remove_all_for_account(account_id)
        logger.info(
            "auth.account.status_changed",
            user_id=str(account_id),
            is_active=is_active,
            revoked=revoked,
        )
        return user, revoked

    async def set_role(self, account_id: UUID, role: Role) -> Tuple[User, int]:
        """Change an account's role and revoke its refresh tokens."""
        user = self.accounts.set_role(account_id, role)
        revoked = self.registry.remove_all_for_account(account_id)
        logger.info("auth.account.role_changed", user_id=str(account_id), role=role.value, revoked=revoked)
        return user, revoked

    async def revoke_sessions(self, account_id: UUID) -> int:
        """Admin revocation of every refresh token of an existing account."""
        if self.accounts.get_by_id(account_id) is None:
            raise AccountNotFoundError()
        revoked = self.registry.remove_all_for_account(account_id)
        logger.info("auth.account.sessions_revoked", user_id=str(account_id), revoked=revoked)
        return revoked
