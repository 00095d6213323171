"""
Store Rating - Refresh Token Registry

Tracks which refresh tokens are currently live so they can be revoked
before their cryptographic expiry.

A refresh token is usable only while it is present in the registry and
not expired. Logout, rotation and admin revocation remove it; removal is
permanent even though the JWT itself stays well-formed.

Implementations:
- InMemoryRefreshTokenRegistry: process-local, single-instance deployments
- DatabaseRefreshTokenRegistry: shared refresh_tokens table, survives
  restarts and multiple workers

RefreshTokenSweeper periodically purges expired entries through the same
removal path the request handlers use.
"""

import abc
import asyncio
import hashlib
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import delete, func
from sqlmodel import select

from store_rating.auth.database import SessionFactory
from store_rating.auth.models import RefreshToken, User, utcnow
from store_rating.logging import get_logger


logger = get_logger(__name__)


class RegistryStats(BaseModel):
    """Snapshot of registry occupancy."""
    accounts: int
    tokens: int


class RefreshTokenRegistry(abc.ABC):
    """
    Contract shared by every registry backend.

    All methods are synchronous and complete in O(1) or
    O(tokens-for-one-account); none blocks indefinitely.
    """

    def __init__(self, max_tokens_per_account: int = 0) -> None:
        # 0 disables the per-account cap
        self.max_tokens_per_account = max_tokens_per_account

    @abc.abstractmethod
    def store(self, account_id: UUID, token: str, expires_at: datetime) -> None:
        """Record a live token for an account (multi-device is allowed)."""

    @abc.abstractmethod
    def is_valid(self, token: str) -> bool:
        """True if present, unexpired and owned by a resolvable account."""

    @abc.abstractmethod
    def remove(self, token: str) -> None:
        """Invalidate a single token. Idempotent."""

    @abc.abstractmethod
    def remove_all_for_account(self, account_id: UUID) -> int:
        """Invalidate every token of an account. Returns how many were live."""

    @abc.abstractmethod
    def rotate(
        self,
        account_id: UUID,
        old_token: str,
        new_token: str,
        expires_at: datetime,
    ) -> bool:
        """
        Atomically consume old_token and store new_token.

        Returns False (and stores nothing) when old_token is no longer
        valid, e.g. a concurrent refresh already consumed it.
        """

    @abc.abstractmethod
    def sweep_expired(self) -> int:
        """Remove all expired tokens. Returns how many were removed."""

    @abc.abstractmethod
    def tokens_for_account(self, account_id: UUID) -> int:
        """Number of live tokens recorded for an account."""

    @abc.abstractmethod
    def stats(self) -> RegistryStats:
        """Current occupancy."""


class InMemoryRefreshTokenRegistry(RefreshTokenRegistry):
    """
    Process-local registry.

    Layout: account -> ordered {token -> expiry} plus a reverse
    token -> account index. Every read-modify-write runs under one RLock,
    so concurrent refreshes for the same account cannot interleave.

    account_exists resolves the owning account on validation; tokens of
    accounts that no longer resolve are dropped.
    """

    def __init__(
        self,
        max_tokens_per_account: int = 0,
        account_exists: Optional[Callable[[UUID], bool]] = None,
    ) -> None:
        super().__init__(max_tokens_per_account)
        self._account_exists = account_exists
        self._lock = threading.RLock()
        self._tokens: Dict[UUID, "OrderedDict[str, datetime]"] = {}
        self._owners: Dict[str, UUID] = {}

    def _remove_locked(self, token: str) -> bool:
        account_id = self._owners.pop(token, None)
        if account_id is None:
            return False
        account_tokens = self._tokens.get(account_id)
        if account_tokens is not None:
            account_tokens.pop(token, None)
            if not account_tokens:
                del self._tokens[account_id]
        return True

    def _is_valid_locked(self, token: str) -> bool:
        account_id = self._owners.get(token)
        if account_id is None:
            return False
        account_tokens = self._tokens.get(account_id)
        if not account_tokens or token not in account_tokens:
            return False
        if utcnow() > account_tokens[token]:
            # Lazy cleanup
            self._remove_locked(token)
            return False
        if self._account_exists is not None and not self._account_exists(account_id):
            self._remove_locked(token)
            return False
        return True

    def _store_locked(self, account_id: UUID, token: str, expires_at: datetime) -> None:
        self._remove_locked(token)
        account_tokens = self._tokens.setdefault(account_id, OrderedDict())
        account_tokens[token] = expires_at
        self._owners[token] = account_id

        if self.max_tokens_per_account:
            while len(account_tokens) > self.max_tokens_per_account:
                oldest = next(iter(account_tokens))
                self._remove_locked(oldest)
                logger.info("auth.registry.evicted", user_id=str(account_id))

    def store(self, account_id: UUID, token: str, expires_at: datetime) -> None:
        with self._lock:
            self._store_locked(account_id, token, expires_at)

    def is_valid(self, token: str) -> bool:
        with self._lock:
            return self._is_valid_locked(token)

    def remove(self, token: str) -> None:
        with self._lock:
            self._remove_locked(token)

    def remove_all_for_account(self, account_id: UUID) -> int:
        with self._lock:
            account_tokens = self._tokens.get(account_id)
            if not account_tokens:
                return 0
            tokens = list(account_tokens.keys())
            for token in tokens:
                self._remove_locked(token)
            return len(tokens)

    def rotate(
        self,
        account_id: UUID,
        old_token: str,
        new_token: str,
        expires_at: datetime,
    ) -> bool:
        with self._lock:
            if not self._is_valid_locked(old_token):
                return False
            if self._owners.get(old_token) != account_id:
                return False
            self._remove_locked(old_token)
            self._store_locked(account_id, new_token, expires_at)
            return True

    def sweep_expired(self) -> int:
        with self._lock:
            now = utcnow()
            expired = [
                token
                for account_tokens in self._tokens.values()
                for token, expires_at in account_tokens.items()
                if now > expires_at
            ]
            for token in expired:
                self._remove_locked(token)
            return len(expired)

    def tokens_for_account(self, account_id: UUID) -> int:
        with self._lock:
            return len(self._tokens.get(account_id, ()))

    def stats(self) -> RegistryStats:
        with self._lock:
            return RegistryStats(accounts=len(self._tokens), tokens=len(self._owners))


def hash_token(token: str) -> str:
    """SHA-256 hex digest stored in place of the raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class DatabaseRefreshTokenRegistry(RefreshTokenRegistry):
    """
    Registry backed by the refresh_tokens table.

    Each operation runs in its own transaction; rotation deletes the old
    row and inserts the new one in the same commit, and only proceeds if
    the delete actually removed a row.
    """

    def __init__(self, session_factory: SessionFactory, max_tokens_per_account: int = 0) -> None:
        super().__init__(max_tokens_per_account)
        self._session_factory = session_factory

    def _enforce_cap(self, db, account_id: UUID) -> None:
        if not self.max_tokens_per_account:
            return
        rows = db.exec(
            select(RefreshToken)
            .where(RefreshToken.user_id == account_id)
            .order_by(RefreshToken.issued_at.desc(), RefreshToken.expires_at.desc())
        ).all()
        for row in rows[self.max_tokens_per_account:]:
            db.delete(row)
            logger.info("auth.registry.evicted", user_id=str(account_id))

    def _insert(self, db, account_id: UUID, token: str, expires_at: datetime) -> None:
        token_hash = hash_token(token)
        db.exec(delete(RefreshToken).where(RefreshToken.token_hash == token_hash))
        db.add(RefreshToken(user_id=account_id, token_hash=token_hash, expires_at=expires_at))
        db.flush()
        self._enforce_cap(db, account_id)

    def store(self, account_id: UUID, token: str, expires_at: datetime) -> None:
        with self._session_factory() as db:
            self._insert(db, account_id, token, expires_at)
            db.commit()

    def is_valid(self, token: str) -> bool:
        with self._session_factory() as db:
            row = db.exec(
                select(RefreshToken).where(RefreshToken.token_hash == hash_token(token))
            ).first()
            if row is None:
                return False
            if utcnow() > row.expires_at:
                # Lazy cleanup
                db.delete(row)
                db.commit()
                return False
            return db.get(User, row.user_id) is not None

    def remove(self, token: str) -> None:
        with self._session_factory() as db:
            db.exec(delete(RefreshToken).where(RefreshToken.token_hash == hash_token(token)))
            db.commit()

    def remove_all_for_account(self, account_id: UUID) -> int:
        with self._session_factory() as db:
            result = db.exec(delete(RefreshToken).where(RefreshToken.user_id == account_id))
            db.commit()
            return result.rowcount or 0

    def rotate(
        self,
        account_id: UUID,
        old_token: str,
        new_token: str,
        expires_at: datetime,
    ) -> bool:
        with self._session_factory() as db:
            if db.get(User, account_id) is None:
                return False
            result = db.exec(
                delete(RefreshToken).where(
                    RefreshToken.token_hash == hash_token(old_token),
                    RefreshToken.user_id == account_id,
                    RefreshToken.expires_at >= utcnow(),
                )
            )
            if not result.rowcount:
                db.rollback()
                return False
            self._insert(db, account_id, new_token, expires_at)
            db.commit()
            return True

    def sweep_expired(self) -> int:
        with self._session_factory() as db:
            result = db.exec(delete(RefreshToken).where(RefreshToken.expires_at < utcnow()))
            db.commit()
            return result.rowcount or 0

    def tokens_for_account(self, account_id: UUID) -> int:
        with self._session_factory() as db:
            return db.exec(
                select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == account_id)
            ).one()

    def stats(self) -> RegistryStats:
        with self._session_factory() as db:
            tokens = db.exec(select(func.count()).select_from(RefreshToken)).one()
            accounts = db.exec(
                select(func.count(func.distinct(RefreshToken.user_id))).select_from(RefreshToken)
            ).one()
            return RegistryStats(accounts=accounts, tokens=tokens)


def account_resolver(session_factory: SessionFactory) -> Callable[[UUID], bool]:
    """Check that an account row still exists."""
    def account_exists(account_id: UUID) -> bool:
        with session_factory() as db:
            return db.get(User, account_id) is not None
    return account_exists


def build_registry(backend: str, session_factory: SessionFactory, max_tokens_per_account: int = 0) -> RefreshTokenRegistry:
    """Instantiate the configured registry backend."""
    if backend == "database":
        return DatabaseRefreshTokenRegistry(session_factory, max_tokens_per_account)
    return InMemoryRefreshTokenRegistry(max_tokens_per_account, account_resolver(session_factory))


class RefreshTokenSweeper:
    """
    Background task purging expired refresh tokens on a fixed interval.

    Runs sweep_expired() in a worker thread so a slow database never
    stalls the event loop.
    """

    def __init__(self, registry: RefreshTokenRegistry, interval_seconds: float = 3600) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._run())
        logger.info("auth.registry.sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("auth.registry.sweeper_stopped")

    async def sweep_once(self) -> int:
        removed = await asyncio.to_thread(self.registry.sweep_expired)
        if removed:
            logger.info("auth.registry.swept", removed=removed)
        return removed

    async def _run(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("auth.registry.sweep_failed")
