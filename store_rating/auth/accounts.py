"""
Store Rating - Account Store

Credential store adapter over the users table. The auth core needs only:
- lookup by id (re-validation on every authenticated request)
- lookup by login identifier (email or username)
- uniqueness checks, creation, and the few admin/self-service mutations

Identifiers are compared literally unless NORMALIZE_IDENTIFIERS is set,
in which case emails are lowercased on write and on lookup.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import select, or_

from store_rating.auth.database import SessionFactory
from store_rating.auth.models import User, Role, utcnow
from store_rating.config import settings
from store_rating.errors import AccountNotFoundError, UserExistsError


def normalize_email(email: str) -> str:
    """Apply the configured email comparison policy."""
    email = email.strip()
    if settings.NORMALIZE_IDENTIFIERS:
        return email.lower()
    return email


def parse_account_id(value) -> Optional[UUID]:
    """Parse a token subject into an account id; None if malformed."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class AccountStore:
    """
    Account lookups and mutations.

    Every method opens and closes its own database session; returned
    User objects are fully loaded and safe to use after the session closes.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_by_id(self, account_id) -> Optional[User]:
        user_id = parse_account_id(account_id)
        if user_id is None:
            return None
        with self._session_factory() as db:
            return db.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        with self._session_factory() as db:
            return db.exec(select(User).where(User.email == normalize_email(email))).first()

    def get_by_username(self, username: str) -> Optional[User]:
        with self._session_factory() as db:
            return db.exec(select(User).where(User.username == username.strip())).first()

    def get_by_identifier(self, identifier: str) -> Optional[User]:
        """Resolve a login identifier: anything containing '@' is an email."""
        if "@" in identifier:
            return self.get_by_email(identifier)
        return self.get_by_username(identifier)

    def exists(self, email: str, username: str) -> bool:
        with self._session_factory() as db:
            statement = select(User.id).where(
                or_(User.email == normalize_email(email), User.username == username.strip())
            )
            return db.exec(statement).first() is not None

    def list_accounts(self) -> List[User]:
        with self._session_factory() as db:
            return list(db.exec(select(User).order_by(User.created_at)).all())

    def create(
        self,
        email: str,
        username: str,
        password_hash: str,
        role: Role = Role.USER,
        address: Optional[str] = None,
    ) -> User:
        """
        Persist a new account.

        Raises:
            UserExistsError: email or username taken (including a race
                lost to a concurrent registration)
        """
        if self.exists(email, username):
            raise UserExistsError()

        now = utcnow()
        user = User(
            email=normalize_email(email),
            username=username.strip(),
            password_hash=password_hash,
            role=role,
            is_active=True,
            address=address,
            created_at=now,
            updated_at=now,
        )

        with self._session_factory() as db:
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise UserExistsError()
            db.refresh(user)
            return user

    def _update(self, account_id: UUID, **changes) -> User:
        with self._session_factory() as db:
            user = db.get(User, account_id)
            if user is None:
                raise AccountNotFoundError()
            for field, value in changes.items():
                setattr(user, field, value)
            user.updated_at = utcnow()
            db.add(user)
            db.commit()
            db.refresh(user)
            return user

    def update_password_hash(self, account_id: UUID, password_hash: str) -> User:
        return self._update(account_id, password_hash=password_hash)

    def set_active(self, account_id: UUID, is_active: bool) -> User:
        return self._update(account_id, is_active=is_active)

    def set_role(self, account_id: UUID, role: Role) -> User:
        return self._update(account_id, role=role)
