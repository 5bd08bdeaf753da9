"""In-memory implementations of the record store interfaces.

Used by the "memory" storage backend and by the unit tests. Each
repository guards its dict with a threading.Lock so check-and-remove
sequences stay atomic even when called from worker threads.
"""

import threading
import uuid
from datetime import datetime

from ekoauth.models.base import utcnow
from ekoauth.models.token import Token
from ekoauth.models.user import User
from ekoauth.repositories.base import UPDATABLE_USER_FIELDS
from ekoauth.repositories.errors import ConstraintViolation

_USER_COLUMNS = (
    "id",
    "email",
    "password_hash",
    "role",
    "is_verified",
    "full_name",
    "phone_number",
    "location_address",
    "location_longitude",
    "location_latitude",
    "last_login_at",
    "created_at",
    "updated_at",
)


def _detached_user(user: User) -> User:
    # Callers get a snapshot, like a row loaded from a closed session.
    return User(**{column: getattr(user, column) for column in _USER_COLUMNS})


def _detached_token(token: Token) -> Token:
    return Token(
        token_hash=token.token_hash,
        user_id=token.user_id,
        token_type=token.token_type,
        expires_at=token.expires_at,
        created_at=token.created_at,
    )


class MemoryUserRepository:
    """Dict-backed user store keyed by id, with an email index."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[uuid.UUID, User] = {}
        self._by_email: dict[str, uuid.UUID] = {}

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return _detached_user(user) if user is not None else None

    async def get_by_email(self, email: str) -> User | None:
        with self._lock:
            user_id = self._by_email.get(email.strip().lower())
            if user_id is None:
                return None
            return _detached_user(self._users[user_id])

    async def create(
        self,
        *,
        email: str,
        password_hash: str,
        role: str,
        full_name: str,
        phone_number: str,
        location_address: str,
        location_longitude: float,
        location_latitude: float,
    ) -> User:
        normalized = email.strip().lower()
        now = utcnow()
        user = User(
            id=uuid.uuid4(),
            email=normalized,
            password_hash=password_hash,
            role=role,
            is_verified=False,
            full_name=full_name,
            phone_number=phone_number,
            location_address=location_address,
            location_longitude=location_longitude,
            location_latitude=location_latitude,
            last_login_at=None,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if normalized in self._by_email:
                raise ConstraintViolation("email already exists", field="email")
            self._users[user.id] = user
            self._by_email[normalized] = user.id
            return _detached_user(user)

    async def update(
        self,
        user_id: uuid.UUID,
        **fields: str | bool | datetime | None,
    ) -> User | None:
        unknown = set(fields) - UPDATABLE_USER_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            for field, value in fields.items():
                setattr(user, field, value)
            if "updated_at" not in fields:
                user.updated_at = utcnow()
            return _detached_user(user)


class MemoryTokenRepository:
    """Dict-backed token store keyed by token digest."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, Token] = {}

    def count(self) -> int:
        """Number of stored rows. Test helper."""
        with self._lock:
            return len(self._tokens)

    async def insert(
        self,
        *,
        token_hash: str,
        user_id: uuid.UUID,
        token_type: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> Token:
        token = Token(
            token_hash=token_hash,
            user_id=user_id,
            token_type=token_type,
            expires_at=expires_at,
            created_at=created_at,
        )
        with self._lock:
            if token_hash in self._tokens:
                raise ConstraintViolation("token already exists", field="token_hash")
            self._tokens[token_hash] = token
        return _detached_token(token)

    async def consume(self, *, token_type: str, token_hash: str) -> Token | None:
        with self._lock:
            token = self._tokens.get(token_hash)
            if token is None or token.token_type != token_type:
                return None
            del self._tokens[token_hash]
            return token

    async def delete_for_user(self, *, user_id: uuid.UUID, token_type: str) -> int:
        with self._lock:
            doomed = [
                key
                for key, token in self._tokens.items()
                if token.user_id == user_id and token.token_type == token_type
            ]
            for key in doomed:
                del self._tokens[key]
            return len(doomed)

    async def delete_expired(self, *, now: datetime) -> int:
        with self._lock:
            doomed = [
                key for key, token in self._tokens.items() if token.expires_at <= now
            ]
            for key in doomed:
                del self._tokens[key]
            return len(doomed)

    def tokens_for_user(self, user_id: uuid.UUID, token_type: str) -> list[Token]:
        """Snapshot of live rows for one user and type. Test helper."""
        with self._lock:
            return [
                _detached_token(token)
                for token in self._tokens.values()
                if token.user_id == user_id and token.token_type == token_type
            ]
