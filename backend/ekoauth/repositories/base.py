"""Record store interfaces consumed by the auth services.

Each service receives a repository at construction time instead of
reaching for a module-level database client. Two implementations exist:
SQL (repositories/user_repository.py, repositories/token_repository.py)
and in-memory (repositories/memory.py).
"""

import uuid
from datetime import datetime
from typing import Protocol

from ekoauth.models import Token, User


class UserStore(Protocol):
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
    ) -> User: ...

    async def get_by_id(self, user_id: uuid.UUID) -> User | None: ...

    async def get_by_email(self, email: str) -> User | None: ...

    async def update(
        self, user_id: uuid.UUID, **fields: str | bool | datetime | None
    ) -> User | None: ...


class TokenRecordStore(Protocol):
    async def insert(
        self,
        *,
        token_hash: str,
        user_id: uuid.UUID,
        token_type: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> Token: ...

    async def consume(self, *, token_type: str, token_hash: str) -> Token | None:
        """Atomically find and delete the (type, hash) row.

        Returns the deleted row, or None when nothing matched. Expired rows
        are deleted and returned too; the caller decides what expiry means.
        """
        ...

    async def delete_for_user(self, *, user_id: uuid.UUID, token_type: str) -> int: ...

    async def delete_expired(self, *, now: datetime) -> int: ...


# Fields that may be updated via UserStore.update().
# Security: Never add 'id', 'email', 'role' or 'created_at'.
# - id: primary key, immutable
# - email: unique identity, requires a dedicated re-verification flow
# - role: changing it is an authorization decision, not a credential one
UPDATABLE_USER_FIELDS: frozenset[str] = frozenset(
    {
        "password_hash",
        "is_verified",
        "last_login_at",
        "updated_at",
        "full_name",
        "phone_number",
    }
)
