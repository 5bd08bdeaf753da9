"""Repository for User persistence.

SQL implementation of the UserStore interface. Every method runs in its
own short transaction so the caller never holds a session across the slow
password hash.
"""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ekoauth.models.user import User
from ekoauth.repositories.base import UPDATABLE_USER_FIELDS
from ekoauth.repositories.errors import ConstraintViolation, is_unique_violation


class SqlUserRepository:
    """User table operations backed by an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        async with self._session_factory() as db:
            return await db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.email == email.strip().lower())
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

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
        """Create a new, unverified user.

        Email is normalized to lowercase before storage. The unique index on
        users.email is the final authority on duplicates.

        Returns:
            Created User with generated fields populated.

        Raises:
            ConstraintViolation: If the email already exists.
        """
        user = User(
            email=email.strip().lower(),
            password_hash=password_hash,
            role=role,
            is_verified=False,
            full_name=full_name,
            phone_number=phone_number,
            location_address=location_address,
            location_longitude=location_longitude,
            location_latitude=location_latitude,
        )
        async with self._session_factory() as db:
            db.add(user)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                if is_unique_violation(exc):
                    raise ConstraintViolation(
                        "email already exists", field="email"
                    ) from exc
                raise
            await db.refresh(user)
        return user

    async def update(
        self,
        user_id: uuid.UUID,
        **fields: str | bool | datetime | None,
    ) -> User | None:
        """Update user fields.

        Only fields in UPDATABLE_USER_FIELDS are allowed. Unknown field
        names raise ValueError.

        Args:
            user_id: UUID of the user to update.
            **fields: Field names and values to update.

        Returns:
            Updated User if found, None if user does not exist.

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(fields) - UPDATABLE_USER_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        async with self._session_factory() as db:
            user = await db.get(User, user_id)
            if user is None:
                return None
            for field, value in fields.items():
                setattr(user, field, value)
            await db.commit()
            await db.refresh(user)
        return user
