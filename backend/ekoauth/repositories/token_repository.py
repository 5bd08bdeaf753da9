"""Repository for Token persistence.

SQL implementation of the TokenRecordStore interface. Tokens are stored
as SHA-256 digests; lookups and deletes key on (token_type, token_hash).

consume() is a single DELETE ... RETURNING statement, so two concurrent
callers presenting the same value cannot both receive the row: the
database serializes the delete and only one statement returns it.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ekoauth.models.token import Token
from ekoauth.repositories.errors import ConstraintViolation, is_unique_violation


class SqlTokenRepository:
    """Token table operations backed by an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(
        self,
        *,
        token_hash: str,
        user_id: uuid.UUID,
        token_type: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> Token:
        """Store a new token row.

        Args:
            token_hash: SHA-256 hex digest of the plain value.
            user_id: Owning user.
            token_type: TokenType value.
            expires_at: Expiry timestamp.
            created_at: Creation timestamp.

        Returns:
            Created Token.

        Raises:
            ConstraintViolation: If the digest already exists.
        """
        token = Token(
            token_hash=token_hash,
            user_id=user_id,
            token_type=token_type,
            expires_at=expires_at,
            created_at=created_at,
        )
        async with self._session_factory() as db:
            db.add(token)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                if is_unique_violation(exc):
                    raise ConstraintViolation(
                        "token already exists", field="token_hash"
                    ) from exc
                raise
        return token

    async def consume(self, *, token_type: str, token_hash: str) -> Token | None:
        """Delete the matching row and return it (single-use).

        Args:
            token_type: TokenType value the row must carry.
            token_hash: SHA-256 hex digest of the presented value.

        Returns:
            The deleted Token (possibly expired), or None if no row matched.
        """
        stmt = (
            delete(Token)
            .where(
                Token.token_type == token_type,
                Token.token_hash == token_hash,
            )
            .returning(
                Token.token_hash,
                Token.user_id,
                Token.token_type,
                Token.expires_at,
                Token.created_at,
            )
        )
        async with self._session_factory() as db:
            result = await db.execute(
                stmt, execution_options={"synchronize_session": False}
            )
            row = result.one_or_none()
            await db.commit()

        if row is None:
            return None
        return Token(
            token_hash=row.token_hash,
            user_id=row.user_id,
            token_type=row.token_type,
            expires_at=row.expires_at,
            created_at=row.created_at,
        )

    async def delete_for_user(self, *, user_id: uuid.UUID, token_type: str) -> int:
        """Delete every token of one type owned by a user.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Token).where(
            Token.user_id == user_id,
            Token.token_type == token_type,
        )
        async with self._session_factory() as db:
            result = await db.execute(
                stmt, execution_options={"synchronize_session": False}
            )
            await db.commit()
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    async def delete_expired(self, *, now: datetime) -> int:
        """Delete all tokens whose expiry is at or before now.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Token).where(Token.expires_at <= now)
        async with self._session_factory() as db:
            result = await db.execute(
                stmt, execution_options={"synchronize_session": False}
            )
            await db.commit()
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
