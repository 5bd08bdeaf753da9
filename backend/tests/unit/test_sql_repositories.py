"""Tests for the SQL repositories against SQLite (aiosqlite).

Covers the behaviors the services rely on: case-insensitive email
lookup, unique-email enforcement, DELETE ... RETURNING consumption, bulk
deletes, and cascading token deletion with the owning user.
"""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ekoauth.core.errors import InternalError, TokenExpiredError, TokenNotFoundError
from ekoauth.models import Token, User
from ekoauth.models.base import ensure_aware
from ekoauth.models.token import TokenType
from ekoauth.repositories.errors import ConstraintViolation
from ekoauth.repositories.token_repository import SqlTokenRepository
from ekoauth.repositories.user_repository import SqlUserRepository
from ekoauth.services.token_store import TokenStore, hash_token_value
from tests.conftest import TEST_EMAIL, FakeClock

_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def users(sqlite_session_factory: async_sessionmaker[AsyncSession]) -> SqlUserRepository:
    return SqlUserRepository(sqlite_session_factory)


@pytest.fixture
def tokens(sqlite_session_factory: async_sessionmaker[AsyncSession]) -> SqlTokenRepository:
    return SqlTokenRepository(sqlite_session_factory)


async def _create_user(users: SqlUserRepository, email: str = TEST_EMAIL) -> User:
    return await users.create(
        email=email,
        password_hash="$2b$04$notarealhashbutlongenoughforthecolumn",
        role="farmer",
        full_name="Jan Kowalski",
        phone_number="+48 600 100 200",
        location_address="Ul. Polna 1, Lublin",
        location_longitude=22.57,
        location_latitude=51.25,
    )


async def _insert_token(
    tokens: SqlTokenRepository,
    user_id: uuid.UUID,
    token_hash: str = "a" * 64,
    token_type: TokenType = TokenType.REFRESH,
    ttl: timedelta = timedelta(days=7),
) -> Token:
    return await tokens.insert(
        token_hash=token_hash,
        user_id=user_id,
        token_type=token_type.value,
        expires_at=_NOW + ttl,
        created_at=_NOW,
    )


# =============================================================================
# SqlUserRepository
# =============================================================================


class TestSqlUserRepository:
    async def test_create_assigns_id_and_defaults(self, users: SqlUserRepository):
        user = await _create_user(users)

        assert isinstance(user.id, uuid.UUID)
        assert user.is_verified is False
        assert user.created_at is not None
        assert user.last_login_at is None

    async def test_create_normalizes_email(self, users: SqlUserRepository):
        user = await _create_user(users, email="  Farmer@Example.COM ")
        assert user.email == TEST_EMAIL

    async def test_duplicate_email_raises_constraint_violation(
        self, users: SqlUserRepository
    ):
        await _create_user(users)
        with pytest.raises(ConstraintViolation) as exc_info:
            await _create_user(users, email=TEST_EMAIL.upper())
        assert exc_info.value.field == "email"

    async def test_get_by_email_case_insensitive(self, users: SqlUserRepository):
        created = await _create_user(users)
        found = await users.get_by_email("FARMER@example.com")
        assert found is not None
        assert found.id == created.id

    async def test_get_missing(self, users: SqlUserRepository):
        assert await users.get_by_id(uuid.uuid4()) is None
        assert await users.get_by_email("nobody@example.com") is None

    async def test_update_fields(self, users: SqlUserRepository):
        created = await _create_user(users)

        updated = await users.update(created.id, is_verified=True)

        assert updated is not None
        assert updated.is_verified is True
        assert (await users.get_by_id(created.id)).is_verified is True

    async def test_update_unknown_field_rejected(self, users: SqlUserRepository):
        created = await _create_user(users)
        with pytest.raises(ValueError, match="Unknown fields: email"):
            await users.update(created.id, email="other@example.com")

    async def test_update_missing_user(self, users: SqlUserRepository):
        assert await users.update(uuid.uuid4(), is_verified=True) is None


# =============================================================================
# SqlTokenRepository
# =============================================================================


class TestSqlTokenRepository:
    async def test_consume_returns_and_deletes(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        await _insert_token(tokens, user.id)

        row = await tokens.consume(token_type=TokenType.REFRESH.value, token_hash="a" * 64)

        assert row is not None
        assert row.user_id == user.id
        assert ensure_aware(row.expires_at) == _NOW + timedelta(days=7)
        assert await tokens.consume(
            token_type=TokenType.REFRESH.value, token_hash="a" * 64
        ) is None

    async def test_consume_requires_matching_type(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        await _insert_token(tokens, user.id, token_type=TokenType.PASSWORD_RESET)

        assert await tokens.consume(
            token_type=TokenType.EMAIL_VERIFICATION.value, token_hash="a" * 64
        ) is None
        assert await tokens.consume(
            token_type=TokenType.PASSWORD_RESET.value, token_hash="a" * 64
        ) is not None

    async def test_duplicate_digest_raises_constraint_violation(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        await _insert_token(tokens, user.id)
        with pytest.raises(ConstraintViolation) as exc_info:
            await _insert_token(tokens, user.id, token_type=TokenType.PASSWORD_RESET)
        assert exc_info.value.field == "token_hash"

    async def test_delete_for_user(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        other = await _create_user(users, email="consumer@example.com")
        await _insert_token(tokens, user.id, token_hash="a" * 64)
        await _insert_token(tokens, user.id, token_hash="b" * 64)
        await _insert_token(
            tokens, user.id, token_hash="c" * 64, token_type=TokenType.PASSWORD_RESET
        )
        await _insert_token(tokens, other.id, token_hash="d" * 64)

        deleted = await tokens.delete_for_user(
            user_id=user.id, token_type=TokenType.REFRESH.value
        )

        assert deleted == 2
        assert await tokens.consume(
            token_type=TokenType.PASSWORD_RESET.value, token_hash="c" * 64
        ) is not None
        assert await tokens.consume(
            token_type=TokenType.REFRESH.value, token_hash="d" * 64
        ) is not None

    async def test_delete_expired(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        await _insert_token(tokens, user.id, token_hash="a" * 64, ttl=timedelta(hours=1))
        await _insert_token(tokens, user.id, token_hash="b" * 64, ttl=timedelta(days=7))

        deleted = await tokens.delete_expired(now=_NOW + timedelta(hours=1))

        assert deleted == 1
        assert await tokens.consume(
            token_type=TokenType.REFRESH.value, token_hash="b" * 64
        ) is not None

    async def test_tokens_cascade_with_user(
        self,
        users: SqlUserRepository,
        tokens: SqlTokenRepository,
        sqlite_session_factory: async_sessionmaker[AsyncSession],
    ):
        user = await _create_user(users)
        await _insert_token(tokens, user.id)

        async with sqlite_session_factory() as db:
            await db.delete(await db.get(User, user.id))
            await db.commit()

        async with sqlite_session_factory() as db:
            remaining = (await db.execute(select(Token))).scalars().all()
        assert remaining == []


# =============================================================================
# TokenStore over SQL
# =============================================================================


class TestTokenStoreOverSql:
    async def test_create_consume_cycle(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        clock = FakeClock(_NOW)
        store = TokenStore(tokens, now=clock)

        created = await store.create(TokenType.PASSWORD_RESET, user.id)
        consumed = await store.consume(TokenType.PASSWORD_RESET, created.value)

        assert consumed.user_id == user.id
        assert consumed.expires_at == _NOW + timedelta(hours=1)
        with pytest.raises(TokenNotFoundError):
            await store.consume(TokenType.PASSWORD_RESET, created.value)

    async def test_stores_digest_not_value(
        self,
        users: SqlUserRepository,
        tokens: SqlTokenRepository,
        sqlite_session_factory: async_sessionmaker[AsyncSession],
    ):
        user = await _create_user(users)
        created = await TokenStore(tokens).create(TokenType.REFRESH, user.id)

        async with sqlite_session_factory() as db:
            stored = (await db.execute(select(Token.token_hash))).scalars().all()
        assert stored == [hash_token_value(created.value)]

    async def test_expiry_with_naive_sqlite_datetimes(
        self, users: SqlUserRepository, tokens: SqlTokenRepository
    ):
        user = await _create_user(users)
        clock = FakeClock(_NOW)
        store = TokenStore(tokens, now=clock)
        created = await store.create(TokenType.PASSWORD_RESET, user.id)
        clock.advance(timedelta(hours=1))

        with pytest.raises(TokenExpiredError):
            await store.consume(TokenType.PASSWORD_RESET, created.value)

    async def test_foreign_key_failure_is_internal_error(self, tokens: SqlTokenRepository):
        with pytest.raises(InternalError):
            await TokenStore(tokens).create(TokenType.REFRESH, uuid.uuid4())
