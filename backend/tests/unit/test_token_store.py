"""Tests for TokenStore and TokenSweeper.

Token values are random, stored only as digests, consumed at most once,
and dead at their expiry instant.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from ekoauth.core.errors import InternalError, TokenExpiredError, TokenNotFoundError
from ekoauth.models.token import TokenType
from ekoauth.repositories.errors import ConstraintViolation
from ekoauth.repositories.memory import MemoryTokenRepository
from ekoauth.services.token_store import (
    DEFAULT_TTLS,
    IssuedToken,
    TokenStore,
    TokenSweeper,
    hash_token_value,
)
from tests.conftest import FakeClock

_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
_OTHER_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")

_EPSILON = timedelta(milliseconds=1)


# =============================================================================
# Fakes
# =============================================================================


class _SlowTokenRepository(MemoryTokenRepository):
    """Consume never answers within any reasonable deadline."""

    async def consume(self, *, token_type: str, token_hash: str):
        await asyncio.sleep(10)
        return await super().consume(token_type=token_type, token_hash=token_hash)


class _BrokenTokenRepository(MemoryTokenRepository):
    """Every write fails the way a lost database connection does."""

    async def insert(self, **kwargs):
        raise OperationalError("INSERT", {}, Exception("connection lost"))

    async def delete_expired(self, *, now):
        raise OperationalError("DELETE", {}, Exception("connection lost"))


class _CollidingTokenRepository(MemoryTokenRepository):
    """Reports a digest collision for the first N inserts."""

    def __init__(self, collisions: int) -> None:
        super().__init__()
        self.collisions = collisions
        self.attempts = 0

    async def insert(self, **kwargs):
        self.attempts += 1
        if self.attempts <= self.collisions:
            raise ConstraintViolation("token already exists", field="token_hash")
        return await super().insert(**kwargs)


@pytest.fixture
def clocked_store(token_repo: MemoryTokenRepository, clock: FakeClock) -> TokenStore:
    return TokenStore(token_repo, now=clock)


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for TTL configuration."""

    def test_default_ttls(self, token_store: TokenStore):
        assert token_store.default_ttl(TokenType.EMAIL_VERIFICATION) == timedelta(hours=24)
        assert token_store.default_ttl(TokenType.PASSWORD_RESET) == timedelta(hours=1)
        assert token_store.default_ttl(TokenType.REFRESH) == timedelta(days=7)

    def test_ttl_override_keeps_other_defaults(self, token_repo):
        store = TokenStore(token_repo, ttls={TokenType.REFRESH: timedelta(days=1)})
        assert store.default_ttl(TokenType.REFRESH) == timedelta(days=1)
        assert store.default_ttl(TokenType.PASSWORD_RESET) == DEFAULT_TTLS[
            TokenType.PASSWORD_RESET
        ]

    def test_rejects_non_positive_ttl(self, token_repo):
        with pytest.raises(ValueError, match="must be positive"):
            TokenStore(token_repo, ttls={TokenType.PASSWORD_RESET: timedelta(0)})


# =============================================================================
# create / issue
# =============================================================================


class TestCreate:
    """Tests for TokenStore.create() and issue()."""

    async def test_create_persists_digest_only(
        self, token_store: TokenStore, token_repo: MemoryTokenRepository
    ):
        token = await token_store.create(TokenType.PASSWORD_RESET, _USER_ID)

        rows = token_repo.tokens_for_user(_USER_ID, TokenType.PASSWORD_RESET.value)
        assert len(rows) == 1
        assert rows[0].token_hash == hash_token_value(token.value)
        assert rows[0].token_hash != token.value

    async def test_expiry_is_creation_plus_ttl(self, clocked_store: TokenStore, clock):
        token = await clocked_store.create(TokenType.EMAIL_VERIFICATION, _USER_ID)
        assert token.created_at == clock()
        assert token.expires_at == clock() + timedelta(hours=24)
        assert token.ttl == timedelta(hours=24)

    async def test_explicit_ttl_overrides_default(self, clocked_store: TokenStore, clock):
        token = await clocked_store.create(
            TokenType.REFRESH, _USER_ID, ttl=timedelta(minutes=5)
        )
        assert token.expires_at == clock() + timedelta(minutes=5)

    def test_issue_rejects_non_positive_ttl(self, token_store: TokenStore):
        with pytest.raises(ValueError, match="must be positive"):
            token_store.issue(TokenType.REFRESH, _USER_ID, ttl=timedelta(seconds=-1))

    async def test_issue_does_not_persist(
        self, token_store: TokenStore, token_repo: MemoryTokenRepository
    ):
        token_store.issue(TokenType.REFRESH, _USER_ID)
        assert token_repo.count() == 0

    async def test_values_are_unique_and_long(self, token_store: TokenStore):
        values = {
            (await token_store.create(TokenType.REFRESH, _USER_ID)).value
            for _ in range(50)
        }
        assert len(values) == 50
        # token_urlsafe(32) yields 43 characters
        assert all(len(v) >= 43 for v in values)

    async def test_collision_regenerates_value(self):
        repo = _CollidingTokenRepository(collisions=2)
        store = TokenStore(repo)

        token = await store.create(TokenType.REFRESH, _USER_ID)

        assert repo.attempts == 3
        assert repo.tokens_for_user(_USER_ID, TokenType.REFRESH.value)[0].token_hash == (
            token.token_hash
        )

    async def test_repeated_collisions_raise_internal_error(self):
        store = TokenStore(_CollidingTokenRepository(collisions=10))
        with pytest.raises(InternalError):
            await store.create(TokenType.REFRESH, _USER_ID)

    async def test_save_collision_raises_internal_error(self, token_store: TokenStore):
        token = token_store.issue(TokenType.REFRESH, _USER_ID)
        await token_store.save(token)
        with pytest.raises(InternalError):
            await token_store.save(token)

    async def test_store_failure_raises_internal_error(self):
        store = TokenStore(_BrokenTokenRepository())
        with pytest.raises(InternalError):
            await store.create(TokenType.REFRESH, _USER_ID)


# =============================================================================
# consume
# =============================================================================


class TestConsume:
    """Tests for TokenStore.consume()."""

    async def test_returns_token_and_removes_it(
        self, token_store: TokenStore, token_repo: MemoryTokenRepository
    ):
        created = await token_store.create(TokenType.PASSWORD_RESET, _USER_ID)

        consumed = await token_store.consume(TokenType.PASSWORD_RESET, created.value)

        assert isinstance(consumed, IssuedToken)
        assert consumed.user_id == _USER_ID
        assert consumed.value == created.value
        assert token_repo.count() == 0

    async def test_second_consume_fails(self, token_store: TokenStore):
        created = await token_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        await token_store.consume(TokenType.PASSWORD_RESET, created.value)

        with pytest.raises(TokenNotFoundError):
            await token_store.consume(TokenType.PASSWORD_RESET, created.value)

    async def test_unknown_value_fails(self, token_store: TokenStore):
        with pytest.raises(TokenNotFoundError):
            await token_store.consume(TokenType.REFRESH, "never-issued")

    async def test_wrong_type_fails_and_keeps_token(
        self, token_store: TokenStore, token_repo: MemoryTokenRepository
    ):
        """A reset token cannot be spent as a verification token."""
        created = await token_store.create(TokenType.PASSWORD_RESET, _USER_ID)

        with pytest.raises(TokenNotFoundError):
            await token_store.consume(TokenType.EMAIL_VERIFICATION, created.value)

        assert token_repo.count() == 1

    async def test_valid_just_before_expiry(self, clocked_store: TokenStore, clock):
        created = await clocked_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        clock.advance(timedelta(hours=1) - _EPSILON)

        consumed = await clocked_store.consume(TokenType.PASSWORD_RESET, created.value)

        assert consumed.user_id == _USER_ID

    async def test_dead_at_expiry_instant(self, clocked_store: TokenStore, clock):
        created = await clocked_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        clock.advance(timedelta(hours=1))

        with pytest.raises(TokenExpiredError):
            await clocked_store.consume(TokenType.PASSWORD_RESET, created.value)

    async def test_expired_token_is_deleted_on_consume(
        self, clocked_store: TokenStore, clock, token_repo: MemoryTokenRepository
    ):
        created = await clocked_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        clock.advance(timedelta(hours=1) + _EPSILON)

        with pytest.raises(TokenExpiredError):
            await clocked_store.consume(TokenType.PASSWORD_RESET, created.value)
        assert token_repo.count() == 0
        with pytest.raises(TokenNotFoundError):
            await clocked_store.consume(TokenType.PASSWORD_RESET, created.value)

    async def test_concurrent_consumers_single_winner(self, token_store: TokenStore):
        created = await token_store.create(TokenType.REFRESH, _USER_ID)

        results = await asyncio.gather(
            *(token_store.consume(TokenType.REFRESH, created.value) for _ in range(20)),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, IssuedToken)]
        losers = [r for r in results if isinstance(r, TokenNotFoundError)]
        assert len(winners) == 1
        assert len(losers) == 19

    async def test_timeout_raises_internal_error(self):
        store = TokenStore(_SlowTokenRepository(), timeout=0.01)
        with pytest.raises(InternalError):
            await store.consume(TokenType.REFRESH, "any-value")


# =============================================================================
# revoke_all / sweep_expired
# =============================================================================


class TestRevokeAll:
    """Tests for TokenStore.revoke_all()."""

    async def test_revokes_only_matching_user_and_type(
        self, token_store: TokenStore, token_repo: MemoryTokenRepository
    ):
        await token_store.create(TokenType.REFRESH, _USER_ID)
        await token_store.create(TokenType.REFRESH, _USER_ID)
        reset = await token_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        other = await token_store.create(TokenType.REFRESH, _OTHER_USER_ID)

        revoked = await token_store.revoke_all(_USER_ID, TokenType.REFRESH)

        assert revoked == 2
        assert token_repo.tokens_for_user(_USER_ID, TokenType.REFRESH.value) == []
        await token_store.consume(TokenType.PASSWORD_RESET, reset.value)
        await token_store.consume(TokenType.REFRESH, other.value)

    async def test_nothing_to_revoke_returns_zero(self, token_store: TokenStore):
        assert await token_store.revoke_all(_USER_ID, TokenType.REFRESH) == 0


class TestSweepExpired:
    """Tests for TokenStore.sweep_expired()."""

    async def test_deletes_only_expired(
        self, clocked_store: TokenStore, clock, token_repo: MemoryTokenRepository
    ):
        await clocked_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        live = await clocked_store.create(TokenType.REFRESH, _USER_ID)
        clock.advance(timedelta(hours=2))

        deleted = await clocked_store.sweep_expired()

        assert deleted == 1
        assert token_repo.count() == 1
        await clocked_store.consume(TokenType.REFRESH, live.value)

    async def test_failure_returns_zero(self):
        store = TokenStore(_BrokenTokenRepository())
        assert await store.sweep_expired() == 0


class TestTokenSweeper:
    """Tests for the background sweep loop."""

    async def test_sweeps_on_interval(
        self, clocked_store: TokenStore, clock, token_repo: MemoryTokenRepository
    ):
        await clocked_store.create(TokenType.PASSWORD_RESET, _USER_ID)
        clock.advance(timedelta(hours=2))
        sweeper = TokenSweeper(clocked_store, interval_seconds=0.01)

        sweeper.start()
        try:
            for _ in range(100):
                if token_repo.count() == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await sweeper.stop()

        assert token_repo.count() == 0

    async def test_start_stop_lifecycle(self, token_store: TokenStore):
        sweeper = TokenSweeper(token_store, interval_seconds=60)
        assert not sweeper.is_running

        sweeper.start()
        assert sweeper.is_running
        sweeper.start()  # second start is a no-op
        assert sweeper.is_running

        await sweeper.stop()
        assert not sweeper.is_running

    async def test_stop_without_start(self, token_store: TokenStore):
        sweeper = TokenSweeper(token_store, interval_seconds=60)
        await sweeper.stop()
        assert not sweeper.is_running
