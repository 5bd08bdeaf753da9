"""Single-use, typed, time-limited token lifecycle.

Creates, atomically consumes, bulk-revokes and sweeps email-verification,
password-reset and refresh tokens.

Token values are 256-bit random strings from secrets.token_urlsafe. Only
their SHA-256 digest reaches the record store, so a leaked tokens table
cannot be replayed. The plain value lives in the IssuedToken handed back
to the caller and nowhere else.

consume() deletes the row in the same statement that finds it, so an
expired token is removed on first touch and reported as TokenExpired.
Callers collapse TokenNotFound and TokenExpired into one public error.
"""

import asyncio
import contextlib
import hashlib
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from ekoauth.core.errors import InternalError, TokenExpiredError, TokenNotFoundError
from ekoauth.models.base import ensure_aware, utcnow
from ekoauth.models.token import TokenType
from ekoauth.repositories.base import TokenRecordStore
from ekoauth.repositories.errors import ConstraintViolation
from ekoauth.services.store_guard import (
    DEFAULT_STORE_TIMEOUT_SECONDS,
    guarded_store_call,
)

logger = structlog.get_logger()

# 32 random bytes = 256 bits of entropy
TOKEN_VALUE_BYTES = 32

DEFAULT_TTLS: dict[TokenType, timedelta] = {
    TokenType.EMAIL_VERIFICATION: timedelta(hours=24),
    TokenType.PASSWORD_RESET: timedelta(hours=1),
    TokenType.REFRESH: timedelta(days=7),
}

# Digest collisions are practically impossible; the bound only stops a
# broken random source from looping forever.
_MAX_CREATE_ATTEMPTS = 3


def hash_token_value(value: str) -> str:
    """SHA-256 hex digest used as the token's storage key."""
    return hashlib.sha256(value.encode()).hexdigest()


@dataclass(frozen=True)
class IssuedToken:
    """A token together with its plain value.

    Attributes:
        value: Plain token value. Given to the user, never stored.
        user_id: Owning user.
        token_type: Kind of token.
        expires_at: Expiry timestamp (UTC).
        created_at: Creation timestamp (UTC).
    """

    value: str
    user_id: uuid.UUID
    token_type: TokenType
    expires_at: datetime
    created_at: datetime

    @property
    def token_hash(self) -> str:
        return hash_token_value(self.value)

    @property
    def ttl(self) -> timedelta:
        return self.expires_at - self.created_at


class TokenStore:
    """Token persistence and atomic consumption.

    Args:
        repository: Record store for token rows.
        ttls: Per-type default lifetimes. Missing types use DEFAULT_TTLS.
        timeout: Deadline in seconds for each store call.
        now: Clock, injectable for expiry tests.
    """

    def __init__(
        self,
        repository: TokenRecordStore,
        *,
        ttls: dict[TokenType, timedelta] | None = None,
        timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        for token_type, ttl in self._ttls.items():
            if ttl <= timedelta(0):
                msg = f"TTL for {token_type.value} must be positive"
                raise ValueError(msg)
        self._timeout = timeout
        self._now = now

    def default_ttl(self, token_type: TokenType) -> timedelta:
        return self._ttls[token_type]

    def issue(
        self,
        token_type: TokenType,
        user_id: uuid.UUID,
        ttl: timedelta | None = None,
    ) -> IssuedToken:
        """Generate a fresh token without persisting it.

        Raises:
            ValueError: If ttl is not positive.
        """
        lifetime = ttl if ttl is not None else self._ttls[token_type]
        if lifetime <= timedelta(0):
            msg = "Token TTL must be positive"
            raise ValueError(msg)
        created_at = self._now()
        return IssuedToken(
            value=secrets.token_urlsafe(TOKEN_VALUE_BYTES),
            user_id=user_id,
            token_type=token_type,
            expires_at=created_at + lifetime,
            created_at=created_at,
        )

    async def _insert(self, token: IssuedToken) -> None:
        await guarded_store_call(
            "tokens.insert",
            self._repository.insert(
                token_hash=token.token_hash,
                user_id=token.user_id,
                token_type=token.token_type.value,
                expires_at=token.expires_at,
                created_at=token.created_at,
            ),
            timeout=self._timeout,
        )

    async def save(self, token: IssuedToken) -> IssuedToken:
        """Persist a token produced by issue().

        Raises:
            InternalError: On store failure, timeout, or a digest collision.
        """
        try:
            await self._insert(token)
        except ConstraintViolation as exc:
            logger.error("token_digest_collision", token_type=token.token_type.value)
            raise InternalError() from exc
        logger.debug(
            "token_saved",
            user_id=str(token.user_id),
            token_type=token.token_type.value,
        )
        return token

    async def create(
        self,
        token_type: TokenType,
        user_id: uuid.UUID,
        ttl: timedelta | None = None,
    ) -> IssuedToken:
        """Generate and persist a token.

        The store's unique key on the digest is the authority on
        collisions; a collision regenerates the value.

        Args:
            token_type: Kind of token.
            user_id: Owning user.
            ttl: Lifetime override; defaults to the per-type TTL.

        Returns:
            The persisted token, including its plain value.

        Raises:
            InternalError: On store failure, timeout, or repeated collisions.
        """
        for attempt in range(1, _MAX_CREATE_ATTEMPTS + 1):
            token = self.issue(token_type, user_id, ttl)
            try:
                await self._insert(token)
            except ConstraintViolation:
                logger.warning(
                    "token_digest_collision",
                    token_type=token_type.value,
                    attempt=attempt,
                )
                continue
            logger.info(
                "token_created",
                user_id=str(user_id),
                token_type=token_type.value,
            )
            return token
        raise InternalError()

    async def consume(self, token_type: TokenType, value: str) -> IssuedToken:
        """Atomically find and delete a token.

        At most one of any number of concurrent callers presenting the same
        value gets the token back.

        Args:
            token_type: Kind the token must be.
            value: Plain token value.

        Returns:
            The consumed token.

        Raises:
            TokenNotFoundError: No row matches (type, value).
            TokenExpiredError: The row matched but had expired. It is
                deleted anyway.
            InternalError: On store failure or timeout.
        """
        row = await guarded_store_call(
            "tokens.consume",
            self._repository.consume(
                token_type=token_type.value,
                token_hash=hash_token_value(value),
            ),
            timeout=self._timeout,
        )
        if row is None:
            raise TokenNotFoundError()

        expires_at = ensure_aware(row.expires_at)
        if expires_at <= self._now():
            logger.info(
                "token_expired_on_consume",
                user_id=str(row.user_id),
                token_type=token_type.value,
            )
            raise TokenExpiredError()

        logger.info(
            "token_consumed",
            user_id=str(row.user_id),
            token_type=token_type.value,
        )
        return IssuedToken(
            value=value,
            user_id=row.user_id,
            token_type=token_type,
            expires_at=expires_at,
            created_at=ensure_aware(row.created_at),
        )

    async def revoke_all(self, user_id: uuid.UUID, token_type: TokenType) -> int:
        """Delete every token of one type owned by a user.

        Returns:
            Number of revoked tokens.

        Raises:
            InternalError: On store failure or timeout.
        """
        count = await guarded_store_call(
            "tokens.delete_for_user",
            self._repository.delete_for_user(
                user_id=user_id, token_type=token_type.value
            ),
            timeout=self._timeout,
        )
        logger.info(
            "tokens_revoked",
            user_id=str(user_id),
            token_type=token_type.value,
            count=count,
        )
        return count

    async def sweep_expired(self) -> int:
        """Delete expired rows. Best effort.

        Never raises: consume() already treats expired rows as dead, so a
        failed sweep only delays cleanup.

        Returns:
            Number of deleted rows, or 0 if the sweep failed.
        """
        try:
            count = await guarded_store_call(
                "tokens.delete_expired",
                self._repository.delete_expired(now=self._now()),
                timeout=self._timeout,
            )
        except Exception:  # noqa: BLE001
            logger.warning("token_sweep_failed", exc_info=True)
            return 0
        if count:
            logger.info("token_sweep_completed", deleted=count)
        return count


class TokenSweeper:
    """Background task that runs TokenStore.sweep_expired on an interval.

    Lifecycle:
    - start() creates an asyncio task that runs the sweep loop.
    - stop() cancels the task and waits for it to finish.

    Args:
        token_store: Store to sweep.
        interval_seconds: Seconds between sweeps.
    """

    def __init__(self, token_store: TokenStore, *, interval_seconds: float) -> None:
        self._token_store = token_store
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. No-op if already running."""
        if self.is_running:
            logger.warning("token_sweeper_already_running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("token_sweeper_started", interval_seconds=self._interval_seconds)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to exit."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("token_sweeper_stopped")

    async def _run_loop(self) -> None:
        """Background loop: sleep, sweep, repeat."""
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self._token_store.sweep_expired()
