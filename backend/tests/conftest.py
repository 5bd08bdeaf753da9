"""Shared test fixtures.

Services run over the in-memory repositories unless a test asks for the
SQL ones (sqlite_session_factory). bcrypt runs at cost 4 so hashing stays
fast; the clock is injectable so expiry can be tested without sleeping.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ekoauth.core.auth import BcryptPasswordHasher, JwtTokenSigner
from ekoauth.core.email import EmailDeliveryError
from ekoauth.models.base import Base
from ekoauth.models.token import Token
from ekoauth.models.user import User
from ekoauth.repositories.memory import MemoryTokenRepository, MemoryUserRepository
from ekoauth.services.auth_facade import AuthFacade, RegistrationData
from ekoauth.services.credential_manager import CredentialManager, Location, UserProfile
from ekoauth.services.session_revoker import SessionRevoker
from ekoauth.services.token_issuer import TokenIssuer
from ekoauth.services.token_store import TokenStore

# Security: test-only secrets. Production uses real secrets from env.
TEST_ACCESS_SECRET = "test-access-secret-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_REFRESH_SECRET = "test-refresh-secret-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_ISSUER = "ekodirekt"
TEST_AUDIENCE = "ekodirekt-api"

TEST_EMAIL = "farmer@example.com"
TEST_PASSWORD = "Secret123!"  # nosec B105  # gitleaks:allow
TEST_FRONTEND_URL = "http://frontend.test"

# Low cost factor for fast tests
BCRYPT_TEST_ROUNDS = 4


def make_profile(**overrides) -> UserProfile:
    """Valid farmer profile, with optional field overrides."""
    values = {
        "full_name": "Jan Kowalski",
        "phone_number": "+48 600 100 200",
        "role": "farmer",
        "location": Location(address="Ul. Polna 1, Lublin", coordinates=(22.57, 51.25)),
    }
    values.update(overrides)
    return UserProfile(**values)


def registration(email: str = TEST_EMAIL, password: str = TEST_PASSWORD) -> RegistrationData:
    return RegistrationData(email=email, password=password, profile=make_profile())


def token_from_url(url: str) -> str:
    """Extract the token query parameter from an emailed link."""
    return parse_qs(urlparse(url).query)["token"][0]


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Mutable clock for expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@dataclass
class SentEmail:
    kind: str
    to_email: str
    name: str
    url: str | None = None


@dataclass
class RecordingEmailSender:
    """EmailSender that records messages instead of sending them."""

    sent: list[SentEmail] = field(default_factory=list)
    fail: bool = False

    def _record(self, message: SentEmail) -> None:
        if self.fail:
            raise EmailDeliveryError(message.kind)
        self.sent.append(message)

    async def send_verification_email(
        self, *, to_email: str, name: str, verify_url: str
    ) -> None:
        self._record(SentEmail("verification", to_email, name, verify_url))

    async def send_password_reset_email(
        self, *, to_email: str, name: str, reset_url: str
    ) -> None:
        self._record(SentEmail("password_reset", to_email, name, reset_url))

    async def send_welcome_email(self, *, to_email: str, name: str) -> None:
        self._record(SentEmail("welcome", to_email, name))

    def last(self, kind: str) -> SentEmail:
        matching = [m for m in self.sent if m.kind == kind]
        assert matching, f"no {kind} email sent"
        return matching[-1]


class InterleavingUserRepository(MemoryUserRepository):
    """Yields to the event loop before each write so concurrent callers interleave."""

    async def create(self, **kwargs) -> User:
        await asyncio.sleep(0)
        return await super().create(**kwargs)


class InterleavingTokenRepository(MemoryTokenRepository):
    """Yields to the event loop before each consume so concurrent callers interleave."""

    async def consume(self, *, token_type: str, token_hash: str) -> Token | None:
        await asyncio.sleep(0)
        return await super().consume(token_type=token_type, token_hash=token_hash)


# =============================================================================
# Service graph over in-memory repositories
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_repo() -> MemoryUserRepository:
    return InterleavingUserRepository()


@pytest.fixture
def token_repo() -> MemoryTokenRepository:
    return InterleavingTokenRepository()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def token_store(token_repo: MemoryTokenRepository) -> TokenStore:
    return TokenStore(token_repo)


@pytest.fixture
def signer() -> JwtTokenSigner:
    return JwtTokenSigner(issuer=TEST_ISSUER, audience=TEST_AUDIENCE)


@pytest.fixture
def issuer(signer: JwtTokenSigner, token_store: TokenStore) -> TokenIssuer:
    return TokenIssuer(
        signer=signer,
        token_store=token_store,
        access_secret=TEST_ACCESS_SECRET,
        refresh_secret=TEST_REFRESH_SECRET,
    )


@pytest.fixture
def hasher() -> BcryptPasswordHasher:
    return BcryptPasswordHasher(rounds=BCRYPT_TEST_ROUNDS)


@pytest.fixture
def credentials(
    user_repo: MemoryUserRepository, hasher: BcryptPasswordHasher
) -> CredentialManager:
    return CredentialManager(user_repo, hasher)


@pytest.fixture
def revoker(token_store: TokenStore, issuer: TokenIssuer) -> SessionRevoker:
    return SessionRevoker(token_store, issuer)


@pytest.fixture
def facade(
    credentials: CredentialManager,
    token_store: TokenStore,
    issuer: TokenIssuer,
    revoker: SessionRevoker,
    email_sender: RecordingEmailSender,
) -> AuthFacade:
    return AuthFacade(
        credentials=credentials,
        token_store=token_store,
        issuer=issuer,
        revoker=revoker,
        email_sender=email_sender,
        frontend_url=TEST_FRONTEND_URL,
    )


@pytest_asyncio.fixture
async def verified_user_id(
    facade: AuthFacade, email_sender: RecordingEmailSender
) -> uuid.UUID:
    """Register TEST_EMAIL and verify it through the emailed link."""
    user = await facade.register(registration())
    await facade.verify_email(token_from_url(email_sender.last("verification").url))
    return user.id


# =============================================================================
# SQLite-backed SQL repositories
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema.

    StaticPool shares the single in-memory database across sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def sqlite_session_factory(
    sqlite_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)


# =============================================================================
# API client
# =============================================================================


@pytest_asyncio.fixture
async def client(
    facade: AuthFacade, token_store: TokenStore
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the app, wired to the in-memory facade."""
    from ekoauth.main import create_app
    from ekoauth.services.factory import AuthServices

    app = create_app(services=AuthServices(facade=facade, token_store=token_store))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from ekoauth.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled
