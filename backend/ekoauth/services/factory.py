"""Wiring of the auth services from settings.

build_auth_services() is the single place that picks the storage backend,
email transport and primitives. The app lifespan and the housekeeping
script both call it; tests construct the services directly.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from ekoauth.core.auth import BcryptPasswordHasher, JwtTokenSigner
from ekoauth.core.config import Settings
from ekoauth.core.database import create_engine, create_session_factory
from ekoauth.core.email import EmailSender, LoggingEmailSender, ResendEmailSender
from ekoauth.models.token import TokenType
from ekoauth.repositories.base import TokenRecordStore, UserStore
from ekoauth.repositories.memory import MemoryTokenRepository, MemoryUserRepository
from ekoauth.repositories.token_repository import SqlTokenRepository
from ekoauth.repositories.user_repository import SqlUserRepository
from ekoauth.services.auth_facade import AuthFacade
from ekoauth.services.credential_manager import CredentialManager
from ekoauth.services.session_revoker import SessionRevoker
from ekoauth.services.token_issuer import TokenIssuer
from ekoauth.services.token_store import TokenStore

logger = structlog.get_logger()


@dataclass
class AuthServices:
    """Everything the app needs at runtime.

    Attributes:
        facade: Auth operations.
        token_store: Exposed for the expired-token sweeper.
        engine: SQL engine to dispose at shutdown; None for the memory backend.
    """

    facade: AuthFacade
    token_store: TokenStore
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        await self.facade.drain()
        if self.engine is not None:
            await self.engine.dispose()


def build_email_sender(settings: Settings) -> EmailSender:
    """Resend when an API key is configured, log-only otherwise."""
    api_key = settings.resend_api_key.get_secret_value()
    if not api_key:
        logger.warning("resend_api_key_missing", fallback="logging_email_sender")
        return LoggingEmailSender()
    return ResendEmailSender(
        api_key=api_key,
        from_address=settings.email_from,
        timeout=settings.email_timeout_seconds,
        verification_ttl=settings.email_verification_ttl,
        password_reset_ttl=settings.password_reset_ttl,
    )


def build_facade(
    settings: Settings,
    *,
    users: UserStore,
    tokens: TokenRecordStore,
    email_sender: EmailSender,
) -> tuple[AuthFacade, TokenStore]:
    """Assemble the service graph over the given repositories."""
    token_store = TokenStore(
        tokens,
        ttls={
            TokenType.EMAIL_VERIFICATION: settings.email_verification_ttl,
            TokenType.PASSWORD_RESET: settings.password_reset_ttl,
            TokenType.REFRESH: settings.refresh_token_ttl,
        },
        timeout=settings.store_timeout_seconds,
    )
    issuer = TokenIssuer(
        signer=JwtTokenSigner(
            issuer=settings.auth_issuer, audience=settings.auth_audience
        ),
        token_store=token_store,
        access_secret=settings.auth_access_secret.get_secret_value(),
        refresh_secret=settings.auth_refresh_secret.get_secret_value(),
        access_ttl=settings.access_token_ttl,
    )
    credentials = CredentialManager(
        users,
        BcryptPasswordHasher(rounds=settings.bcrypt_rounds),
        timeout=settings.store_timeout_seconds,
    )
    facade = AuthFacade(
        credentials=credentials,
        token_store=token_store,
        issuer=issuer,
        revoker=SessionRevoker(token_store, issuer),
        email_sender=email_sender,
        frontend_url=settings.frontend_url,
        require_email_verification=settings.require_email_verification,
        email_timeout=settings.email_timeout_seconds,
    )
    return facade, token_store


def build_auth_services(settings: Settings) -> AuthServices:
    """Build the auth services for the configured storage backend."""
    engine: AsyncEngine | None = None
    if settings.storage_backend == "memory":
        users: UserStore = MemoryUserRepository()
        tokens: TokenRecordStore = MemoryTokenRepository()
    else:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        users = SqlUserRepository(session_factory)
        tokens = SqlTokenRepository(session_factory)

    facade, token_store = build_facade(
        settings,
        users=users,
        tokens=tokens,
        email_sender=build_email_sender(settings),
    )
    logger.info("auth_services_built", storage_backend=settings.storage_backend)
    return AuthServices(facade=facade, token_store=token_store, engine=engine)
