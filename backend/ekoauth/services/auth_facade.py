"""User-facing auth operations.

Composes CredentialManager, TokenStore, TokenIssuer and SessionRevoker
into register, login, refresh, email verification, password reset and
session management. Each operation is a straight line of calls that
either returns a result or raises from the closed error taxonomy in
core/errors.py; status codes are the HTTP layer's business.

Refresh token lifecycle:
    Issued -> Consumed (refresh; a successor is issued)
           -> Expired  (time)
           -> Revoked  (logout, logout-all, password reset or change)

Rotation consumes the presented token before the successor is saved. If
saving fails, the user ends up logged out rather than holding two live
refresh tokens.

request_password_reset and resend_verification answer the same way
whether or not the account exists, and generate a token on every path.
Saving that token and sending the email run as tracked background tasks;
drain() waits for them and runs at shutdown.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass
from typing import Any

import structlog

from ekoauth.core.auth import validate_password_strength
from ekoauth.core.email import EmailDeliveryError, EmailSender, build_action_url
from ekoauth.core.errors import (
    ExpiredTokenError,
    InternalError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    TokenConsumeError,
    UnverifiedAccountError,
    UserNotFoundError,
)
from ekoauth.models.token import TokenType
from ekoauth.schemas.auth import UserPublic
from ekoauth.services.credential_manager import CredentialManager, UserProfile
from ekoauth.services.session_revoker import SessionRevoker
from ekoauth.services.token_issuer import TokenIssuer, TokenPair
from ekoauth.services.token_store import IssuedToken, TokenStore

logger = structlog.get_logger()

DEFAULT_EMAIL_TIMEOUT_SECONDS = 10.0

# Owner id for tokens generated on the unknown-account path. Never saved.
_NO_USER_ID = uuid.UUID(int=0)


@dataclass(frozen=True)
class RegistrationData:
    email: str
    password: str
    profile: UserProfile


@dataclass(frozen=True)
class LoginResult:
    user: UserPublic
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller behind an access token."""

    user: UserPublic
    role: str

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id


class AuthFacade:
    """Entry point for every auth operation.

    Args:
        credentials: User credential owner.
        token_store: Single-use token persistence.
        issuer: Access token and refresh envelope minting.
        revoker: Session revocation.
        email_sender: Transactional email transport.
        frontend_url: Base URL for links in emails.
        require_email_verification: Refuse login for unverified accounts.
        email_timeout: Deadline in seconds for each email dispatch.
    """

    def __init__(
        self,
        *,
        credentials: CredentialManager,
        token_store: TokenStore,
        issuer: TokenIssuer,
        revoker: SessionRevoker,
        email_sender: EmailSender,
        frontend_url: str,
        require_email_verification: bool = True,
        email_timeout: float = DEFAULT_EMAIL_TIMEOUT_SECONDS,
    ) -> None:
        self._credentials = credentials
        self._tokens = token_store
        self._issuer = issuer
        self._revoker = revoker
        self._email = email_sender
        self._frontend_url = frontend_url
        self._require_email_verification = require_email_verification
        self._email_timeout = email_timeout
        self._deliveries: set[asyncio.Task[None]] = set()

    async def _dispatch(self, kind: str, send: Awaitable[None]) -> bool:
        """Send an email without letting delivery problems fail the caller."""
        try:
            async with asyncio.timeout(self._email_timeout):
                await send
        except (EmailDeliveryError, TimeoutError):
            logger.warning("email_dispatch_failed", kind=kind)
            return False
        return True

    def _deliver_later(self, kind: str, delivery: Coroutine[Any, Any, None]) -> None:
        """Run token persistence and email dispatch off the response path.

        Known and unknown emails both return right after the account lookup.
        """
        task = asyncio.create_task(delivery, name=f"deliver_{kind}")
        self._deliveries.add(task)
        task.add_done_callback(self._delivery_done)

    def _delivery_done(self, task: asyncio.Task[None]) -> None:
        self._deliveries.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "background_delivery_failed",
                task=task.get_name(),
                error_type=type(task.exception()).__name__,
            )

    async def drain(self) -> None:
        """Wait for every pending background delivery to finish."""
        while self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    async def _send_verification(self, user: UserPublic) -> None:
        try:
            token = await self._tokens.create(TokenType.EMAIL_VERIFICATION, user.id)
        except InternalError:
            logger.warning("verification_token_not_created", user_id=str(user.id))
            return
        await self._dispatch(
            "verification",
            self._email.send_verification_email(
                to_email=user.email,
                name=user.full_name,
                verify_url=build_action_url(
                    self._frontend_url, "verify-email", token.value
                ),
            ),
        )

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    async def register(self, data: RegistrationData) -> UserPublic:
        """Create an account and send its verification email.

        A failed token write or email dispatch does not undo the account;
        the user can ask for a new link via resend_verification.

        Raises:
            ValidationError: Bad email, password or profile.
            DuplicateEmailError: The email is taken.
        """
        user = await self._credentials.register(data.email, data.password, data.profile)
        await self._send_verification(user)
        return user

    async def verify_email(self, token: str) -> dict[str, bool]:
        """Consume a verification token and flag the account verified.

        Raises:
            InvalidOrExpiredTokenError: Unknown, used or expired token.
        """
        try:
            consumed = await self._tokens.consume(TokenType.EMAIL_VERIFICATION, token)
            user = await self._credentials.mark_verified(consumed.user_id)
        except (TokenConsumeError, UserNotFoundError) as exc:
            raise InvalidOrExpiredTokenError() from exc

        await self._dispatch(
            "welcome",
            self._email.send_welcome_email(to_email=user.email, name=user.full_name),
        )
        return {"verified": True}

    async def resend_verification(self, email: str) -> dict[str, bool]:
        """Issue a fresh verification link for an unverified account.

        Always reports success. Older verification links are revoked.
        """
        try:
            user = await self._credentials.find_by_email(email)
        except InternalError:
            return {"sent": True}

        token = self._tokens.issue(
            TokenType.EMAIL_VERIFICATION, user.id if user else _NO_USER_ID
        )
        if user is not None and not user.is_verified:
            self._deliver_later("verification", self._resend_verification(user, token))
        return {"sent": True}

    async def _resend_verification(self, user: UserPublic, token: IssuedToken) -> None:
        try:
            await self._tokens.revoke_all(user.id, TokenType.EMAIL_VERIFICATION)
            await self._tokens.save(token)
        except InternalError:
            logger.warning("verification_token_not_created", user_id=str(user.id))
            return

        await self._dispatch(
            "verification",
            self._email.send_verification_email(
                to_email=user.email,
                name=user.full_name,
                verify_url=build_action_url(
                    self._frontend_url, "verify-email", token.value
                ),
            ),
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def _open_session(self, user: UserPublic) -> TokenPair:
        pair, grant = self._issuer.mint_pair(user.id, user.role)
        await self._tokens.save(grant.token)
        return pair

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate with email and password.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password.
            UnverifiedAccountError: Verification is required and missing.
        """
        user = await self._credentials.verify_password(email, password)
        if self._require_email_verification and not user.is_verified:
            logger.info("login_unverified", user_id=str(user.id))
            raise UnverifiedAccountError()

        pair = await self._open_session(user)
        user = await self._credentials.record_login(user.id)
        logger.info("login_succeeded", user_id=str(user.id))
        return LoginResult(
            user=user,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token.

        The presented token is consumed; a replay of it fails.

        Raises:
            InvalidOrExpiredTokenError: Forged, expired, used or revoked
                token, or its owner no longer exists.
        """
        try:
            claims = self._issuer.open_refresh(refresh_token)
            consumed = await self._tokens.consume(TokenType.REFRESH, claims.value)
        except (InvalidTokenError, ExpiredTokenError, TokenConsumeError) as exc:
            raise InvalidOrExpiredTokenError() from exc

        if consumed.user_id != claims.user_id:
            logger.warning("refresh_subject_mismatch", user_id=str(consumed.user_id))
            raise InvalidOrExpiredTokenError()

        try:
            user = await self._credentials.get_user(consumed.user_id)
        except UserNotFoundError as exc:
            raise InvalidOrExpiredTokenError() from exc

        pair = await self._open_session(user)
        logger.info("refresh_rotated", user_id=str(user.id))
        return pair

    async def logout(self, refresh_token: str) -> dict[str, bool]:
        """Revoke one refresh token. Idempotent."""
        await self._revoker.revoke_session(refresh_token)
        return {"logged_out": True}

    async def logout_all(self, user_id: uuid.UUID) -> dict[str, int]:
        """Revoke every refresh token of the user."""
        revoked = await self._revoker.revoke_all_sessions(user_id)
        return {"revoked": revoked}

    async def authenticate(self, access_token: str) -> AuthContext:
        """Resolve an access token to its user.

        Raises:
            InvalidTokenError: Bad token, or the user no longer exists.
            ExpiredTokenError: Token lapsed.
        """
        claims = self._issuer.verify_access(access_token)
        try:
            user = await self._credentials.get_user(claims.user_id)
        except UserNotFoundError as exc:
            raise InvalidTokenError() from exc
        return AuthContext(user=user, role=user.role)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> dict[str, bool]:
        """Email a reset link if the account exists.

        Always reports success and always generates a token, so neither
        the response nor the work done reveals whether the email is known.
        """
        try:
            user = await self._credentials.find_by_email(email)
        except InternalError:
            return {"sent": True}

        token = self._tokens.issue(
            TokenType.PASSWORD_RESET, user.id if user else _NO_USER_ID
        )
        if user is None:
            logger.info("password_reset_unknown_email")
        else:
            self._deliver_later("password_reset", self._send_password_reset(user, token))
        return {"sent": True}

    async def _send_password_reset(self, user: UserPublic, token: IssuedToken) -> None:
        try:
            await self._tokens.save(token)
        except InternalError:
            logger.warning("password_reset_token_not_created", user_id=str(user.id))
            return

        await self._dispatch(
            "password_reset",
            self._email.send_password_reset_email(
                to_email=user.email,
                name=user.full_name,
                reset_url=build_action_url(
                    self._frontend_url, "reset-password", token.value
                ),
            ),
        )

    async def reset_password(self, token: str, new_password: str) -> dict[str, bool]:
        """Set a new password with a reset token and sign out everywhere.

        The password is checked against the policy before the token is
        consumed, so a rejected password leaves the link usable. All
        refresh tokens are revoked before this returns.

        Raises:
            ValidationError: New password fails the policy.
            InvalidOrExpiredTokenError: Unknown, used or expired token.
        """
        validate_password_strength(new_password)
        try:
            consumed = await self._tokens.consume(TokenType.PASSWORD_RESET, token)
            await self._credentials.set_password(consumed.user_id, new_password)
        except (TokenConsumeError, UserNotFoundError) as exc:
            raise InvalidOrExpiredTokenError() from exc

        revoked = await self._revoker.revoke_all_sessions(consumed.user_id)
        await self._tokens.revoke_all(consumed.user_id, TokenType.PASSWORD_RESET)
        logger.info(
            "password_reset_completed",
            user_id=str(consumed.user_id),
            sessions_revoked=revoked,
        )
        return {"success": True}

    async def change_password(
        self, user_id: uuid.UUID, current_password: str, new_password: str
    ) -> dict[str, bool]:
        """Change password for a signed-in user and sign out everywhere.

        Raises:
            InvalidCredentialsError: current_password is wrong.
            ValidationError: New password fails the policy.
        """
        await self._credentials.change_password(user_id, current_password, new_password)
        await self._revoker.revoke_all_sessions(user_id)
        return {"success": True}
