"""Refresh token revocation: single device and sign-out-everywhere."""

import uuid

import structlog

from ekoauth.core.errors import ExpiredTokenError, InvalidTokenError, TokenConsumeError
from ekoauth.models.token import TokenType
from ekoauth.services.token_issuer import TokenIssuer
from ekoauth.services.token_store import TokenStore

logger = structlog.get_logger()


class SessionRevoker:
    def __init__(self, token_store: TokenStore, issuer: TokenIssuer) -> None:
        self._token_store = token_store
        self._issuer = issuer

    async def revoke_session(self, refresh_token: str) -> bool:
        """Revoke one refresh token (single-device logout).

        Idempotent: a forged, expired or already-used token is a no-op.
        Store failures propagate as InternalError.

        Returns:
            True if a live session was revoked.
        """
        try:
            claims = self._issuer.open_refresh(refresh_token)
            await self._token_store.consume(TokenType.REFRESH, claims.value)
        except (InvalidTokenError, ExpiredTokenError, TokenConsumeError):
            return False
        logger.info("session_revoked", user_id=str(claims.user_id))
        return True

    async def revoke_all_sessions(self, user_id: uuid.UUID) -> int:
        """Revoke every refresh token of a user.

        Returns:
            Number of revoked sessions.
        """
        return await self._token_store.revoke_all(user_id, TokenType.REFRESH)
