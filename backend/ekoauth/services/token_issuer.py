"""Signed access tokens and refresh envelopes.

Access tokens are HS256 JWTs carrying {sub, role, typ="access"}. Refresh
tokens handed to clients are JWTs signed with a separate secret carrying
{sub, typ="refresh", jti}, where jti is the opaque value whose digest is
the authoritative row in the token store. The envelope lets a forged or
lapsed refresh token be rejected before any store round trip.

TokenIssuer never persists anything; the caller decides when a minted
refresh token is saved.
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta

from ekoauth.core.auth import TokenSigner
from ekoauth.core.errors import InvalidTokenError
from ekoauth.models.token import TokenType
from ekoauth.services.token_store import IssuedToken, TokenStore

ACCESS_TOKEN_USE = "access"
REFRESH_TOKEN_USE = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RefreshGrant:
    """A minted but unsaved refresh token.

    Attributes:
        token: The store-side token (plain value, owner, expiry).
        envelope: Signed JWT given to the client.
    """

    token: IssuedToken
    envelope: str


@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    role: str


@dataclass(frozen=True)
class RefreshClaims:
    user_id: uuid.UUID
    value: str


def _parse_subject(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise InvalidTokenError() from exc


class TokenIssuer:
    """Mints and verifies access tokens and refresh envelopes.

    Args:
        signer: JWT signing primitive.
        token_store: Source of fresh refresh token values.
        access_secret: HMAC secret for access tokens.
        refresh_secret: HMAC secret for refresh envelopes. Must differ
            from access_secret.
        access_ttl: Access token lifetime.
    """

    def __init__(
        self,
        *,
        signer: TokenSigner,
        token_store: TokenStore,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(hours=1),
    ) -> None:
        if access_secret == refresh_secret:
            msg = "Access and refresh secrets must differ"
            raise ValueError(msg)
        self._signer = signer
        self._token_store = token_store
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._access_ttl = access_ttl

    def mint_access(self, user_id: uuid.UUID, role: str) -> str:
        return self._signer.sign(
            {"sub": str(user_id), "role": role, "typ": ACCESS_TOKEN_USE},
            self._access_ttl,
            self._access_secret,
        )

    def mint_refresh(self, user_id: uuid.UUID) -> RefreshGrant:
        """Mint a refresh token without saving it.

        The envelope expires together with the store row.
        """
        token = self._token_store.issue(TokenType.REFRESH, user_id)
        envelope = self._signer.sign(
            {"sub": str(user_id), "typ": REFRESH_TOKEN_USE, "jti": token.value},
            token.ttl,
            self._refresh_secret,
        )
        return RefreshGrant(token=token, envelope=envelope)

    def mint_pair(self, user_id: uuid.UUID, role: str) -> tuple[TokenPair, RefreshGrant]:
        grant = self.mint_refresh(user_id)
        pair = TokenPair(
            access_token=self.mint_access(user_id, role),
            refresh_token=grant.envelope,
        )
        return pair, grant

    def verify_access(self, token: str) -> AccessClaims:
        """Verify an access token.

        Raises:
            InvalidTokenError: Bad signature, missing claims, or a refresh
                envelope presented as an access token.
            ExpiredTokenError: exp has passed.
        """
        payload = self._signer.verify(token, self._access_secret, ACCESS_TOKEN_USE)
        role = payload.get("role")
        if not isinstance(role, str):
            raise InvalidTokenError()
        return AccessClaims(user_id=_parse_subject(payload), role=role)

    def open_refresh(self, token: str) -> RefreshClaims:
        """Verify a refresh envelope and extract the opaque value.

        Raises:
            InvalidTokenError: Bad signature or claims.
            ExpiredTokenError: exp has passed.
        """
        payload = self._signer.verify(token, self._refresh_secret, REFRESH_TOKEN_USE)
        value = payload.get("jti")
        if not isinstance(value, str) or not value:
            raise InvalidTokenError()
        return RefreshClaims(user_id=_parse_subject(payload), value=value)
