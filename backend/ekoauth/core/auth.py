"""Password hashing, password policy, and JWT signing primitives.

Shared building blocks for the credential and token services.

Pipeline:
- validate_password_strength: Format rules (sync, no network)
- BcryptPasswordHasher: bcrypt hash/verify behind the PasswordHasher protocol
- JwtTokenSigner: HS256 sign/verify behind the TokenSigner protocol
- DUMMY_HASH: Timing-safe constant for user enumeration defense
"""

import base64
import hashlib
import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import bcrypt
import jwt

from ekoauth.core.errors import (
    ExpiredTokenError,
    InternalError,
    InvalidTokenError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

# bcrypt only reads the first 72 bytes of its input
_BCRYPT_MAX_BYTES = 72

_JWT_ALGORITHM = "HS256"

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
# Pre-generated to avoid ~300ms bcrypt computation on every app startup.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"
_DUMMY_HASH_ROUNDS = 12


def validate_password_strength(password: str) -> None:
    """Validate password meets strength requirements.

    8-128 chars, at least one uppercase letter, one digit and one symbol.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If password doesn't meet requirements.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError("Password must be at least 8 characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        raise ValidationError("Password must be at most 128 characters")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one number")
    if not re.search(r"[^a-zA-Z\d\s]", password):
        raise ValidationError("Password must contain at least one special character")


def _bcrypt_input(password: str) -> bytes:
    encoded = password.encode()
    if len(encoded) <= _BCRYPT_MAX_BYTES:
        return encoded
    # Long passphrases are pre-hashed so every byte counts.
    return base64.b64encode(hashlib.sha256(encoded).digest())


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...

    def verify_dummy(self, password: str) -> None: ...


class BcryptPasswordHasher:
    """bcrypt with a configurable cost factor.

    Both methods are CPU-bound; callers on the event loop run them via
    asyncio.to_thread.
    """

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        if rounds == _DUMMY_HASH_ROUNDS:
            self._dummy_hash = DUMMY_HASH
        else:
            # Dummy cost must match real hashes or timing leaks the difference.
            self._dummy_hash = bcrypt.hashpw(
                b"dummy-password", bcrypt.gensalt(rounds=rounds)
            )

    def hash(self, password: str) -> str:
        """Hash a plain-text password.

        Raises:
            InternalError: If bcrypt rejects the input.
        """
        try:
            hashed = bcrypt.hashpw(
                _bcrypt_input(password), bcrypt.gensalt(rounds=self._rounds)
            )
        except ValueError as exc:
            logger.error("bcrypt hashing failed")
            raise InternalError() from exc
        return hashed.decode()

    def verify(self, password: str, password_hash: str) -> bool:
        """Check a password against a stored hash.

        A malformed stored hash counts as a mismatch.
        """
        try:
            return bcrypt.checkpw(_bcrypt_input(password), password_hash.encode())
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    def verify_dummy(self, password: str) -> None:
        """Burn the same CPU time as verify() for an unknown account."""
        bcrypt.checkpw(_bcrypt_input(password), self._dummy_hash)


class TokenSigner(Protocol):
    def sign(self, claims: dict[str, Any], ttl: timedelta, secret: str) -> str: ...

    def verify(self, token: str, secret: str, token_use: str) -> dict[str, Any]: ...


class JwtTokenSigner:
    """HS256 JWTs with issuer, audience and a typ claim.

    The typ claim separates access tokens from refresh envelopes so one
    kind is never accepted where the other is expected.
    """

    def __init__(self, *, issuer: str, audience: str) -> None:
        self._issuer = issuer
        self._audience = audience

    def sign(self, claims: dict[str, Any], ttl: timedelta, secret: str) -> str:
        """Create a signed JWT with standard claims.

        Args:
            claims: Payload claims (sub, typ, and any extras).
            ttl: Time until expiration.
            secret: HMAC signing secret.

        Returns:
            Encoded JWT string.
        """
        now = datetime.now(UTC)
        payload = {
            **claims,
            "aud": self._audience,
            "iss": self._issuer,
            "exp": now + ttl,
            "iat": now,
        }
        return jwt.encode(payload, secret, algorithm=_JWT_ALGORITHM)

    def verify(self, token: str, secret: str, token_use: str) -> dict[str, Any]:
        """Decode and validate a JWT.

        Args:
            token: Encoded JWT.
            secret: HMAC secret the token must be signed with.
            token_use: Required value of the typ claim.

        Returns:
            Decoded claims.

        Raises:
            ExpiredTokenError: If exp has passed.
            InvalidTokenError: For any other signature or claim failure.
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                secret,
                algorithms=[_JWT_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredTokenError() from exc
        except jwt.PyJWTError as exc:
            raise InvalidTokenError() from exc

        if payload.get("typ") != token_use:
            raise InvalidTokenError()
        return payload
