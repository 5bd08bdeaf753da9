"""Credential fields of the user record.

Registration, password verification, password changes and the
verified/last-login flags. No token issuance and no email here; the
AuthFacade orchestrates those around these calls.

Password hashing is CPU-bound (bcrypt, ~100ms at cost 12) and always runs
in a worker thread so the event loop keeps serving other requests.
"""

import asyncio
import math
import uuid
from dataclasses import dataclass

import structlog
from email_validator import EmailNotValidError, validate_email

from ekoauth.core.auth import PasswordHasher, validate_password_strength
from ekoauth.core.errors import (
    DuplicateEmailError,
    InvalidCredentialsError,
    UserNotFoundError,
    ValidationError,
)
from ekoauth.models.base import utcnow
from ekoauth.models.user import User, UserRole
from ekoauth.repositories.base import UserStore
from ekoauth.repositories.errors import ConstraintViolation
from ekoauth.schemas.auth import UserPublic
from ekoauth.services.store_guard import (
    DEFAULT_STORE_TIMEOUT_SECONDS,
    guarded_store_call,
)

logger = structlog.get_logger()

# Roles a user may pick at sign-up. Admins are provisioned out of band.
SELF_REGISTRABLE_ROLES = frozenset({UserRole.FARMER.value, UserRole.CONSUMER.value})


@dataclass(frozen=True)
class Location:
    """Address plus (longitude, latitude)."""

    address: str
    coordinates: tuple[float, float]


@dataclass(frozen=True)
class UserProfile:
    """Marketplace profile captured at registration."""

    full_name: str
    phone_number: str
    location: Location
    role: str = UserRole.CONSUMER.value


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address."""
    return email.strip().lower()


def _validate_email_format(email: str) -> None:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Invalid email address") from exc


def _validate_profile(profile: UserProfile) -> None:
    """Check required profile fields.

    Raises:
        ValidationError: Listing every offending field in details.
    """
    problems: list[dict] = []
    if not profile.full_name.strip():
        problems.append({"field": "full_name", "msg": "Full name is required"})
    if not profile.phone_number.strip():
        problems.append({"field": "phone_number", "msg": "Phone number is required"})
    if profile.role not in SELF_REGISTRABLE_ROLES:
        problems.append({"field": "role", "msg": "Role must be farmer or consumer"})
    if not profile.location.address.strip():
        problems.append(
            {"field": "location.address", "msg": "Location address is required"}
        )

    coordinates = profile.location.coordinates
    if len(coordinates) != 2 or not all(
        isinstance(c, int | float) and math.isfinite(c) for c in coordinates
    ):
        problems.append(
            {
                "field": "location.coordinates",
                "msg": "Coordinates must be [longitude, latitude]",
            }
        )
    else:
        longitude, latitude = coordinates
        if not -180 <= longitude <= 180 or not -90 <= latitude <= 90:
            problems.append(
                {"field": "location.coordinates", "msg": "Coordinates out of range"}
            )

    if problems:
        raise ValidationError("Invalid registration data", details=problems)


class CredentialManager:
    """Owns registration and password state of user records.

    Args:
        users: User record store.
        hasher: Password hashing primitive.
        timeout: Deadline in seconds for each store call.
    """

    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        *,
        timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._timeout = timeout

    async def _load(self, user_id: uuid.UUID) -> User:
        user = await guarded_store_call(
            "users.get_by_id", self._users.get_by_id(user_id), timeout=self._timeout
        )
        if user is None:
            raise UserNotFoundError()
        return user

    async def _update(self, user_id: uuid.UUID, **fields) -> User:
        user = await guarded_store_call(
            "users.update",
            self._users.update(user_id, **fields),
            timeout=self._timeout,
        )
        if user is None:
            raise UserNotFoundError()
        return user

    async def register(
        self, email: str, password: str, profile: UserProfile
    ) -> UserPublic:
        """Create an unverified user.

        Args:
            email: Email address; normalized before storage.
            password: Plain-text password; must satisfy the password policy.
            profile: Marketplace profile fields.

        Returns:
            The created user, without its password hash.

        Raises:
            ValidationError: Bad email, password or profile.
            DuplicateEmailError: The normalized email is taken.
        """
        normalized = normalize_email(email)
        _validate_email_format(normalized)
        validate_password_strength(password)
        _validate_profile(profile)

        # Fast path only; the unique index decides under concurrency.
        existing = await guarded_store_call(
            "users.get_by_email",
            self._users.get_by_email(normalized),
            timeout=self._timeout,
        )
        if existing is not None:
            raise DuplicateEmailError()

        password_hash = await asyncio.to_thread(self._hasher.hash, password)
        longitude, latitude = profile.location.coordinates
        try:
            user = await guarded_store_call(
                "users.create",
                self._users.create(
                    email=normalized,
                    password_hash=password_hash,
                    role=profile.role,
                    full_name=profile.full_name.strip(),
                    phone_number=profile.phone_number.strip(),
                    location_address=profile.location.address.strip(),
                    location_longitude=float(longitude),
                    location_latitude=float(latitude),
                ),
                timeout=self._timeout,
            )
        except ConstraintViolation as exc:
            raise DuplicateEmailError() from exc

        logger.info("user_registered", user_id=str(user.id), role=user.role)
        return UserPublic.from_user(user)

    async def verify_password(self, email: str, password: str) -> UserPublic:
        """Check an email/password pair.

        Unknown email and wrong password fail identically, and both paths
        run one bcrypt comparison. Does not look at is_verified.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password.
        """
        user = await guarded_store_call(
            "users.get_by_email",
            self._users.get_by_email(normalize_email(email)),
            timeout=self._timeout,
        )
        if user is None:
            await asyncio.to_thread(self._hasher.verify_dummy, password)
            raise InvalidCredentialsError()

        matches = await asyncio.to_thread(
            self._hasher.verify, password, user.password_hash
        )
        if not matches:
            logger.info("password_mismatch", user_id=str(user.id))
            raise InvalidCredentialsError()
        return UserPublic.from_user(user)

    async def set_password(self, user_id: uuid.UUID, new_password: str) -> None:
        """Replace a user's password.

        Raises:
            ValidationError: New password fails the policy.
            UserNotFoundError: No such user.
        """
        validate_password_strength(new_password)
        await self._load(user_id)
        password_hash = await asyncio.to_thread(self._hasher.hash, new_password)
        await self._update(user_id, password_hash=password_hash, updated_at=utcnow())
        logger.info("password_changed", user_id=str(user_id))

    async def change_password(
        self, user_id: uuid.UUID, current_password: str, new_password: str
    ) -> None:
        """Authenticated password change.

        Raises:
            InvalidCredentialsError: current_password is wrong.
            ValidationError: New password fails the policy.
            UserNotFoundError: No such user.
        """
        user = await self._load(user_id)
        matches = await asyncio.to_thread(
            self._hasher.verify, current_password, user.password_hash
        )
        if not matches:
            raise InvalidCredentialsError()
        await self.set_password(user_id, new_password)

    async def mark_verified(self, user_id: uuid.UUID) -> UserPublic:
        """Flag the user's email as verified. Idempotent.

        Raises:
            UserNotFoundError: No such user.
        """
        user = await self._update(user_id, is_verified=True, updated_at=utcnow())
        logger.info("email_verified", user_id=str(user_id))
        return UserPublic.from_user(user)

    async def record_login(self, user_id: uuid.UUID) -> UserPublic:
        """Stamp last_login_at.

        Raises:
            UserNotFoundError: No such user.
        """
        user = await self._update(user_id, last_login_at=utcnow())
        return UserPublic.from_user(user)

    async def get_user(self, user_id: uuid.UUID) -> UserPublic:
        """Raises UserNotFoundError if the id is unknown."""
        return UserPublic.from_user(await self._load(user_id))

    async def find_by_email(self, email: str) -> UserPublic | None:
        user = await guarded_store_call(
            "users.get_by_email",
            self._users.get_by_email(normalize_email(email)),
            timeout=self._timeout,
        )
        return UserPublic.from_user(user) if user is not None else None
