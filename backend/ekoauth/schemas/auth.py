"""Auth request and response schemas.

Request bodies forbid unknown fields. UserPublic is the only shape a user
record takes outside the repository layer; it has no password hash.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ekoauth.models.user import User

# =============================================================================
# Shared
# =============================================================================


class LocationSchema(BaseModel):
    """A place on the map.

    Attributes:
        address: Human-readable address.
        coordinates: [longitude, latitude].
    """

    model_config = ConfigDict(extra="forbid")

    address: str = Field(min_length=1, max_length=500)
    coordinates: tuple[float, float]


class UserPublic(BaseModel):
    """Sanitized user record returned by the auth services and API."""

    id: uuid.UUID
    email: str
    role: str
    is_verified: bool
    full_name: str
    phone_number: str
    location: LocationSchema
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        """Build the public view of an ORM user."""
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            is_verified=user.is_verified,
            full_name=user.full_name,
            phone_number=user.phone_number,
            location=LocationSchema(
                address=user.location_address,
                coordinates=(user.location_longitude, user.location_latitude),
            ),
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


# =============================================================================
# Requests
# =============================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    full_name: str = Field(min_length=1, max_length=255)
    phone_number: str = Field(min_length=1, max_length=32)
    role: str = Field("consumer", max_length=20)
    location: LocationSchema


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /auth/refresh-token and POST /auth/logout."""

    model_config = ConfigDict(extra="forbid")

    refresh_token: str = Field(min_length=1, max_length=2048)


class TokenRequest(BaseModel):
    """Request body for POST /auth/verify-email."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)


class EmailRequest(BaseModel):
    """Request body for POST /auth/request-password-reset and resend-verification."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/change-password."""

    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# =============================================================================
# Responses
# =============================================================================


class LoginResponse(BaseModel):
    """Response for POST /auth/login."""

    user: UserPublic
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenPairResponse(BaseModel):
    """Response for POST /auth/refresh-token."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
