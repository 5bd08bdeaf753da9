"""User model - credential record plus marketplace profile.

One row per normalized email. Created unverified at registration; the
password hash never leaves the repository layer.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Float, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ekoauth.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from ekoauth.models.token import Token


class UserRole(str, enum.Enum):
    """Marketplace roles carried as the access token's role claim."""

    FARMER = "farmer"
    CONSUMER = "consumer"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """User account for authentication.

    Attributes:
        id: UUID primary key.
        email: Unique, lowercase, trimmed email address.
        password_hash: bcrypt hash.
        role: farmer, consumer or admin.
        is_verified: True once an email-verification token was consumed.
        full_name: Display name.
        phone_number: Contact phone.
        location_address: Human-readable address.
        location_longitude: Longitude of the user's location.
        location_latitude: Latitude of the user's location.
        last_login_at: Timestamp of the last successful login.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserRole.CONSUMER.value,
        server_default=UserRole.CONSUMER.value,
    )
    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    phone_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    location_address: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    location_longitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    location_latitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    # Relationships
    tokens: Mapped[list["Token"]] = relationship(
        "Token",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
