"""Token model - single-use, typed, time-limited secrets.

Stores email-verification, password-reset and refresh tokens. Only the
SHA-256 digest of the token value is persisted; the plain value is handed
to the user and never written to the database.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ekoauth.models.base import Base, utcnow

if TYPE_CHECKING:
    from ekoauth.models.user import User


class TokenType(str, enum.Enum):
    """Kinds of single-use tokens."""

    EMAIL_VERIFICATION = "email-verification"
    PASSWORD_RESET = "password-reset"
    REFRESH = "refresh"


class Token(Base):
    """Persisted token row.

    Attributes:
        token_hash: SHA-256 hex digest of the plain value. Primary key, so
            unique across all token types.
        user_id: Owning user. Cascades on user deletion.
        token_type: One of TokenType.
        expires_at: Expiry timestamp. Strictly after created_at.
        created_at: Creation timestamp.
    """

    __tablename__ = "tokens"
    __table_args__ = (
        CheckConstraint(
            "token_type IN ('email-verification', 'password-reset', 'refresh')",
            name="ck_tokens_token_type",
        ),
        CheckConstraint(
            "expires_at > created_at", name="ck_tokens_expires_after_created"
        ),
        Index("idx_tokens_user_type", "user_id", "token_type"),
        Index("idx_tokens_expires_at", "expires_at"),
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="tokens")
