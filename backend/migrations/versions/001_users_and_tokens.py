"""Create users and tokens tables.

Revision ID: 001_users_and_tokens
Revises:
Create Date: 2026-10-16

- users: credential record plus marketplace profile, unique email.
- tokens: SHA-256 digests of single-use verification, reset and refresh
  tokens, cascading on user deletion.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_users_and_tokens"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # =========================================================================
    # users
    # =========================================================================
    op.create_table(
        "users",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "role", sa.String(20), server_default="consumer", nullable=False
        ),
        sa.Column(
            "is_verified",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("location_address", sa.String(500), nullable=False),
        sa.Column("location_longitude", sa.Float(), nullable=False),
        sa.Column("location_latitude", sa.Float(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "role IN ('farmer', 'consumer', 'admin')", name="ck_users_role"
        ),
        sa.CheckConstraint("email = lower(email)", name="ck_users_email_lower"),
    )

    # =========================================================================
    # tokens
    # =========================================================================
    op.create_table(
        "tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_type", sa.String(32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "token_type IN ('email-verification', 'password-reset', 'refresh')",
            name="ck_tokens_token_type",
        ),
        sa.CheckConstraint(
            "expires_at > created_at", name="ck_tokens_expires_after_created"
        ),
    )
    op.create_index("idx_tokens_user_type", "tokens", ["user_id", "token_type"])
    op.create_index("idx_tokens_expires_at", "tokens", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_tokens_expires_at", table_name="tokens")
    op.drop_index("idx_tokens_user_type", table_name="tokens")
    op.drop_table("tokens")
    op.drop_table("users")
