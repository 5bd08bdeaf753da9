"""Application configuration loaded from environment variables.

Settings for the database, token signing, token lifetimes, email delivery
and the HTTP layer. Uses pydantic-settings for validation and .env file
support.
"""

from datetime import timedelta
from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
_INSECURE_DEFAULT_PASSWORD = "ekoauth_dev_password"  # nosec B105

# Minimum length for signing secrets in production (256 bits = 32 bytes)
_MIN_SECRET_LENGTH = 32

# bcrypt accepts log2 cost factors in this range
_BCRYPT_MIN_ROUNDS = 4
_BCRYPT_MAX_ROUNDS = 31


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "ekoauth"
    database_user: str = "ekoauth_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    # Full SQLAlchemy URL; overrides the individual database_* fields
    database_url_override: str = ""

    # "postgres" for the SQL repositories, "memory" for local development
    storage_backend: Literal["postgres", "memory"] = "postgres"

    # API
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000
    allowed_origins: list[str] = ["http://localhost:5173"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Token signing. Access and refresh tokens use distinct secrets so a
    # leaked access secret cannot forge refresh envelopes (and vice versa).
    auth_access_secret: SecretStr = SecretStr("dev-access-secret-change-me")
    auth_refresh_secret: SecretStr = SecretStr("dev-refresh-secret-change-me")
    auth_issuer: str = "ekodirekt"
    auth_audience: str = "ekodirekt-api"

    # Token lifetimes
    access_token_ttl_minutes: int = 60
    refresh_token_ttl_days: int = 7
    email_verification_ttl_hours: int = 24
    password_reset_ttl_minutes: int = 60

    # Login policy: reject unverified accounts at login
    require_email_verification: bool = True

    # Password hashing cost (bcrypt log2 rounds)
    bcrypt_rounds: int = 12

    # Timeouts for store round trips and email dispatch
    store_timeout_seconds: float = 5.0
    email_timeout_seconds: float = 10.0

    # Expired token sweep interval; 0 disables the background sweeper
    token_sweep_interval_seconds: int = 0

    # Email
    email_from: str = "no-reply@ekodirekt.com"
    resend_api_key: SecretStr = SecretStr("")
    frontend_url: str = "http://localhost:5173"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_login: str = "10/minute"
    rate_limit_register: str = "5/hour"
    rate_limit_email: str = "5/hour"

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return self.database_url.replace("+asyncpg", "")

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_ttl_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_ttl_days)

    @property
    def email_verification_ttl(self) -> timedelta:
        return timedelta(hours=self.email_verification_ttl_hours)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(minutes=self.password_reset_ttl_minutes)

    @model_validator(mode="after")
    def check_security(self) -> "Settings":
        """Validate security invariants.

        Checks:
        - Access and refresh secrets must differ (all environments)
        - Token lifetimes must be positive (all environments)
        - bcrypt rounds must be within bcrypt's accepted range
        - CORS must not use wildcard origin (incompatible with credentials)
        - Production: no default database password, no short secrets,
          no in-memory storage
        """
        access = self.auth_access_secret.get_secret_value()
        refresh = self.auth_refresh_secret.get_secret_value()
        if access == refresh:
            msg = (
                "AUTH_ACCESS_SECRET and AUTH_REFRESH_SECRET must be different. "
                "A shared secret lets one token kind be forged as the other."
            )
            raise ValueError(msg)

        lifetimes = {
            "ACCESS_TOKEN_TTL_MINUTES": self.access_token_ttl_minutes,
            "REFRESH_TOKEN_TTL_DAYS": self.refresh_token_ttl_days,
            "EMAIL_VERIFICATION_TTL_HOURS": self.email_verification_ttl_hours,
            "PASSWORD_RESET_TTL_MINUTES": self.password_reset_ttl_minutes,
        }
        for name, value in lifetimes.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        if not _BCRYPT_MIN_ROUNDS <= self.bcrypt_rounds <= _BCRYPT_MAX_ROUNDS:
            msg = (
                f"BCRYPT_ROUNDS must be between {_BCRYPT_MIN_ROUNDS} and "
                f"{_BCRYPT_MAX_ROUNDS}. Got: {self.bcrypt_rounds}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if (
                not self.database_url_override
                and self.database_password == _INSECURE_DEFAULT_PASSWORD
            ):
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            for name, secret in (
                ("AUTH_ACCESS_SECRET", access),
                ("AUTH_REFRESH_SECRET", refresh),
            ):
                if len(secret) < _MIN_SECRET_LENGTH:
                    msg = (
                        f"{name} must be at least {_MIN_SECRET_LENGTH} characters "
                        "in production."
                    )
                    raise ValueError(msg)

            if self.storage_backend == "memory":
                msg = "STORAGE_BACKEND=memory is not allowed in production."
                raise ValueError(msg)

        return self


settings = Settings()
