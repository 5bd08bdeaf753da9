"""API error classes.

Closed taxonomy of failures raised by the auth services. Each error has a
stable machine-readable code, a message that never reveals internals, and
the HTTP status the exception handlers in main.py map it to.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "DUPLICATE_EMAIL").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for malformed input the caller can fix: password policy,
    missing profile fields, bad coordinates.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class DuplicateEmailError(APIError):
    """An account already exists for the normalized email (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="DUPLICATE_EMAIL",
            message="An account with this email already exists",
            status_code=409,
        )


class InvalidCredentialsError(APIError):
    """Email/password pair rejected (401).

    Unknown email and wrong password share this error so callers cannot
    tell which one failed.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_CREDENTIALS",
            message="Invalid email or password",
            status_code=401,
        )


class UnverifiedAccountError(APIError):
    """Login refused until the email address is verified (403)."""

    def __init__(self) -> None:
        super().__init__(
            code="UNVERIFIED_ACCOUNT",
            message="Please verify your email before signing in",
            status_code=403,
        )


class InvalidOrExpiredTokenError(APIError):
    """Single-use token could not be redeemed (400).

    Covers not-found and expired uniformly so a caller guessing token
    values learns nothing from the response.
    """

    def __init__(self, status_code: int = 400) -> None:
        super().__init__(
            code="INVALID_OR_EXPIRED_TOKEN",
            message="Invalid or expired token",
            status_code=status_code,
        )


class InvalidTokenError(APIError):
    """Signed token failed verification (401)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_TOKEN",
            message="Invalid token",
            status_code=401,
        )


class ExpiredTokenError(APIError):
    """Signed token is past its exp claim (401)."""

    def __init__(self) -> None:
        super().__init__(
            code="EXPIRED_TOKEN",
            message="Token expired",
            status_code=401,
        )


class UserNotFoundError(APIError):
    """User id does not resolve to a record (404).

    Internal to the services. The facade surfaces it as
    InvalidOrExpiredTokenError or InternalError depending on context.
    """

    def __init__(self) -> None:
        super().__init__(
            code="USER_NOT_FOUND",
            message="User not found",
            status_code=404,
        )


class TokenConsumeError(APIError):
    """Base class for TokenStore.consume failures."""


class TokenNotFoundError(TokenConsumeError):
    """No live token matches the (type, value) pair."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_NOT_FOUND",
            message="Token not found",
            status_code=400,
        )


class TokenExpiredError(TokenConsumeError):
    """Token matched but its expiry has passed. The row is gone."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_EXPIRED",
            message="Token expired",
            status_code=400,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for store and signing failures not attributable to caller input.
    Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
