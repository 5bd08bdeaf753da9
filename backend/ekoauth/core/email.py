"""Transactional email for account verification and password reset.

Simple HTTP POST to Resend. Plain-text bodies; links point at the
frontend, which posts the token back to the auth API.
"""

import logging
from datetime import timedelta
from typing import Protocol
from urllib.parse import quote, urlencode

import httpx

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0
_DEFAULT_VERIFICATION_TTL = timedelta(hours=24)
_DEFAULT_PASSWORD_RESET_TTL = timedelta(hours=1)


class EmailDeliveryError(Exception):
    """The email provider rejected or never received the message."""


def describe_ttl(ttl: timedelta) -> str:
    """Render a link lifetime for an email body, e.g. "24 hours"."""
    minutes = int(ttl.total_seconds()) // 60
    for unit, size in (("day", 1440), ("hour", 60)):
        if minutes >= size and minutes % size == 0:
            count = minutes // size
            return f"{count} {unit}" + ("s" if count != 1 else "")
    return f"{minutes} minute" + ("s" if minutes != 1 else "")


def build_action_url(frontend_url: str, path: str, token: str) -> str:
    """Build a frontend link carrying a single-use token.

    Args:
        frontend_url: Base URL of the frontend, without trailing slash.
        path: Route on the frontend, e.g. "verify-email".
        token: Plain (unhashed) token value.

    Returns:
        Absolute URL with the token as a query parameter.
    """
    params = urlencode({"token": token}, quote_via=quote)
    return f"{frontend_url.rstrip('/')}/{path}?{params}"


class EmailSender(Protocol):
    async def send_verification_email(
        self, *, to_email: str, name: str, verify_url: str
    ) -> None: ...

    async def send_password_reset_email(
        self, *, to_email: str, name: str, reset_url: str
    ) -> None: ...

    async def send_welcome_email(self, *, to_email: str, name: str) -> None: ...


class ResendEmailSender:
    """EmailSender backed by the Resend HTTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str,
        timeout: float = _RESEND_TIMEOUT,
        verification_ttl: timedelta = _DEFAULT_VERIFICATION_TTL,
        password_reset_ttl: timedelta = _DEFAULT_PASSWORD_RESET_TTL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_address = from_address
        self._timeout = timeout
        self._verification_ttl = verification_ttl
        self._password_reset_ttl = password_reset_ttl
        self._transport = transport

    async def _send(self, *, to_email: str, subject: str, text: str) -> None:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self._from_address,
                        "to": to_email,
                        "subject": subject,
                        "text": text,
                    },
                    timeout=self._timeout,
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Resend request failed: %s", type(exc).__name__)
            raise EmailDeliveryError(subject) from exc

    async def send_verification_email(
        self, *, to_email: str, name: str, verify_url: str
    ) -> None:
        """Send the account verification link.

        Raises:
            EmailDeliveryError: If Resend is unreachable or rejects the message.
        """
        await self._send(
            to_email=to_email,
            subject="Confirm your email address - EkoDirekt",
            text=(
                f"Hello {name},\n\n"
                "Thanks for signing up to EkoDirekt. Confirm your email "
                f"address to activate your account:\n\n{verify_url}\n\n"
                f"This link is valid for {describe_ttl(self._verification_ttl)}. "
                "If you didn't sign up, you can safely ignore this email."
            ),
        )

    async def send_password_reset_email(
        self, *, to_email: str, name: str, reset_url: str
    ) -> None:
        """Send the password reset link.

        Raises:
            EmailDeliveryError: If Resend is unreachable or rejects the message.
        """
        await self._send(
            to_email=to_email,
            subject="Reset your password - EkoDirekt",
            text=(
                f"Hello {name},\n\n"
                "We received a request to reset your EkoDirekt password. "
                f"Set a new password here:\n\n{reset_url}\n\n"
                f"This link is valid for {describe_ttl(self._password_reset_ttl)}. "
                "If you didn't request this, you can safely ignore this email."
            ),
        )

    async def send_welcome_email(self, *, to_email: str, name: str) -> None:
        """Send the welcome message after a successful verification."""
        await self._send(
            to_email=to_email,
            subject="Welcome to EkoDirekt!",
            text=(
                f"Hello {name},\n\n"
                "Your account is active. EkoDirekt connects local organic "
                "farmers directly with the people who eat their food.\n\n"
                "The EkoDirekt team"
            ),
        )


class LoggingEmailSender:
    """EmailSender for development: logs the recipient instead of sending.

    Links are logged at DEBUG only, since they carry live tokens.
    """

    async def send_verification_email(
        self, *, to_email: str, name: str, verify_url: str
    ) -> None:
        logger.info("Verification email suppressed (no RESEND_API_KEY)")
        logger.debug("Verification link for %s: %s", to_email, verify_url)

    async def send_password_reset_email(
        self, *, to_email: str, name: str, reset_url: str
    ) -> None:
        logger.info("Password reset email suppressed (no RESEND_API_KEY)")
        logger.debug("Password reset link for %s: %s", to_email, reset_url)

    async def send_welcome_email(self, *, to_email: str, name: str) -> None:
        logger.info("Welcome email suppressed (no RESEND_API_KEY)")
