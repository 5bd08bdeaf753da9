"""Timeout and error translation for record store round trips.

Every repository call made by the auth services goes through
guarded_store_call so a slow or failing store surfaces as InternalError
instead of hanging the request or leaking driver exceptions.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ekoauth.core.errors import InternalError

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_STORE_TIMEOUT_SECONDS = 5.0


async def guarded_store_call(
    operation: str,
    call: Awaitable[T],
    *,
    timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
) -> T:
    """Await a repository call with a deadline.

    ConstraintViolation and ValueError pass through untouched; callers map
    those to domain errors themselves.

    Args:
        operation: Short label for logs (e.g. "tokens.consume").
        call: The repository coroutine.
        timeout: Deadline in seconds.

    Returns:
        Whatever the repository call returned.

    Raises:
        InternalError: On timeout or any SQLAlchemy error. A timed-out
            call is never treated as success.
    """
    try:
        async with asyncio.timeout(timeout):
            return await call
    except TimeoutError as exc:
        logger.error("store_call_timed_out", operation=operation, timeout=timeout)
        raise InternalError() from exc
    except SQLAlchemyError as exc:
        logger.error(
            "store_call_failed", operation=operation, error=type(exc).__name__
        )
        raise InternalError() from exc
