"""structlog configuration.

Called once from the app factory and the housekeeping script. Services
log through structlog.get_logger(); stdlib loggers in core helpers are
routed through the same level.
"""

import logging
from typing import Any

import structlog

# Keys whose values must never reach a log sink.
_REDACTED_KEYS = frozenset({"password", "token", "refresh_token", "password_hash"})


def _drop_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor that masks credential material passed as log fields."""
    for key in _REDACTED_KEYS & event_dict.keys():
        event_dict[key] = "[REDACTED]"
    return event_dict


def configure_logging(log_level: str = "INFO", *, development: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR).
        development: Pretty console output instead of JSON lines.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _drop_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if development:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
