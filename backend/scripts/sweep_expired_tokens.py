"""Delete expired verification, reset and refresh tokens.

One-shot housekeeping for deployments that run the sweep from cron
instead of the in-process sweeper (TOKEN_SWEEP_INTERVAL_SECONDS=0).
Expired rows are already unusable; this only reclaims space.

Usage:
    cd backend && python -m scripts.sweep_expired_tokens
"""

import structlog

from ekoauth.core.config import Settings
from ekoauth.services.factory import build_auth_services

logger = structlog.get_logger()


async def run_sweep(app_settings: Settings) -> int:
    """Sweep once against the configured storage backend.

    Returns:
        Number of deleted rows (0 if the sweep failed).
    """
    services = build_auth_services(app_settings)
    try:
        return await services.token_store.sweep_expired()
    finally:
        await services.close()


async def main() -> None:
    """CLI entry point: sweep the configured database."""
    from ekoauth.core.config import settings
    from ekoauth.core.logging_config import configure_logging

    configure_logging(settings.log_level)
    deleted = await run_sweep(settings)
    logger.info("token_sweep_finished", deleted=deleted)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
