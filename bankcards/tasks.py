"""
Scheduled jobs.

The expiry sweep marks every card whose expiry date has passed as EXPIRED.
It is safe to run as often as you like; cron it daily:

    python -m bankcards.tasks
"""

import asyncio
from datetime import date

from sqlalchemy.ext.asyncio import async_sessionmaker

from bankcards.config import settings
from bankcards.database import session_scope
from bankcards.logging_config import get_logger, setup_logging
from bankcards.services import card_service

logger = get_logger("tasks")


async def run_expiry_sweep(
    session_factory: async_sessionmaker | None = None,
    today: date | None = None,
) -> int:
    """
    Run one expiry sweep in its own unit of work.

    Returns:
        Number of cards moved to EXPIRED by this run.
    """
    logger.info("Expiry sweep started")
    try:
        async with session_scope(session_factory) as db:
            expired = await card_service.expire_cards(db, today=today)
    except Exception:
        logger.exception("Expiry sweep failed")
        raise

    logger.info("Expiry sweep finished", extra={"cards_expired": expired})
    return expired


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(run_expiry_sweep())


if __name__ == "__main__":
    main()
