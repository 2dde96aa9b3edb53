"""Expire lapsed subscriptions.

Marks every ``active`` subscription whose ``current_period_end`` has passed
as ``expired``. Meant to run from cron, e.g. hourly:

    docker compose exec backend python -m scripts.expire_subscriptions
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import UnitOfWork, engine, init_db
from app.services.subscription_service import check_and_expire_subscriptions

logger = logging.getLogger("scripts.expire_subscriptions")


async def expire(session_factory: async_sessionmaker[AsyncSession] | None = None) -> int:
    """Run the expiry sweep in its own transaction and return the number expired."""
    async with UnitOfWork.begin(session_factory) as uow:
        count = await check_and_expire_subscriptions(uow)
    logger.info("Subscription expiry sweep finished: %d expired", count)
    return count


async def main() -> None:
    await init_db()
    try:
        await expire()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())
