"""Apply the period_end transition to subscriptions whose billing period lapsed.

A subscription whose payment is past due or canceled loses paid access once
its current period ends. Stripe does not send an event at that moment, so this
sweep runs on a schedule (cron, every few minutes is plenty).

Run inside Docker:
    docker compose exec backend python -m scripts.expire_billing_periods
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finwise.config import get_settings
from finwise.database import create_engine, create_session_factory
from finwise.services.subscription_service import (
    apply_lifecycle_transition,
    find_users_with_lapsed_periods,
)
from finwise.subscriptions.states import utcnow
from finwise.subscriptions.transitions import Transition

logger = logging.getLogger("scripts.expire_billing_periods")


async def expire_lapsed_periods(session_factory: async_sessionmaker[AsyncSession]) -> int:
    """Downgrade every lapsed subscription, one transaction per user.

    Returns the number of users processed. A failure for one user is logged
    and does not stop the sweep; that user is retried on the next run.
    """
    now = utcnow()
    async with session_factory() as db:
        user_ids = await find_users_with_lapsed_periods(db, now)

    processed = 0
    for user_id in user_ids:
        async with session_factory() as db:
            try:
                await apply_lifecycle_transition(db, user_id, Transition.PERIOD_END, now=now)
                await db.commit()
                processed += 1
            except Exception:
                await db.rollback()
                logger.exception("Failed to apply period_end for user %s", user_id)

    logger.info("Period-end sweep: %d of %d lapsed subscriptions downgraded", processed, len(user_ids))
    return processed


async def main() -> None:
    settings = get_settings()
    engine = create_engine(settings)
    try:
        await expire_lapsed_periods(create_session_factory(engine))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())
