"""Worker process for scheduled ledger jobs.

Runs an asyncio loop that wakes once a day and, on Jan 1, carries unused
balances forward from the year that just ended.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date

from app.db import get_session_factory

logger = logging.getLogger(__name__)

CHECK_INTERVAL_SECONDS = 86400  # 24 hours


def is_carry_forward_day(today: date) -> bool:
    return today.month == 1 and today.day == 1


async def run_daily_jobs(today: date) -> None:
    """Run whatever is due on ``today``."""
    from app.services.carryover import run_carry_forward

    if not is_carry_forward_day(today):
        logger.debug("Nothing scheduled for %s", today)
        return

    session_factory = get_session_factory()
    async with session_factory() as session:
        result = await run_carry_forward(session, today.year - 1)
    logger.info(
        "Carry forward run for %s: processed=%d skipped=%d errors=%d",
        today,
        result.processed,
        result.skipped,
        result.errors,
    )


async def run_worker_loop() -> None:
    """Main worker loop."""
    logger.info("Leave ledger worker started")

    while True:
        today = date.today()
        try:
            await run_daily_jobs(today)
        except Exception:
            logger.exception("Scheduled jobs failed for %s", today)

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker process."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    asyncio.run(run_worker_loop())


if __name__ == "__main__":
    main()
