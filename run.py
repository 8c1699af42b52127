#!/usr/bin/env python3
"""Entry point for the commission summary refresh worker.

Listens for commission change events and recomputes the affected agent's
summary, so dashboards reading the cache see fresh balances.
"""

import asyncio
import logging

from dotenv import load_dotenv

# Load environment variables before importing settings
load_dotenv()

from config import settings
from database.connection import Database
from core.notifications import ChangeListener, SummaryRefresher
from services import CommissionEngine
from utils.formatters import format_breakdown, format_cedis


# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


async def log_summary(summary) -> None:
    """Default refresh sink: log the recomputed balance."""
    state = "degraded" if summary.degraded else "live"
    logger.info(
        f"Agent {summary.agent_id} available {format_cedis(summary.available_for_withdrawal)} "
        f"({state}; {format_breakdown(summary.breakdown)})"
    )


async def main():
    """Initialize and run the refresh worker."""
    logger.info("Starting commission summary worker...")

    # Initialize database
    db = Database(
        settings.database_url,
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
    )
    await db.initialize()
    logger.info("Database initialized")

    engine = CommissionEngine(db)
    listener = ChangeListener()
    SummaryRefresher(engine, log_summary).attach(listener)
    await listener.start()

    logger.info("Worker is running. Press Ctrl+C to stop.")

    try:
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        await listener.stop()
        await db.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker crashed: {e}")
        raise
