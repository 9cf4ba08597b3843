"""Background task that assigns grid numbers shortly before kickoff.

Every ``ASSIGNMENT_CHECK_INTERVAL_SECONDS`` the sweep looks for active
games without numbers whose start is at most ``ASSIGNMENT_WINDOW_MINUTES``
away and draws their permutations.
"""

import asyncio
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from squares.config import settings
from squares.dal.database import get_database
from squares.dal.games_dal import GameDAL
from squares.services.number_assigner import NumberAssigner

logger = logging.getLogger("squares.tasks.number_assignment")

# Global task handle for cancellation
_assignment_task: Optional[asyncio.Task] = None


async def run_assignment_sweep(db: Optional[AsyncIOMotorDatabase] = None) -> int:
    """Assign numbers for every due game.

    Returns:
        Number of games that received numbers.
    """
    if db is None:
        try:
            db = get_database()
        except RuntimeError:
            logger.warning("Database not available, skipping number assignment")
            return 0

    assigner = NumberAssigner(GameDAL(db))
    return await assigner.assign_due_numbers()


async def _assignment_loop(interval: int) -> None:
    """Background loop that periodically runs the sweep."""
    logger.info("Number assignment scheduler started (interval=%ds)", interval)

    while True:
        try:
            await asyncio.sleep(interval)
            await run_assignment_sweep()
        except asyncio.CancelledError:
            logger.info("Number assignment scheduler stopped")
            break
        except Exception as e:
            logger.error("Error in number assignment scheduler: %s", str(e))


def start_assignment_scheduler(interval: Optional[int] = None) -> None:
    """Start the background number assignment task."""
    global _assignment_task

    if _assignment_task is not None and not _assignment_task.done():
        logger.warning("Number assignment scheduler already running")
        return

    if interval is None:
        interval = settings.ASSIGNMENT_CHECK_INTERVAL_SECONDS
    _assignment_task = asyncio.create_task(_assignment_loop(interval))
    logger.info("Number assignment scheduler task created")


def stop_assignment_scheduler() -> None:
    """Stop the background number assignment task."""
    global _assignment_task

    if _assignment_task is not None and not _assignment_task.done():
        _assignment_task.cancel()
        logger.info("Number assignment scheduler task cancelled")
    _assignment_task = None


def is_running() -> bool:
    return _assignment_task is not None and not _assignment_task.done()
