"""Balance guard Data Access Layer -- MongoDB operations for the balances collection.

One document per user holding ``available``, a running copy of the sum of
the user's approved ledger entries. Debits reserve funds here with a
conditional ``$inc`` before the ledger entry is appended, which makes
"check balance, then spend" a single atomic step. The ledger remains the
source of truth; ``available`` may lag below it after a crash and is
repaired by ``set_available``.
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from squares.models.common import utc_now

logger = logging.getLogger("squares.dal.balances")

COLLECTION = "balances"


class BalanceDAL:
    """Data access layer for the balances collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    async def get_available(self, user_id: str) -> int:
        doc = await self._collection.find_one({"_id": user_id})
        if doc is None:
            return 0
        return doc.get("available", 0)

    async def try_debit(self, user_id: str, amount: int) -> bool:
        """Reserve ``amount`` if the user has at least that much available.

        Returns:
            True if the funds were reserved, False if the balance is too low.
        """
        result = await self._collection.update_one(
            {"_id": user_id, "available": {"$gte": amount}},
            {"$inc": {"available": -amount}, "$set": {"updated_at": utc_now()}},
        )
        return result.modified_count > 0

    async def credit(self, user_id: str, amount: int) -> None:
        """Add ``amount`` to the available balance, creating the guard if needed.

        Also used to hand back a reservation when an operation rolls back.
        """
        await self._collection.update_one(
            {"_id": user_id},
            {"$inc": {"available": amount}, "$set": {"updated_at": utc_now()}},
            upsert=True,
        )

    async def set_available(self, user_id: str, available: int) -> Optional[int]:
        """Overwrite the guard (reconciliation). Returns the previous value."""
        previous = await self.get_available(user_id)
        await self._collection.update_one(
            {"_id": user_id},
            {"$set": {"available": available, "updated_at": utc_now()}},
            upsert=True,
        )
        if previous != available:
            logger.warning(
                "Balance guard for %s reconciled from %d to %d",
                user_id,
                previous,
                available,
            )
        return previous
