"""Free claim slot Data Access Layer -- the free-game box cap.

A user may hold at most ``limit`` boxes in a free game. Each held box
occupies one slot document keyed ``<game_id>:<user_id>:<slot>``; because
slot numbers are bounded by the limit, the primary key makes exceeding
the cap impossible even under concurrent claims.
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from squares.models.common import utc_now

logger = logging.getLogger("squares.dal.free_claims")

COLLECTION = "free_claims"


def _slot_key(game_id: str, user_id: str, slot: int) -> str:
    return f"{game_id}:{user_id}:{slot}"


class FreeClaimDAL:
    """Data access layer for the free_claims collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    async def reserve(
        self, game_id: str, user_id: str, box_id: str, limit: int
    ) -> Optional[int]:
        """Take the lowest free slot for ``user_id`` in ``game_id``.

        Returns:
            The slot number taken, or None when all ``limit`` slots are held.
        """
        for slot in range(limit):
            try:
                await self._collection.insert_one(
                    {
                        "_id": _slot_key(game_id, user_id, slot),
                        "game_id": game_id,
                        "user_id": user_id,
                        "box_id": box_id,
                        "created_at": utc_now(),
                    }
                )
            except DuplicateKeyError:
                continue
            return slot
        return None

    async def release(self, game_id: str, user_id: str, slot: int) -> bool:
        result = await self._collection.delete_one(
            {"_id": _slot_key(game_id, user_id, slot)}
        )
        return result.deleted_count > 0

    async def release_for_box(self, game_id: str, user_id: str, box_id: str) -> bool:
        """Free whichever slot is held for ``box_id``."""
        result = await self._collection.delete_one(
            {"game_id": game_id, "user_id": user_id, "box_id": box_id}
        )
        if result.deleted_count > 0:
            logger.info("Released free slot of %s in game %s (box %s)", user_id, game_id, box_id)
        return result.deleted_count > 0

    async def count(self, game_id: str, user_id: str) -> int:
        return await self._collection.count_documents(
            {"game_id": game_id, "user_id": user_id}
        )
