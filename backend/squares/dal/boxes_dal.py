"""Box Data Access Layer -- MongoDB operations for the boxes collection.

Each box document is keyed by ``<game_id>:<row>:<col>`` and ownership is
only ever changed through conditional single-document updates, so two
concurrent claims on the same cell cannot both succeed.
"""

import logging
from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from squares.models.box import Box, box_key
from squares.models.common import GRID_SIZE

logger = logging.getLogger("squares.dal.boxes")

COLLECTION = "boxes"


class BoxDAL:
    """Data access layer for the boxes collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    async def create_grid(self, game_id: str) -> int:
        """Insert the 100 unowned boxes of a game.

        Returns:
            The number of boxes inserted.
        """
        docs = [
            Box.unowned(game_id, row, col).to_mongo_dict()
            for row in range(GRID_SIZE)
            for col in range(GRID_SIZE)
        ]
        result = await self._collection.insert_many(docs, ordered=True)
        return len(result.inserted_ids)

    async def delete_by_game(self, game_id: str) -> int:
        """Remove every box of a game (rollback of a failed game creation)."""
        result = await self._collection.delete_many({"game_id": game_id})
        logger.info("Deleted %d boxes for game %s", result.deleted_count, game_id)
        return result.deleted_count

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, game_id: str, row: int, col: int) -> Optional[Box]:
        doc = await self._collection.find_one({"_id": box_key(game_id, row, col)})
        if doc is None:
            return None
        return Box(**doc)

    async def get_by_game(self, game_id: str) -> list[Box]:
        """All boxes of a game in row-major order."""
        cursor = self._collection.find({"game_id": game_id}).sort(
            [("row", 1), ("col", 1)]
        )
        boxes: list[Box] = []
        async for doc in cursor:
            boxes.append(Box(**doc))
        return boxes

    async def count_owned(self, game_id: str, owner_id: Optional[str] = None) -> int:
        """Count owned boxes in a game, optionally for a single owner."""
        query: dict = {"game_id": game_id}
        if owner_id is None:
            query["owner_id"] = {"$ne": None}
        else:
            query["owner_id"] = owner_id
        return await self._collection.count_documents(query)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def claim(
        self,
        game_id: str,
        row: int,
        col: int,
        owner_id: str,
        claimed_at: datetime,
    ) -> bool:
        """Compare-and-set the owner of an unowned box.

        Returns:
            True if this call set the owner, False if the box is already
            owned (or does not exist).
        """
        result = await self._collection.update_one(
            {"_id": box_key(game_id, row, col), "owner_id": None},
            {"$set": {"owner_id": owner_id, "claimed_at": claimed_at}},
        )
        if result.modified_count > 0:
            logger.info("Box (%d,%d) of game %s claimed by %s", row, col, game_id, owner_id)
        return result.modified_count > 0

    async def release(self, game_id: str, row: int, col: int, owner_id: str) -> bool:
        """Clear the owner of a box, but only if ``owner_id`` still owns it.

        Used by claim rollback and by administrative reversal.
        """
        result = await self._collection.update_one(
            {"_id": box_key(game_id, row, col), "owner_id": owner_id},
            {"$set": {"owner_id": None, "claimed_at": None}},
        )
        if result.modified_count > 0:
            logger.info("Box (%d,%d) of game %s released from %s", row, col, game_id, owner_id)
        return result.modified_count > 0
