"""Game Data Access Layer -- MongoDB operations for the games collection.

All ObjectId handling is transparent: callers pass/receive strings, the
DAL converts as needed.
"""

import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from squares.models.game import Game, ScorePair

logger = logging.getLogger("squares.dal.games")

COLLECTION = "games"


def _to_game(doc: dict) -> Game:
    doc["_id"] = str(doc["_id"])
    return Game(**doc)


def _score_filter(checkpoint: int, score: Optional[ScorePair]) -> dict:
    if score is None:
        return {f"scores.{checkpoint}": None}
    return {
        f"scores.{checkpoint}.home": score.home,
        f"scores.{checkpoint}.away": score.away,
    }


class GameDAL:
    """Data access layer for the games collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, game: Game) -> Game:
        """Insert a new game document.

        If ``game.id`` is already set (the grid service allocates it up
        front so boxes can reference it) that id is used.
        """
        doc = game.to_mongo_dict()
        if "_id" in doc:
            doc["_id"] = ObjectId(doc["_id"])
        result = await self._collection.insert_one(doc)
        game.id = str(result.inserted_id)
        logger.info("Created game %s (%s vs %s)", game.id, game.home_team, game.away_team)
        return game

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, game_id: str) -> Optional[Game]:
        """Find a game by its MongoDB ``_id``.

        Returns:
            A Game instance, or None if not found.
        """
        if not ObjectId.is_valid(game_id):
            return None
        doc = await self._collection.find_one({"_id": ObjectId(game_id)})
        if doc is None:
            return None
        return _to_game(doc)

    async def list_all(
        self,
        active_only: bool = False,
        limit: int = 50,
        skip: int = 0,
    ) -> list[Game]:
        """List games sorted by start time, most recent first."""
        query: dict = {"is_active": True} if active_only else {}
        cursor = (
            self._collection.find(query)
            .sort("starts_at", -1)
            .skip(skip)
            .limit(limit)
        )
        games: list[Game] = []
        async for doc in cursor:
            games.append(_to_game(doc))
        return games

    async def list_awaiting_numbers(self) -> list[Game]:
        """Active games whose numbers have not been assigned yet.

        Uses the ``idx_active_unassigned`` index.
        """
        cursor = self._collection.find(
            {"is_active": True, "numbers_assigned": False}
        ).sort("starts_at", 1)
        games: list[Game] = []
        async for doc in cursor:
            games.append(_to_game(doc))
        return games

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def set_numbers(
        self,
        game_id: str,
        home_numbers: list[int],
        away_numbers: list[int],
        assigned_at: datetime,
    ) -> bool:
        """Persist both permutations and raise the assigned flag in one update.

        The filter on ``numbers_assigned: False`` makes this a compare-and-set:
        only the first caller for a game can ever write numbers.

        Returns:
            True if the numbers were written, False if the game was not
            active or already had numbers.
        """
        if not ObjectId.is_valid(game_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(game_id), "is_active": True, "numbers_assigned": False},
            {
                "$set": {
                    "home_numbers": home_numbers,
                    "away_numbers": away_numbers,
                    "numbers_assigned": True,
                    "numbers_assigned_at": assigned_at,
                }
            },
        )
        if result.modified_count > 0:
            logger.info(
                "Numbers assigned for game %s: home=%s away=%s",
                game_id,
                home_numbers,
                away_numbers,
            )
        return result.modified_count > 0

    async def set_score(
        self,
        game_id: str,
        checkpoint: int,
        score: ScorePair,
        previous: Optional[ScorePair],
    ) -> bool:
        """Replace the score slot of one checkpoint on an active game.

        Compare-and-set on ``previous`` (the value the caller read) and on
        the checkpoint not being settled, so a write can neither clobber a
        concurrent correction nor change a score that is being paid.

        Returns:
            True if the slot was written.
        """
        if not ObjectId.is_valid(game_id):
            return False
        query = {
            "_id": ObjectId(game_id),
            "is_active": True,
            f"settled.{checkpoint}": {"$ne": True},
            **_score_filter(checkpoint, previous),
        }
        result = await self._collection.update_one(
            query,
            {"$set": {f"scores.{checkpoint}": score.model_dump()}},
        )
        return result.matched_count > 0

    async def settle_checkpoint(
        self, game_id: str, checkpoint: int, score: ScorePair
    ) -> bool:
        """Freeze a checkpoint's score ahead of paying it.

        Only succeeds while the stored score still equals ``score``; once
        set, ``set_score`` refuses to touch the slot.

        Returns:
            True if the checkpoint is settled on ``score``.
        """
        if not ObjectId.is_valid(game_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(game_id), **_score_filter(checkpoint, score)},
            {"$set": {f"settled.{checkpoint}": True}},
        )
        if result.modified_count > 0:
            logger.info(
                "Game %s checkpoint %d settled at %d-%d",
                game_id,
                checkpoint,
                score.home,
                score.away,
            )
        return result.matched_count > 0

    async def set_active(self, game_id: str, is_active: bool) -> bool:
        """Activate or deactivate a game.

        Returns:
            True if the game exists.
        """
        if not ObjectId.is_valid(game_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(game_id)},
            {"$set": {"is_active": is_active}},
        )
        if result.modified_count > 0:
            logger.info("Game %s is_active set to %s", game_id, is_active)
        return result.matched_count > 0

    async def count_all(self) -> int:
        return await self._collection.count_documents({})
