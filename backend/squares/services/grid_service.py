"""Grid store business logic service.

Creates games together with their 100 boxes, answers ownership queries,
and exposes the raw compare-and-set claim on a single cell. Funds and the
free-game cap are the claim service's concern; this layer only guarantees
that a cell gets at most one owner.
"""

import logging
from typing import Any, Callable, Optional

from bson import ObjectId

from squares.config import settings
from squares.dal.boxes_dal import BoxDAL
from squares.dal.games_dal import GameDAL
from squares.errors import (
    AlreadyOwnedError,
    InputValidationError,
    NotFoundError,
    StorageUnavailableError,
)
from squares.models.box import Box
from squares.models.common import CHECKPOINT_COUNT, GRID_SIZE, utc_now
from squares.models.game import Game, GameConfig
from squares.services.storage import storage_errors

logger = logging.getLogger("squares.services.grid")


def validate_cell(row: int, col: int) -> None:
    """Reject coordinates outside the 10x10 grid."""
    if not (0 <= row < GRID_SIZE and 0 <= col < GRID_SIZE):
        raise InputValidationError(
            f"Cell ({row}, {col}) is outside the {GRID_SIZE}x{GRID_SIZE} grid"
        )


def payouts_from_percentages(
    entry_fee: int,
    percentages: list[int],
    house_fee_percent: Optional[int] = None,
) -> list[int]:
    """Turn per-checkpoint percentages into fixed payout amounts.

    Paid games split the prize pool of a sold-out grid (gross minus the
    house fee); free games use the percentage value directly as the
    HotCoin prize.

    Raises:
        InputValidationError: wrong number of percentages or they do not
            total 100.
    """
    if house_fee_percent is None:
        house_fee_percent = settings.HOUSE_FEE_PERCENT
    if len(percentages) != CHECKPOINT_COUNT:
        raise InputValidationError(f"Exactly {CHECKPOINT_COUNT} percentages are required")
    if any(p < 0 for p in percentages) or sum(percentages) != 100:
        raise InputValidationError("Payout percentages must be non-negative and total 100")

    if entry_fee == 0:
        return list(percentages)

    gross = entry_fee * GRID_SIZE * GRID_SIZE
    pool = gross * (100 - house_fee_percent) // 100
    return [pool * p // 100 for p in percentages]


class GridService:
    """Service layer for games, boxes, and ownership."""

    def __init__(
        self,
        game_dal: GameDAL,
        box_dal: BoxDAL,
        clock: Callable = utc_now,
    ) -> None:
        self._game_dal = game_dal
        self._box_dal = box_dal
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def get_game(self, game_id: str) -> Game:
        """Fetch a game by ID, raising NotFound if it does not exist."""
        async with storage_errors("game lookup"):
            game = await self._game_dal.get_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found")
        return game

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_game(self, config: GameConfig) -> Game:
        """Create a game and its 100 unowned boxes, all or nothing.

        The game id is allocated up front; boxes are written first and the
        game document last, so a game is only ever visible once its grid
        is complete. Any failure removes the boxes already written.

        Raises:
            StorageUnavailableError: the game could not be created; nothing
                was left behind.
        """
        game = Game(
            _id=str(ObjectId()),
            name=config.display_name,
            sport=config.sport,
            home_team=config.home_team,
            away_team=config.away_team,
            starts_at=config.starts_at,
            entry_fee=config.entry_fee,
            payouts=config.payouts,
            is_active=config.is_active,
            created_at=self._clock(),
        )
        game_id = str(game.id)

        try:
            async with storage_errors("game creation"):
                try:
                    await self._box_dal.create_grid(game_id)
                    await self._game_dal.create(game)
                except Exception:
                    logger.warning("Creation of game %s failed; removing its boxes", game_id)
                    await self._box_dal.delete_by_game(game_id)
                    raise
        except StorageUnavailableError:
            raise
        except Exception as e:
            raise StorageUnavailableError(f"Game could not be created: {e}") from e

        logger.info(
            "Game created: id=%s name=%s fee=%d payouts=%s",
            game_id,
            game.name,
            game.entry_fee,
            game.payouts,
        )
        return game

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def list_games(
        self, active_only: bool = False, limit: int = 50, skip: int = 0
    ) -> list[Game]:
        async with storage_errors("game listing"):
            return await self._game_dal.list_all(active_only=active_only, limit=limit, skip=skip)

    async def get_box(self, game_id: str, row: int, col: int) -> Box:
        """Fetch one cell.

        Raises:
            InputValidationError: coordinates outside the grid.
            NotFoundError: no such game or box.
        """
        validate_cell(row, col)
        async with storage_errors("box lookup"):
            box = await self._box_dal.get(game_id, row, col)
        if box is None:
            raise NotFoundError("Box not found")
        return box

    async def get_ownership_map(self, game_id: str) -> list[list[Optional[str]]]:
        """10x10 matrix of owner ids (None for unclaimed cells), indexed [row][col]."""
        await self.get_game(game_id)
        grid: list[list[Optional[str]]] = [[None] * GRID_SIZE for _ in range(GRID_SIZE)]
        async with storage_errors("ownership map"):
            for box in await self._box_dal.get_by_game(game_id):
                grid[box.row][box.col] = box.owner_id
        return grid

    async def get_summary(self, game_id: str) -> dict[str, Any]:
        """Sales figures for a game (reporting only; moves no value)."""
        game = await self.get_game(game_id)
        async with storage_errors("game summary"):
            sold = await self._box_dal.count_owned(game_id)
        gross = sold * game.entry_fee
        house_fee = gross * settings.HOUSE_FEE_PERCENT // 100
        return {
            "game_id": game_id,
            "boxes_sold": sold,
            "boxes_available": GRID_SIZE * GRID_SIZE - sold,
            "gross": gross,
            "house_fee": house_fee,
            "prize_pool": gross - house_fee,
            "configured_payouts": game.payouts,
        }

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def claim_box(self, game_id: str, row: int, col: int, user_id: str) -> Box:
        """Compare-and-set the owner of one cell.

        Raises:
            NotFoundError: no such box.
            AlreadyOwnedError: another caller owns the cell.
        """
        box = await self.get_box(game_id, row, col)
        if box.is_owned:
            raise AlreadyOwnedError(f"Box ({row}, {col}) is already owned")

        claimed_at = self._clock()
        async with storage_errors("box claim"):
            won = await self._box_dal.claim(game_id, row, col, user_id, claimed_at)
        if not won:
            raise AlreadyOwnedError(f"Box ({row}, {col}) is already owned")
        box.owner_id = user_id
        box.claimed_at = claimed_at
        return box

    async def release_box(self, game_id: str, row: int, col: int, owner_id: str) -> bool:
        """Undo a claim held by ``owner_id``. Returns False if it no longer owns it."""
        async with storage_errors("box release"):
            return await self._box_dal.release(game_id, row, col, owner_id)

    async def set_active(self, game_id: str, is_active: bool) -> Game:
        async with storage_errors("game activation"):
            found = await self._game_dal.set_active(game_id, is_active)
        if not found:
            raise NotFoundError("Game not found")
        return await self.get_game(game_id)
