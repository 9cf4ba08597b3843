"""Number assignment service.

Draws the home and away digit permutations for a game exactly once. The
draw is persisted with a conditional update on ``numbers_assigned`` so a
concurrent second call can never overwrite numbers users have seen.
"""

import logging
import random
from datetime import timedelta
from typing import Callable, Optional

from squares.config import settings
from squares.dal.games_dal import GameDAL
from squares.errors import AlreadyAssignedError, InvalidStateError, NotFoundError
from squares.models.common import GRID_SIZE, utc_now
from squares.models.game import Game
from squares.services.storage import storage_errors

logger = logging.getLogger("squares.services.numbers")


def shuffle_digits(rng: random.Random) -> list[int]:
    """Fisher-Yates shuffle of the digits 0-9."""
    digits = list(range(GRID_SIZE))
    for i in range(GRID_SIZE - 1, 0, -1):
        j = rng.randint(0, i)
        digits[i], digits[j] = digits[j], digits[i]
    return digits


class NumberAssigner:
    """Assigns the row/column digit permutations of a game."""

    def __init__(
        self,
        game_dal: GameDAL,
        clock: Callable = utc_now,
        rng: Optional[random.Random] = None,
        window_minutes: Optional[int] = None,
    ) -> None:
        self._game_dal = game_dal
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        if window_minutes is None:
            window_minutes = settings.ASSIGNMENT_WINDOW_MINUTES
        self._window = timedelta(minutes=window_minutes)

    def window_opens_at(self, game: Game):
        return game.starts_at - self._window

    def is_due(self, game: Game) -> bool:
        """True when an active, unassigned game has entered its window."""
        return (
            game.is_active
            and not game.numbers_assigned
            and self._clock() >= self.window_opens_at(game)
        )

    async def assign_numbers(self, game_id: str) -> tuple[list[int], list[int]]:
        """Draw and persist the permutations for a game.

        Returns:
            ``(home_numbers, away_numbers)``.

        Raises:
            NotFoundError: unknown game.
            InvalidStateError: game inactive or assignment window not open.
            AlreadyAssignedError: numbers exist already (including when a
                concurrent call won the race).
        """
        async with storage_errors("number assignment"):
            game = await self._game_dal.get_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found")
            if game.numbers_assigned:
                raise AlreadyAssignedError("Numbers already assigned")
            if not game.is_active:
                raise InvalidStateError("Game is not active")

            now = self._clock()
            opens_at = self.window_opens_at(game)
            if now < opens_at:
                raise InvalidStateError(
                    f"Too early to assign numbers; window opens at {opens_at.isoformat()}"
                )

            home_numbers = shuffle_digits(self._rng)
            away_numbers = shuffle_digits(self._rng)

            written = await self._game_dal.set_numbers(game_id, home_numbers, away_numbers, now)
            if not written:
                current = await self._game_dal.get_by_id(game_id)
                if current is not None and current.numbers_assigned:
                    raise AlreadyAssignedError("Numbers already assigned")
                raise InvalidStateError("Game is not active")

        return home_numbers, away_numbers

    async def assign_due_numbers(self) -> int:
        """Assign numbers for every game whose window has opened.

        Per-game rejections (lost races, deactivation in between) are
        logged and skipped so one game cannot stall the sweep.

        Returns:
            Number of games that received numbers.
        """
        async with storage_errors("due game scan"):
            candidates = await self._game_dal.list_awaiting_numbers()

        assigned = 0
        for game in candidates:
            if not self.is_due(game):
                continue
            try:
                await self.assign_numbers(str(game.id))
                assigned += 1
            except (AlreadyAssignedError, InvalidStateError, NotFoundError) as e:
                logger.warning("Skipped number assignment for game %s: %s", game.id, e.detail)

        if assigned:
            logger.info("Auto-assigned numbers for %d game(s)", assigned)
        return assigned
