"""Settlement business logic service.

Records checkpoint scores, resolves the winning box of each recorded
checkpoint, and issues payouts. Every consumer that needs to know who won
reads it from here.

Grid orientation: the row axis carries the away team's digits and the
column axis the home team's digits, i.e. a score resolves to
``row = away_numbers.index(away % 10)`` and
``col = home_numbers.index(home % 10)``.

Payout entries use ``payout:<game_id>:<checkpoint>`` as their ledger
primary key, so issuing a checkpoint twice -- sequentially or from two
concurrent calls -- collides instead of paying twice.

Before a checkpoint is paid it is settled on the game document: a
compare-and-set that only holds while the stored score equals the one
being paid. Score writes are conditional on the checkpoint not being
settled, so a correction racing a payout run either lands first (and the
run skips the stale winner) or is rejected.
"""

import logging
from typing import Callable

from squares.dal.boxes_dal import BoxDAL
from squares.dal.games_dal import GameDAL
from squares.errors import InputValidationError, InvalidStateError, NotFoundError
from squares.models.common import CHECKPOINT_COUNT, EntryKind, checkpoint_label, utc_now
from squares.models.game import Game, ScorePair
from squares.models.settlement import Payout, PayoutList, Winner
from squares.services.ledger_service import LedgerService
from squares.services.storage import storage_errors

logger = logging.getLogger("squares.services.settlement")


def payout_entry_id(game_id: str, checkpoint: int) -> str:
    return f"payout:{game_id}:{checkpoint}"


def winning_cell(game: Game, score: ScorePair) -> tuple[int, int]:
    """Grid cell ``(row, col)`` matching a score on a game with numbers."""
    row = game.away_numbers.index(score.away_digit)
    col = game.home_numbers.index(score.home_digit)
    return row, col


class SettlementService:
    """Service layer for score recording, winner resolution, and payouts."""

    def __init__(
        self,
        game_dal: GameDAL,
        box_dal: BoxDAL,
        ledger_service: LedgerService,
        clock: Callable = utc_now,
    ) -> None:
        self._game_dal = game_dal
        self._box_dal = box_dal
        self._ledger = ledger_service
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_game_or_404(self, game_id: str) -> Game:
        async with storage_errors("game lookup"):
            game = await self._game_dal.get_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found")
        return game

    async def _resolve(self, game: Game) -> list[Winner]:
        """Winners of every recorded checkpoint; empty until numbers exist."""
        if not game.numbers_assigned:
            return []

        game_id = str(game.id)
        winners: list[Winner] = []
        async with storage_errors("winner resolution"):
            for checkpoint, score in enumerate(game.scores):
                if score is None:
                    continue
                row, col = winning_cell(game, score)
                box = await self._box_dal.get(game_id, row, col)
                winners.append(
                    Winner(
                        checkpoint=checkpoint,
                        home_score=score.home,
                        away_score=score.away,
                        home_digit=score.home_digit,
                        away_digit=score.away_digit,
                        row=row,
                        col=col,
                        user_id=box.owner_id if box is not None else None,
                        payout_amount=game.payouts[checkpoint],
                    )
                )
        return winners

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    async def record_scores(
        self,
        game_id: str,
        checkpoint: int,
        home_score: int,
        away_score: int,
    ) -> list[Winner]:
        """Record (or correct) the score of one checkpoint.

        Replaying identical scores changes nothing. A checkpoint whose
        payout has been issued can no longer be changed.

        Returns:
            The winners of all recorded checkpoints after the update.

        Raises:
            InputValidationError: checkpoint outside 0-3 or negative scores.
            NotFoundError: unknown game.
            InvalidStateError: game inactive, or the checkpoint is already
                paid with different scores.
        """
        if not 0 <= checkpoint < CHECKPOINT_COUNT:
            raise InputValidationError(
                f"Checkpoint must be between 0 and {CHECKPOINT_COUNT - 1}"
            )
        if home_score < 0 or away_score < 0:
            raise InputValidationError("Scores cannot be negative")

        game = await self._get_game_or_404(game_id)
        if not game.is_active:
            raise InvalidStateError("Scores can only be recorded on an active game")

        score = ScorePair(home=home_score, away=away_score)
        current = game.scores[checkpoint]
        if current != score:
            if game.settled[checkpoint]:
                raise InvalidStateError(
                    f"{checkpoint_label(checkpoint)} has already been paid out"
                )
            async with storage_errors("score recording"):
                updated = await self._game_dal.set_score(game_id, checkpoint, score, current)
            if not updated:
                await self._explain_rejected_score(game_id, checkpoint)
            game.scores[checkpoint] = score
            logger.info(
                "Scores recorded: game=%s checkpoint=%s home=%d away=%d",
                game_id,
                checkpoint_label(checkpoint),
                home_score,
                away_score,
            )

        return await self._resolve(game)

    async def _explain_rejected_score(self, game_id: str, checkpoint: int) -> None:
        """Raise the error matching why a score write did not apply."""
        game = await self._get_game_or_404(game_id)
        if not game.is_active:
            raise InvalidStateError("Scores can only be recorded on an active game")
        if game.settled[checkpoint]:
            raise InvalidStateError(
                f"{checkpoint_label(checkpoint)} has already been paid out"
            )
        raise InvalidStateError(
            f"{checkpoint_label(checkpoint)} score changed concurrently; retry"
        )

    async def get_winners(self, game_id: str) -> list[Winner]:
        """Winners of every recorded checkpoint of a game."""
        game = await self._get_game_or_404(game_id)
        return await self._resolve(game)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def process_payouts(self, game_id: str) -> PayoutList:
        """Issue the payout of every resolved checkpoint that has not been paid.

        Checkpoints whose winning box is unsold, or whose configured payout
        is zero, pay nothing. Safe to call repeatedly and concurrently:
        already-issued checkpoints are reported with ``newly_issued=False``.

        Raises:
            NotFoundError: unknown game.
            InvalidStateError: numbers are not assigned yet.
        """
        game = await self._get_game_or_404(game_id)
        if not game.numbers_assigned:
            raise InvalidStateError("Numbers must be assigned before payouts")

        payouts: list[Payout] = []
        for winner in await self._resolve(game):
            if winner.user_id is None or winner.payout_amount <= 0:
                continue

            paid_score = ScorePair(home=winner.home_score, away=winner.away_score)
            async with storage_errors("checkpoint settlement"):
                settled = await self._game_dal.settle_checkpoint(
                    game_id, winner.checkpoint, paid_score
                )
            if not settled:
                logger.warning(
                    "Skipped payout: game=%s checkpoint=%s score changed during the run",
                    game_id,
                    winner.label,
                )
                continue

            entry, created = await self._ledger.credit(
                winner.user_id,
                winner.payout_amount,
                EntryKind.PAYOUT,
                entry_id=payout_entry_id(game_id, winner.checkpoint),
                game_id=game_id,
                reference=f"checkpoint:{winner.checkpoint}",
                description=f"{winner.label} winner - {game.name}",
            )
            payouts.append(
                Payout(
                    checkpoint=winner.checkpoint,
                    user_id=entry.user_id,
                    amount=entry.amount,
                    entry_id=entry.id,
                    newly_issued=created,
                )
            )
            if created:
                logger.info(
                    "Payout issued: game=%s checkpoint=%s user=%s amount=%d",
                    game_id,
                    winner.label,
                    winner.user_id,
                    winner.payout_amount,
                )

        return PayoutList(game_id=game_id, payouts=payouts)
