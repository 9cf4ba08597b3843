"""Box claim business logic service.

Executes a box purchase (paid games) or free claim as a single unit over
three stores:

    1. reserve what the claim consumes -- the entry fee on the user's
       balance guard, or one of the user's free slots for the game;
    2. compare-and-set the box owner;
    3. append the ``claim-debit`` ledger entry (paid games only).

Each step that fails undoes the ones before it, so a caller either gets a
receipt with every effect applied or an error with none applied. A lost
race on step 2 therefore never leaves a debit behind.
"""

import logging
from typing import Callable, Optional

from squares.config import settings
from squares.dal.boxes_dal import BoxDAL
from squares.dal.free_claims_dal import FreeClaimDAL
from squares.dal.games_dal import GameDAL
from squares.dal.ledger_dal import LedgerDAL
from squares.errors import (
    AlreadyOwnedError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
)
from squares.models.box import box_key
from squares.models.common import EntryKind, utc_now
from squares.models.game import Game
from squares.models.ledger import ClaimReceipt
from squares.services.grid_service import validate_cell
from squares.services.ledger_service import LedgerService
from squares.services.storage import storage_errors

logger = logging.getLogger("squares.services.claim")


def _box_reference(row: int, col: int) -> str:
    return f"box:{row}:{col}"


class ClaimService:
    """Service layer for claiming and reversing boxes."""

    def __init__(
        self,
        game_dal: GameDAL,
        box_dal: BoxDAL,
        free_claim_dal: FreeClaimDAL,
        ledger_dal: LedgerDAL,
        ledger_service: LedgerService,
        clock: Callable = utc_now,
        free_box_limit: Optional[int] = None,
    ) -> None:
        self._game_dal = game_dal
        self._box_dal = box_dal
        self._free_claim_dal = free_claim_dal
        self._ledger_dal = ledger_dal
        self._ledger = ledger_service
        self._clock = clock
        self._free_box_limit = (
            settings.FREE_GAME_BOX_LIMIT if free_box_limit is None else free_box_limit
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_game_or_404(self, game_id: str) -> Game:
        async with storage_errors("game lookup"):
            game = await self._game_dal.get_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found")
        return game

    async def _reserve_free_slot(self, game: Game, user_id: str, box_id: str) -> int:
        async with storage_errors("free slot reservation"):
            slot = await self._free_claim_dal.reserve(
                str(game.id), user_id, box_id, self._free_box_limit
            )
        if slot is None:
            raise LimitExceededError(
                f"Free games allow at most {self._free_box_limit} boxes per player"
            )
        return slot

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim_box(
        self, game_id: str, row: int, col: int, user_id: str
    ) -> ClaimReceipt:
        """Claim the box at ``(row, col)`` for ``user_id``.

        Raises:
            InputValidationError: coordinates outside the grid.
            NotFoundError: unknown game or box.
            InvalidStateError: the game is not active, or a checkpoint score
                has already been recorded.
            AlreadyOwnedError: the box is owned (checked up front and again
                by the compare-and-set).
            InsufficientFundsError: paid game and the balance is below the fee.
            LimitExceededError: free game and the user already holds the
                maximum number of boxes.
            StorageUnavailableError: storage failed; all effects rolled back.
        """
        validate_cell(row, col)
        game = await self._get_game_or_404(game_id)
        if not game.is_active:
            raise InvalidStateError("Game is not active")
        if game.has_scores:
            raise InvalidStateError("Boxes cannot be claimed once scoring has started")

        async with storage_errors("box lookup"):
            box = await self._box_dal.get(game_id, row, col)
        if box is None:
            raise NotFoundError("Box not found")
        if box.is_owned:
            raise AlreadyOwnedError(f"Box ({row}, {col}) is already owned")

        fee = game.entry_fee
        slot: Optional[int] = None
        if fee > 0:
            await self._ledger.reserve_funds(user_id, fee)
        else:
            slot = await self._reserve_free_slot(game, user_id, box.id)

        claimed_at = self._clock()
        try:
            async with storage_errors("box claim"):
                won = await self._box_dal.claim(game_id, row, col, user_id, claimed_at)
        except Exception:
            await self._undo_reservation(game, user_id, fee, slot)
            raise

        if not won:
            await self._undo_reservation(game, user_id, fee, slot)
            logger.info("Lost race for box (%d,%d) of game %s: user=%s", row, col, game_id, user_id)
            raise AlreadyOwnedError(f"Box ({row}, {col}) is already owned")

        # a score written between the first check and the owner CAS voids the claim
        try:
            async with storage_errors("box claim"):
                latest = await self._game_dal.get_by_id(game_id)
        except Exception:
            await self._undo_claim(game, row, col, user_id, fee, slot)
            raise
        if latest is None or latest.has_scores:
            await self._undo_claim(game, row, col, user_id, fee, slot)
            logger.warning(
                "Claim of box (%d,%d) in game %s undone: scoring started, user=%s",
                row,
                col,
                game_id,
                user_id,
            )
            raise InvalidStateError("Boxes cannot be claimed once scoring has started")

        entry_id: Optional[str] = None
        if fee > 0:
            try:
                entry = await self._ledger.commit_debit(
                    user_id,
                    fee,
                    EntryKind.CLAIM_DEBIT,
                    game_id=game_id,
                    reference=_box_reference(row, col),
                    description=f"Box ({row}, {col}) in {game.name}",
                )
            except Exception:
                # commit_debit already handed the reserved funds back
                async with storage_errors("box claim rollback"):
                    await self._box_dal.release(game_id, row, col, user_id)
                raise
            entry_id = entry.id

        logger.info(
            "Box claimed: game=%s cell=(%d,%d) user=%s charged=%d",
            game_id,
            row,
            col,
            user_id,
            fee,
        )
        return ClaimReceipt(
            game_id=game_id,
            row=row,
            col=col,
            user_id=user_id,
            amount_charged=fee,
            ledger_entry_id=entry_id,
            claimed_at=claimed_at,
        )

    async def _undo_claim(
        self, game: Game, row: int, col: int, user_id: str, fee: int, slot: Optional[int]
    ) -> None:
        async with storage_errors("box claim rollback"):
            await self._box_dal.release(str(game.id), row, col, user_id)
        await self._undo_reservation(game, user_id, fee, slot)

    async def _undo_reservation(
        self, game: Game, user_id: str, fee: int, slot: Optional[int]
    ) -> None:
        if fee > 0:
            await self._ledger.release_funds(user_id, fee)
        elif slot is not None:
            async with storage_errors("free slot release"):
                await self._free_claim_dal.release(str(game.id), user_id, slot)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def count_user_boxes(self, game_id: str, user_id: str) -> int:
        async with storage_errors("box count"):
            return await self._box_dal.count_owned(game_id, user_id)

    # ------------------------------------------------------------------
    # Administrative reversal
    # ------------------------------------------------------------------

    async def reverse_claim(
        self, game_id: str, row: int, col: int, admin_id: str
    ) -> Optional[str]:
        """Clear a box owner and reverse what the claim consumed.

        Only allowed while numbers are unassigned: once digits are on the
        grid an ownership change could move a prize. Paid claims are
        refunded with one ``refund`` entry keyed on the original debit, so
        a repeated reversal cannot refund twice.

        Returns:
            The refund ledger entry id, or None for free games.

        Raises:
            NotFoundError: unknown game or box.
            InvalidStateError: numbers assigned or the box is not owned.
        """
        validate_cell(row, col)
        game = await self._get_game_or_404(game_id)
        if game.numbers_assigned:
            raise InvalidStateError("Claims cannot be reversed after numbers are assigned")

        async with storage_errors("claim reversal"):
            box = await self._box_dal.get(game_id, row, col)
            if box is None:
                raise NotFoundError("Box not found")
            if not box.is_owned:
                raise InvalidStateError(f"Box ({row}, {col}) is not owned")
            owner_id = box.owner_id

            debit = None
            if game.entry_fee > 0:
                debit = await self._ledger_dal.find_latest(
                    owner_id,
                    EntryKind.CLAIM_DEBIT,
                    game_id=game_id,
                    reference=_box_reference(row, col),
                )

        # The refund goes in before the owner is cleared. Its id is derived
        # from the debit, so a retry after a failed release reuses it.
        refund_id: Optional[str] = None
        if debit is not None:
            entry, _ = await self._ledger.credit(
                owner_id,
                -debit.amount,
                EntryKind.REFUND,
                entry_id=f"refund:{debit.id}",
                game_id=game_id,
                reference=_box_reference(row, col),
                description=f"Refund for box ({row}, {col}) in {game.name}",
            )
            refund_id = entry.id

        async with storage_errors("claim reversal"):
            released = await self._box_dal.release(game_id, row, col, owner_id)
        if not released:
            raise InvalidStateError(f"Box ({row}, {col}) changed owner during reversal")

        if game.entry_fee == 0:
            async with storage_errors("free slot release"):
                await self._free_claim_dal.release_for_box(game_id, owner_id, box_key(game_id, row, col))

        logger.info(
            "Claim reversed: game=%s cell=(%d,%d) owner=%s admin=%s refund=%s",
            game_id,
            row,
            col,
            owner_id,
            admin_id,
            refund_id,
        )
        return refund_id
