"""Pydantic models for the squares engine."""

from squares.models.common import (
    CHECKPOINT_COUNT,
    GRID_SIZE,
    EntryKind,
    PaymentMethod,
    PyObjectId,
    Sport,
    VerificationStatus,
    WithdrawalStatus,
)
from squares.models.game import Game, GameConfig, ScorePair
from squares.models.box import Box, box_key
from squares.models.ledger import ClaimReceipt, LedgerEntry
from squares.models.settlement import Payout, PayoutList, Winner
from squares.models.withdrawal import WithdrawalRequest

__all__ = [
    # Enums and types
    "CHECKPOINT_COUNT",
    "GRID_SIZE",
    "EntryKind",
    "PaymentMethod",
    "PyObjectId",
    "Sport",
    "VerificationStatus",
    "WithdrawalStatus",
    # Game models
    "Game",
    "GameConfig",
    "ScorePair",
    "Box",
    "box_key",
    # Ledger models
    "ClaimReceipt",
    "LedgerEntry",
    # Settlement models
    "Payout",
    "PayoutList",
    "Winner",
    # Withdrawal models
    "WithdrawalRequest",
]
