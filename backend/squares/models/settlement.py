"""Settlement result models: resolved winners and issued payouts."""

from typing import Optional

from pydantic import BaseModel

from squares.models.common import checkpoint_label


class Winner(BaseModel):
    """Winning cell resolved for one recorded checkpoint.

    ``user_id`` is None when the winning box was never sold.
    """

    checkpoint: int
    home_score: int
    away_score: int
    home_digit: int
    away_digit: int
    row: int
    col: int
    user_id: Optional[str] = None
    payout_amount: int = 0

    @property
    def label(self) -> str:
        return checkpoint_label(self.checkpoint)


class Payout(BaseModel):
    """A payout ledger entry for one checkpoint.

    ``newly_issued`` is False when the entry already existed and this call
    only observed it.
    """

    checkpoint: int
    user_id: str
    amount: int
    entry_id: str
    newly_issued: bool

    @property
    def label(self) -> str:
        return checkpoint_label(self.checkpoint)


class PayoutList(BaseModel):
    game_id: str
    payouts: list[Payout]

    @property
    def total_issued(self) -> int:
        return sum(p.amount for p in self.payouts if p.newly_issued)

    @property
    def total_paid(self) -> int:
        return sum(p.amount for p in self.payouts)
