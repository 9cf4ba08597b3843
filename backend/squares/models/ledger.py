"""Ledger entry domain model.

Based on the original hotcoin_transactions table. Entries are append-only;
the only mutation ever applied is a ``pending -> approved | rejected``
verification transition.
"""

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel, Field, field_serializer, model_validator

from squares.models.common import (
    EntryKind,
    PaymentMethod,
    UTCDatetime,
    VerificationStatus,
    utc_now,
)


def new_entry_id() -> str:
    return str(ObjectId())


class LedgerEntry(BaseModel):
    """A single balance-affecting event.

    Positive amounts credit the user, negative amounts debit them. The
    ``id`` is usually a fresh ObjectId string; idempotent operations
    (payouts, withdrawal releases, provider purchases) derive it from
    their natural key so that a replay collides on the primary key.
    """

    model_config = {"populate_by_name": True}

    id: str = Field(default_factory=new_entry_id, alias="_id")
    user_id: str = Field(min_length=1)
    amount: int
    kind: EntryKind
    status: VerificationStatus = VerificationStatus.APPROVED
    game_id: Optional[str] = None
    reference: Optional[str] = None
    description: str = ""
    payment_method: Optional[PaymentMethod] = None
    external_ref: Optional[str] = None
    created_at: UTCDatetime = Field(default_factory=utc_now)
    resolved_at: Optional[UTCDatetime] = None
    resolved_by: Optional[str] = None

    @model_validator(mode="after")
    def validate_amount(self) -> "LedgerEntry":
        """Only completion audit records may carry a zero amount."""
        if self.amount == 0 and self.kind != EntryKind.WITHDRAWAL_COMPLETE:
            raise ValueError(f"{self.kind} entries must move a non-zero amount")
        if self.kind == EntryKind.WITHDRAWAL_COMPLETE and self.amount != 0:
            raise ValueError("withdrawal-complete entries never change the balance")
        return self

    @property
    def counts_toward_balance(self) -> bool:
        return self.status == VerificationStatus.APPROVED

    @field_serializer("created_at", "resolved_at", when_used="json")
    def serialize_datetime(self, value: Optional[datetime], _info) -> Optional[str]:
        if value is None:
            return None
        return value.isoformat()

    def to_mongo_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="python")


class ClaimReceipt(BaseModel):
    """Result of a successful box claim."""

    game_id: str
    row: int
    col: int
    user_id: str
    amount_charged: int
    ledger_entry_id: Optional[str] = None
    claimed_at: UTCDatetime
