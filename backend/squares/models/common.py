"""Common enums, shared types, and utilities for the squares engine models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any

from bson import ObjectId
from pydantic import AfterValidator, BeforeValidator, PlainSerializer

GRID_SIZE = 10
CHECKPOINT_COUNT = 4

CHECKPOINT_LABELS = ("1st Quarter", "Halftime", "3rd Quarter", "Final")


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def _validate_object_id(value: Any) -> str:
    """Validate and convert ObjectId or string to string representation."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, str):
        return value
    raise ValueError(f"Invalid ObjectId value: {value}")


def _ensure_utc(value: datetime) -> datetime:
    """MongoDB hands datetimes back naive; they are always stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Annotated type for MongoDB _id fields.
# Accepts ObjectId or string on input, always serializes as string.
PyObjectId = Annotated[
    str,
    BeforeValidator(_validate_object_id),
    PlainSerializer(lambda v: str(v), return_type=str),
]

UTCDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class Sport(StrEnum):
    """Leagues a squares pool can be run on."""
    NFL = "NFL"
    NBA = "NBA"


class EntryKind(StrEnum):
    """Kinds of balance-affecting ledger events."""
    PURCHASE = "purchase"
    CLAIM_DEBIT = "claim-debit"
    PAYOUT = "payout"
    WITHDRAWAL_HOLD = "withdrawal-hold"
    WITHDRAWAL_RELEASE = "withdrawal-release"
    WITHDRAWAL_COMPLETE = "withdrawal-complete"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin-adjustment"


class VerificationStatus(StrEnum):
    """Ledger entry verification states. Only APPROVED entries count."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalStatus(StrEnum):
    """Withdrawal request lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentMethod(StrEnum):
    """External payment providers that report received funds."""
    CASHAPP = "cashapp"
    VENMO = "venmo"
    PAYPAL = "paypal"


def checkpoint_label(index: int) -> str:
    """Human readable name of a scoring checkpoint."""
    if 0 <= index < len(CHECKPOINT_LABELS):
        return CHECKPOINT_LABELS[index]
    return f"Period {index + 1}"
