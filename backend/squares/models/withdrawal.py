"""Withdrawal request domain model.

A withdrawal is backed by a ``withdrawal-hold`` ledger entry taken at
request time. The request document tracks the state machine and links the
ledger entries written at each transition.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from squares.models.common import PyObjectId, UTCDatetime, WithdrawalStatus, utc_now


def hold_entry_id(request_id: str) -> str:
    return f"withdrawal-hold:{request_id}"


def release_entry_id(request_id: str) -> str:
    return f"withdrawal-release:{request_id}"


def completion_entry_id(request_id: str) -> str:
    return f"withdrawal-complete:{request_id}"


class WithdrawalRequest(BaseModel):
    """A user's request to cash out part of their balance."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    user_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    destination: str = Field(min_length=1)
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    hold_entry_id: Optional[str] = None
    release_entry_id: Optional[str] = None
    completion_entry_id: Optional[str] = None
    created_at: UTCDatetime = Field(default_factory=utc_now)
    resolved_at: Optional[UTCDatetime] = None
    resolved_by: Optional[str] = None
    reason: Optional[str] = None

    @property
    def counts_toward_daily_limit(self) -> bool:
        return self.status != WithdrawalStatus.REJECTED

    @field_serializer("id")
    def serialize_id(self, value: Optional[str], _info) -> Optional[str]:
        if value is not None:
            return str(value)
        return value

    @field_serializer("created_at", "resolved_at", when_used="json")
    def serialize_datetime(self, value: Optional[datetime], _info) -> Optional[str]:
        if value is None:
            return None
        return value.isoformat()

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = self.model_dump(by_alias=True, mode="python")
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
