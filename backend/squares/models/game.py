"""Game domain model.

One document per squares pool in the games collection. The two digit
permutations and the per-checkpoint scores live on the game document so
that number assignment and score recording are single-document updates.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from squares.models.common import (
    CHECKPOINT_COUNT,
    GRID_SIZE,
    PyObjectId,
    Sport,
    UTCDatetime,
    utc_now,
)


class ScorePair(BaseModel):
    """Score recorded for one checkpoint."""

    home: int = Field(ge=0)
    away: int = Field(ge=0)

    @property
    def home_digit(self) -> int:
        return self.home % 10

    @property
    def away_digit(self) -> int:
        return self.away % 10


def _check_payouts(value: list[int]) -> list[int]:
    if len(value) != CHECKPOINT_COUNT:
        raise ValueError(f"exactly {CHECKPOINT_COUNT} payout amounts are required")
    if any(amount < 0 for amount in value):
        raise ValueError("payout amounts cannot be negative")
    return value


def _is_permutation(numbers: list[int]) -> bool:
    return sorted(numbers) == list(range(GRID_SIZE))


class Game(BaseModel):
    """Represents a squares pool stored in the games collection.

    ``scores`` always has one slot per checkpoint; ``None`` marks a
    checkpoint that has not been recorded, which is distinct from a
    genuine 0-0 score.
    """

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    name: str
    sport: Sport = Sport.NFL
    home_team: str = Field(min_length=1)
    away_team: str = Field(min_length=1)
    starts_at: UTCDatetime
    entry_fee: int = Field(default=0, ge=0)
    is_active: bool = True
    numbers_assigned: bool = False
    home_numbers: list[int] = Field(default_factory=list)
    away_numbers: list[int] = Field(default_factory=list)
    scores: list[Optional[ScorePair]] = Field(
        default_factory=lambda: [None] * CHECKPOINT_COUNT
    )
    # set once a checkpoint payout is being issued; its score is frozen from then on
    settled: list[bool] = Field(default_factory=lambda: [False] * CHECKPOINT_COUNT)
    payouts: list[int] = Field(default_factory=lambda: [0] * CHECKPOINT_COUNT)
    created_at: UTCDatetime = Field(default_factory=utc_now)
    numbers_assigned_at: Optional[UTCDatetime] = None

    @field_validator("payouts")
    @classmethod
    def validate_payouts(cls, value: list[int]) -> list[int]:
        return _check_payouts(value)

    @field_validator("scores")
    @classmethod
    def validate_scores(cls, value: list[Optional[ScorePair]]) -> list[Optional[ScorePair]]:
        if len(value) != CHECKPOINT_COUNT:
            raise ValueError(f"exactly {CHECKPOINT_COUNT} score slots are required")
        return value

    @model_validator(mode="after")
    def validate_numbers(self) -> "Game":
        """Permutations are either both empty or both full permutations of 0-9."""
        if not self.home_numbers and not self.away_numbers:
            if self.numbers_assigned:
                raise ValueError("numbers_assigned is set but no numbers are stored")
            return self
        if not (_is_permutation(self.home_numbers) and _is_permutation(self.away_numbers)):
            raise ValueError("home_numbers and away_numbers must both be permutations of 0-9")
        if not self.numbers_assigned:
            raise ValueError("numbers are stored but numbers_assigned is not set")
        return self

    @property
    def is_free(self) -> bool:
        return self.entry_fee == 0

    @property
    def has_scores(self) -> bool:
        return any(score is not None for score in self.scores)

    @field_serializer("id")
    def serialize_id(self, value: Optional[str], _info) -> Optional[str]:
        if value is not None:
            return str(value)
        return value

    @field_serializer("starts_at", "created_at", "numbers_assigned_at", when_used="json")
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


class GameConfig(BaseModel):
    """Input accepted by ``GridService.create_game``."""

    name: Optional[str] = None
    sport: Sport = Sport.NFL
    home_team: str = Field(min_length=1)
    away_team: str = Field(min_length=1)
    starts_at: UTCDatetime
    entry_fee: int = Field(default=0, ge=0)
    payouts: list[int] = Field(default_factory=lambda: [0] * CHECKPOINT_COUNT)
    is_active: bool = True

    @field_validator("payouts")
    @classmethod
    def validate_payouts(cls, value: list[int]) -> list[int]:
        return _check_payouts(value)

    @property
    def display_name(self) -> str:
        return self.name or f"{self.away_team} @ {self.home_team}"
