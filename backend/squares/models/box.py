"""Box domain model.

One document per grid cell in the boxes collection. The document ``_id``
is derived from ``(game_id, row, col)`` so a cell can never exist twice.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from squares.models.common import GRID_SIZE, UTCDatetime


def box_key(game_id: str, row: int, col: int) -> str:
    """Primary key of the box at ``(row, col)`` in a game."""
    return f"{game_id}:{row}:{col}"


class Box(BaseModel):
    """A single ownable cell of a game's 10x10 grid."""

    model_config = {"populate_by_name": True}

    id: str = Field(alias="_id")
    game_id: str
    row: int = Field(ge=0, lt=GRID_SIZE)
    col: int = Field(ge=0, lt=GRID_SIZE)
    owner_id: Optional[str] = None
    claimed_at: Optional[UTCDatetime] = None

    @classmethod
    def unowned(cls, game_id: str, row: int, col: int) -> "Box":
        return cls(_id=box_key(game_id, row, col), game_id=game_id, row=row, col=col)

    @property
    def is_owned(self) -> bool:
        return self.owner_id is not None

    @field_serializer("claimed_at", when_used="json")
    def serialize_datetime(self, value: Optional[datetime], _info) -> Optional[str]:
        if value is None:
            return None
        return value.isoformat()

    def to_mongo_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="python")
