"""Game and grid route handlers.

Endpoints:
    POST /api/games                                     -- Create a game and its grid.
    GET  /api/games                                     -- List games.
    GET  /api/games/{game_id}                           -- Game detail.
    GET  /api/games/{game_id}/grid                      -- 10x10 ownership map.
    GET  /api/games/{game_id}/summary                   -- Sales and prize pool summary.
    POST /api/games/{game_id}/active                    -- Activate / deactivate (admin).
    POST /api/games/{game_id}/numbers                   -- Assign numbers (admin).
    POST /api/games/{game_id}/boxes/claim               -- Claim a box.
    POST /api/games/{game_id}/boxes/{row}/{col}/reverse -- Reverse a claim (admin).
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field, ValidationError, model_validator

from squares.dal.balances_dal import BalanceDAL
from squares.dal.boxes_dal import BoxDAL
from squares.dal.database import get_db
from squares.dal.free_claims_dal import FreeClaimDAL
from squares.dal.games_dal import GameDAL
from squares.dal.ledger_dal import LedgerDAL
from squares.errors import InputValidationError
from squares.models.common import CHECKPOINT_COUNT, Sport
from squares.models.game import Game, GameConfig
from squares.services.claim_service import ClaimService
from squares.services.grid_service import GridService, payouts_from_percentages
from squares.services.ledger_service import LedgerService
from squares.services.number_assigner import NumberAssigner

logger = logging.getLogger("squares.routes.games")

router = APIRouter(prefix="/games", tags=["Games"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service(db: AsyncIOMotorDatabase) -> GridService:
    """Build a GridService wired to the current database."""
    return GridService(GameDAL(db), BoxDAL(db))


def _get_claim_service(db: AsyncIOMotorDatabase) -> ClaimService:
    ledger_dal = LedgerDAL(db)
    return ClaimService(
        game_dal=GameDAL(db),
        box_dal=BoxDAL(db),
        free_claim_dal=FreeClaimDAL(db),
        ledger_dal=ledger_dal,
        ledger_service=LedgerService(ledger_dal, BalanceDAL(db)),
    )


def _game_out(game: Game) -> dict[str, Any]:
    return game.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class CreateGameBody(BaseModel):
    """Request body for POST /api/games.

    Payouts are given either as fixed amounts or as percentages of a
    sold-out grid's prize pool.
    """
    name: Optional[str] = Field(default=None, max_length=100)
    sport: Sport = Sport.NFL
    home_team: str = Field(..., min_length=1, max_length=50)
    away_team: str = Field(..., min_length=1, max_length=50)
    starts_at: datetime
    entry_fee: int = Field(default=0, ge=0, description="HotCoins per box; 0 = free game.")
    payouts: Optional[list[int]] = None
    payout_percentages: Optional[list[int]] = None
    is_active: bool = True

    @model_validator(mode="after")
    def one_payout_form(self) -> "CreateGameBody":
        if self.payouts is not None and self.payout_percentages is not None:
            raise ValueError("Give either payouts or payout_percentages, not both")
        return self


class ActiveBody(BaseModel):
    is_active: bool


class ClaimBody(BaseModel):
    """Request body for POST .../boxes/claim."""
    user_id: str = Field(..., min_length=1)
    row: int
    col: int


class ClaimReceiptOut(BaseModel):
    game_id: str
    row: int
    col: int
    user_id: str
    amount_charged: int
    ledger_entry_id: Optional[str] = None
    claimed_at: str


class NumbersOut(BaseModel):
    game_id: str
    home_numbers: list[int]
    away_numbers: list[int]


class ReversalOut(BaseModel):
    game_id: str
    row: int
    col: int
    refund_entry_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------------

@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a game and its 100 boxes",
)
async def create_game(
    body: CreateGameBody, db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict[str, Any]:
    payouts = body.payouts
    if body.payout_percentages is not None:
        payouts = payouts_from_percentages(body.entry_fee, body.payout_percentages)

    try:
        config = GameConfig(
            name=body.name,
            sport=body.sport,
            home_team=body.home_team,
            away_team=body.away_team,
            starts_at=body.starts_at,
            entry_fee=body.entry_fee,
            payouts=payouts if payouts is not None else [0] * CHECKPOINT_COUNT,
            is_active=body.is_active,
        )
    except ValidationError as e:
        raise InputValidationError(str(e)) from e
    game = await _get_service(db).create_game(config)
    return _game_out(game)


@router.get("", summary="List games")
async def list_games(
    active_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    skip: int = Query(default=0, ge=0),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    games = await _get_service(db).list_games(active_only=active_only, limit=limit, skip=skip)
    return {"games": [_game_out(g) for g in games], "total_count": len(games)}


@router.get("/{game_id}", summary="Get game details")
async def get_game(
    game_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict[str, Any]:
    game = await _get_service(db).get_game(game_id)
    return _game_out(game)


@router.get("/{game_id}/grid", summary="Get the ownership map")
async def get_grid(
    game_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict[str, Any]:
    grid = await _get_service(db).get_ownership_map(game_id)
    return {"game_id": game_id, "grid": grid}


@router.get("/{game_id}/summary", summary="Get the pool summary")
async def get_summary(
    game_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict[str, Any]:
    return await _get_service(db).get_summary(game_id)


@router.post("/{game_id}/active", summary="Activate or deactivate a game")
async def set_active(
    body: ActiveBody,
    game_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    game = await _get_service(db).set_active(game_id, body.is_active)
    logger.info("Game %s is_active=%s (admin=%s)", game_id, body.is_active, x_admin_id)
    return _game_out(game)


@router.post(
    "/{game_id}/numbers",
    response_model=NumbersOut,
    summary="Assign the row and column numbers",
)
async def assign_numbers(
    game_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> NumbersOut:
    home, away = await NumberAssigner(GameDAL(db)).assign_numbers(game_id)
    logger.info("Numbers assigned for game %s by admin %s", game_id, x_admin_id)
    return NumbersOut(game_id=game_id, home_numbers=home, away_numbers=away)


# ---------------------------------------------------------------------------
# Boxes
# ---------------------------------------------------------------------------

@router.post(
    "/{game_id}/boxes/claim",
    response_model=ClaimReceiptOut,
    status_code=status.HTTP_201_CREATED,
    summary="Claim a box",
)
async def claim_box(
    body: ClaimBody,
    game_id: str = Path(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> ClaimReceiptOut:
    receipt = await _get_claim_service(db).claim_box(game_id, body.row, body.col, body.user_id)
    return ClaimReceiptOut(
        **receipt.model_dump(exclude={"claimed_at"}),
        claimed_at=receipt.claimed_at.isoformat(),
    )


@router.post(
    "/{game_id}/boxes/{row}/{col}/reverse",
    response_model=ReversalOut,
    summary="Reverse a claim before numbers are assigned",
)
async def reverse_claim(
    game_id: str = Path(...),
    row: int = Path(...),
    col: int = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> ReversalOut:
    refund_id = await _get_claim_service(db).reverse_claim(game_id, row, col, x_admin_id)
    return ReversalOut(game_id=game_id, row=row, col=col, refund_entry_id=refund_id)
