"""Settlement route handlers.

Endpoints:
    POST /api/games/{game_id}/scores   -- Record a checkpoint score (admin).
    GET  /api/games/{game_id}/winners  -- Winners of every recorded checkpoint.
    POST /api/games/{game_id}/payouts  -- Issue unpaid checkpoint payouts (admin).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from squares.dal.balances_dal import BalanceDAL
from squares.dal.boxes_dal import BoxDAL
from squares.dal.database import get_db
from squares.dal.games_dal import GameDAL
from squares.dal.ledger_dal import LedgerDAL
from squares.models.settlement import PayoutList, Winner
from squares.services.ledger_service import LedgerService
from squares.services.settlement_service import SettlementService

logger = logging.getLogger("squares.routes.settlement")

router = APIRouter(prefix="/games/{game_id}", tags=["Settlement"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service(db: AsyncIOMotorDatabase) -> SettlementService:
    """Build a SettlementService wired to the current database."""
    return SettlementService(
        game_dal=GameDAL(db),
        box_dal=BoxDAL(db),
        ledger_service=LedgerService(LedgerDAL(db), BalanceDAL(db)),
    )


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class ScoreBody(BaseModel):
    """Request body for POST .../scores."""
    checkpoint: int = Field(..., description="0 = 1st Quarter, 1 = Halftime, 2 = 3rd Quarter, 3 = Final")
    home_score: int
    away_score: int


class WinnerOut(BaseModel):
    checkpoint: int
    label: str
    home_score: int
    away_score: int
    home_digit: int
    away_digit: int
    row: int
    col: int
    user_id: Optional[str] = None
    payout_amount: int


class WinnersResponse(BaseModel):
    game_id: str
    winners: list[WinnerOut]


class PayoutOut(BaseModel):
    checkpoint: int
    label: str
    user_id: str
    amount: int
    entry_id: str
    newly_issued: bool


class PayoutsResponse(BaseModel):
    game_id: str
    payouts: list[PayoutOut]
    total_issued: int
    total_paid: int


def _winners_response(game_id: str, winners: list[Winner]) -> WinnersResponse:
    return WinnersResponse(
        game_id=game_id,
        winners=[WinnerOut(**w.model_dump(), label=w.label) for w in winners],
    )


def _payouts_response(result: PayoutList) -> PayoutsResponse:
    return PayoutsResponse(
        game_id=result.game_id,
        payouts=[PayoutOut(**p.model_dump(), label=p.label) for p in result.payouts],
        total_issued=result.total_issued,
        total_paid=result.total_paid,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/scores", response_model=WinnersResponse, summary="Record a checkpoint score")
async def record_scores(
    body: ScoreBody,
    game_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> WinnersResponse:
    winners = await _get_service(db).record_scores(
        game_id, body.checkpoint, body.home_score, body.away_score
    )
    logger.info("Scores for game %s checkpoint %d submitted by %s", game_id, body.checkpoint, x_admin_id)
    return _winners_response(game_id, winners)


@router.get("/winners", response_model=WinnersResponse, summary="Get resolved winners")
async def get_winners(
    game_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> WinnersResponse:
    winners = await _get_service(db).get_winners(game_id)
    return _winners_response(game_id, winners)


@router.post("/payouts", response_model=PayoutsResponse, summary="Issue checkpoint payouts")
async def process_payouts(
    game_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> PayoutsResponse:
    result = await _get_service(db).process_payouts(game_id)
    logger.info(
        "Payout run for game %s by %s: %d issued",
        game_id,
        x_admin_id,
        result.total_issued,
    )
    return _payouts_response(result)
