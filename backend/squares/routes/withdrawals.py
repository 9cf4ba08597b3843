"""Withdrawal route handlers.

Endpoints:
    POST /api/users/{user_id}/withdrawals        -- Request a withdrawal.
    GET  /api/users/{user_id}/withdrawals        -- A user's withdrawals.
    GET  /api/withdrawals                        -- List by status (admin).
    GET  /api/withdrawals/{request_id}           -- Withdrawal detail.
    POST /api/withdrawals/{request_id}/approve   -- Approve and complete (admin).
    POST /api/withdrawals/{request_id}/reject    -- Reject and release (admin).
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from squares.dal.balances_dal import BalanceDAL
from squares.dal.database import get_db
from squares.dal.ledger_dal import LedgerDAL
from squares.dal.withdrawals_dal import WithdrawalDAL
from squares.models.common import WithdrawalStatus
from squares.models.withdrawal import WithdrawalRequest
from squares.services.ledger_service import LedgerService
from squares.services.withdrawal_service import WithdrawalService

logger = logging.getLogger("squares.routes.withdrawals")

router = APIRouter(tags=["Withdrawals"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service(db: AsyncIOMotorDatabase) -> WithdrawalService:
    """Build a WithdrawalService wired to the current database."""
    return WithdrawalService(
        WithdrawalDAL(db),
        LedgerService(LedgerDAL(db), BalanceDAL(db)),
    )


def _request_out(request: WithdrawalRequest) -> dict[str, Any]:
    return request.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class WithdrawalBody(BaseModel):
    """Request body for POST /api/users/{user_id}/withdrawals."""
    amount: int
    destination: str = Field(..., description="External payout identifier, e.g. a $cashtag.")


class RejectBody(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# User endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/users/{user_id}/withdrawals",
    status_code=status.HTTP_201_CREATED,
    summary="Request a withdrawal",
)
async def request_withdrawal(
    body: WithdrawalBody,
    user_id: str = Path(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    request = await _get_service(db).request_withdrawal(user_id, body.amount, body.destination)
    return _request_out(request)


@router.get("/users/{user_id}/withdrawals", summary="List a user's withdrawals")
async def list_user_withdrawals(
    user_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict[str, Any]:
    requests = await _get_service(db).list_user_withdrawals(user_id)
    return {"user_id": user_id, "withdrawals": [_request_out(r) for r in requests]}


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@router.get("/withdrawals", summary="List withdrawals by status")
async def list_withdrawals(
    status_filter: Optional[WithdrawalStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    requests = await _get_service(db).list_withdrawals(status_filter, limit=limit)
    return {"withdrawals": [_request_out(r) for r in requests], "total_count": len(requests)}


@router.get("/withdrawals/{request_id}", summary="Get a withdrawal")
async def get_withdrawal(
    request_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict[str, Any]:
    request = await _get_service(db).get_withdrawal(request_id)
    return _request_out(request)


@router.post("/withdrawals/{request_id}/approve", summary="Approve a withdrawal")
async def approve_withdrawal(
    request_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    request = await _get_service(db).approve_withdrawal(request_id, x_admin_id)
    return _request_out(request)


@router.post("/withdrawals/{request_id}/reject", summary="Reject a withdrawal")
async def reject_withdrawal(
    body: RejectBody,
    request_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    request = await _get_service(db).reject_withdrawal(request_id, x_admin_id, body.reason)
    return _request_out(request)
