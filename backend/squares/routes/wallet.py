"""HotCoin wallet route handlers.

Endpoints:
    GET  /api/users/{user_id}/balance        -- Current balance.
    GET  /api/users/{user_id}/ledger         -- Ledger history, newest first.
    POST /api/users/{user_id}/purchases      -- Record a provider purchase.
    POST /api/users/{user_id}/adjustments    -- Manual adjustment (admin).
    POST /api/users/{user_id}/reconcile      -- Rebuild the balance guard (admin).
    GET  /api/ledger/pending                 -- Verification queue (admin).
    POST /api/ledger/{entry_id}/approve      -- Approve a pending entry (admin).
    POST /api/ledger/{entry_id}/reject       -- Reject a pending entry (admin).
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from squares.dal.balances_dal import BalanceDAL
from squares.dal.database import get_db
from squares.dal.ledger_dal import LedgerDAL
from squares.models.common import PaymentMethod
from squares.models.ledger import LedgerEntry
from squares.services.ledger_service import LedgerService

logger = logging.getLogger("squares.routes.wallet")

router = APIRouter(tags=["Wallet"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service(db: AsyncIOMotorDatabase) -> LedgerService:
    """Build a LedgerService wired to the current database."""
    return LedgerService(LedgerDAL(db), BalanceDAL(db))


def _entry_out(entry: LedgerEntry) -> dict[str, Any]:
    return entry.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class PurchaseBody(BaseModel):
    """Request body for POST /api/users/{user_id}/purchases."""
    amount: int = Field(..., gt=0)
    payment_method: PaymentMethod
    external_ref: Optional[str] = Field(
        default=None,
        description="Provider transaction id; repeats are recorded once.",
    )


class AdjustmentBody(BaseModel):
    amount: int
    description: str = ""


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


# ---------------------------------------------------------------------------
# Balance and history
# ---------------------------------------------------------------------------

@router.get("/users/{user_id}/balance", response_model=BalanceResponse, summary="Get balance")
async def get_balance(
    user_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_db)
) -> BalanceResponse:
    balance = await _get_service(db).get_balance(user_id)
    return BalanceResponse(user_id=user_id, balance=balance)


@router.get("/users/{user_id}/ledger", summary="Get ledger history")
async def get_history(
    user_id: str = Path(...),
    limit: int = Query(default=100, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    entries = await _get_service(db).get_history(user_id, limit=limit, skip=skip)
    return {"user_id": user_id, "entries": [_entry_out(e) for e in entries]}


# ---------------------------------------------------------------------------
# Funds in and corrections
# ---------------------------------------------------------------------------

@router.post(
    "/users/{user_id}/purchases",
    status_code=status.HTTP_201_CREATED,
    summary="Record a HotCoin purchase",
)
async def record_purchase(
    body: PurchaseBody,
    user_id: str = Path(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    entry = await _get_service(db).record_purchase(
        user_id, body.amount, body.payment_method, body.external_ref
    )
    return _entry_out(entry)


@router.post(
    "/users/{user_id}/adjustments",
    status_code=status.HTTP_201_CREATED,
    summary="Adjust a balance",
)
async def adjust_balance(
    body: AdjustmentBody,
    user_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    entry = await _get_service(db).adjust_balance(
        user_id, body.amount, x_admin_id, body.description
    )
    return _entry_out(entry)


@router.post(
    "/users/{user_id}/reconcile",
    response_model=BalanceResponse,
    summary="Reset the balance guard from the ledger",
)
async def reconcile(
    user_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> BalanceResponse:
    balance = await _get_service(db).reconcile(user_id)
    logger.info("Balance guard of %s reconciled by %s", user_id, x_admin_id)
    return BalanceResponse(user_id=user_id, balance=balance)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@router.get("/ledger/pending", summary="List entries awaiting verification")
async def list_pending(
    limit: int = Query(default=100, ge=1, le=500),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    entries = await _get_service(db).list_pending_entries(limit=limit)
    return {"entries": [_entry_out(e) for e in entries], "total_count": len(entries)}


@router.post("/ledger/{entry_id}/approve", summary="Approve a pending entry")
async def approve_entry(
    entry_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    entry = await _get_service(db).approve_entry(entry_id, x_admin_id)
    return _entry_out(entry)


@router.post("/ledger/{entry_id}/reject", summary="Reject a pending entry")
async def reject_entry(
    entry_id: str = Path(...),
    x_admin_id: str = Header(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    entry = await _get_service(db).reject_entry(entry_id, x_admin_id)
    return _entry_out(entry)
