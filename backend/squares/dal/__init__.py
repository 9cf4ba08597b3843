"""Data Access Layer -- MongoDB repository classes and connection management."""

from squares.dal.database import (
    close_mongo_connection,
    connect_to_mongo,
    ensure_indexes,
    get_database,
    get_db,
)
from squares.dal.balances_dal import BalanceDAL
from squares.dal.boxes_dal import BoxDAL
from squares.dal.free_claims_dal import FreeClaimDAL
from squares.dal.games_dal import GameDAL
from squares.dal.ledger_dal import LedgerDAL
from squares.dal.withdrawals_dal import WithdrawalDAL

__all__ = [
    # Connection management
    "connect_to_mongo",
    "close_mongo_connection",
    "ensure_indexes",
    "get_database",
    "get_db",
    # DAL classes
    "BalanceDAL",
    "BoxDAL",
    "FreeClaimDAL",
    "GameDAL",
    "LedgerDAL",
    "WithdrawalDAL",
]
