"""
Pytest configuration and fixtures for the squares engine tests.

This module provides shared fixtures for testing async FastAPI endpoints
and MongoDB interactions using mongomock-motor (no real MongoDB required).
"""

import os

# The scheduler must never start inside the test process
os.environ["DISABLE_SCHEDULER"] = "1"

import random
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from squares.dal.balances_dal import BalanceDAL
from squares.dal.boxes_dal import BoxDAL
from squares.dal.database import ensure_indexes, get_db
from squares.dal.free_claims_dal import FreeClaimDAL
from squares.dal.games_dal import GameDAL
from squares.dal.ledger_dal import LedgerDAL
from squares.dal.withdrawals_dal import WithdrawalDAL
from squares.models.common import EntryKind
from squares.models.game import GameConfig
from squares.services.claim_service import ClaimService
from squares.services.grid_service import GridService
from squares.services.ledger_service import LedgerService
from squares.services.number_assigner import NumberAssigner
from squares.services.settlement_service import SettlementService
from squares.services.withdrawal_service import WithdrawalService

KICKOFF = datetime(2026, 2, 8, 23, 30, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; call it to read, ``advance`` to move it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def anyio_backend():
    """Specify anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    """A clock one day before kickoff."""
    return FakeClock(KICKOFF - timedelta(days=1))


@pytest_asyncio.fixture
async def test_db():
    """In-memory MongoDB mock database with the production indexes.

    The database is ephemeral -- it disappears after each test.
    """
    client = AsyncMongoMockClient()
    db = client["squares_test"]
    await ensure_indexes(db)
    yield db
    client.close()


# ---------------------------------------------------------------------------
# DALs
# ---------------------------------------------------------------------------

@pytest.fixture
def game_dal(test_db) -> GameDAL:
    return GameDAL(test_db)


@pytest.fixture
def box_dal(test_db) -> BoxDAL:
    return BoxDAL(test_db)


@pytest.fixture
def ledger_dal(test_db) -> LedgerDAL:
    return LedgerDAL(test_db)


@pytest.fixture
def balance_dal(test_db) -> BalanceDAL:
    return BalanceDAL(test_db)


@pytest.fixture
def free_claim_dal(test_db) -> FreeClaimDAL:
    return FreeClaimDAL(test_db)


@pytest.fixture
def withdrawal_dal(test_db) -> WithdrawalDAL:
    return WithdrawalDAL(test_db)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def ledger_service(ledger_dal, balance_dal, clock) -> LedgerService:
    return LedgerService(ledger_dal, balance_dal, clock=clock)


@pytest.fixture
def grid_service(game_dal, box_dal, clock) -> GridService:
    return GridService(game_dal, box_dal, clock=clock)


@pytest.fixture
def claim_service(game_dal, box_dal, free_claim_dal, ledger_dal, ledger_service, clock) -> ClaimService:
    return ClaimService(
        game_dal,
        box_dal,
        free_claim_dal,
        ledger_dal,
        ledger_service,
        clock=clock,
        free_box_limit=2,
    )


@pytest.fixture
def number_assigner(game_dal, clock) -> NumberAssigner:
    return NumberAssigner(game_dal, clock=clock, rng=random.Random(7), window_minutes=10)


@pytest.fixture
def settlement_service(game_dal, box_dal, ledger_service, clock) -> SettlementService:
    return SettlementService(game_dal, box_dal, ledger_service, clock=clock)


@pytest.fixture
def withdrawal_service(withdrawal_dal, ledger_service, clock) -> WithdrawalService:
    return WithdrawalService(
        withdrawal_dal,
        ledger_service,
        clock=clock,
        minimum=25,
        daily_limit=500,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_game(grid_service):
    """Factory creating a game through the grid service."""

    async def _make(entry_fee: int = 10, payouts=None, starts_at=KICKOFF, **kwargs):
        config = GameConfig(
            home_team=kwargs.pop("home_team", "Chiefs"),
            away_team=kwargs.pop("away_team", "Eagles"),
            starts_at=starts_at,
            entry_fee=entry_fee,
            payouts=payouts if payouts is not None else [100, 200, 100, 400],
            **kwargs,
        )
        return await grid_service.create_game(config)

    return _make


@pytest.fixture
def fund(ledger_service):
    """Credit a user with an approved purchase entry."""

    async def _fund(user_id: str, amount: int):
        entry, _ = await ledger_service.credit(
            user_id, amount, EntryKind.PURCHASE, description="test funds"
        )
        return entry

    return _fund


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(test_db):
    """Async HTTP client for the FastAPI app, wired to the mock database.

    Yields:
        AsyncClient: HTTPX async client with the FastAPI app.
    """
    from httpx import ASGITransport, AsyncClient
    from squares.main import app

    app.dependency_overrides[get_db] = lambda: test_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
