"""Unit tests for LedgerService.

Tests cover:
    - balance is the sum of approved entries only
    - purchases: minimum, auto-approval threshold, provider idempotency
    - verification: approve / reject pending entries exactly once
    - idempotent credits keyed by entry id
    - admin adjustments and guard reconciliation
"""

import pytest

from squares.errors import (
    InputValidationError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from squares.models.common import EntryKind, PaymentMethod, VerificationStatus


@pytest.mark.asyncio
class TestBalance:

    async def test_unknown_user_has_zero_balance(self, ledger_service):
        assert await ledger_service.get_balance("ghost") == 0

    async def test_balance_sums_approved_entries(self, ledger_service, fund):
        await fund("alice", 50)
        await fund("alice", 30)
        await ledger_service.debit("alice", 20, EntryKind.CLAIM_DEBIT)
        assert await ledger_service.get_balance("alice") == 60

    async def test_history_newest_first(self, ledger_service, fund, clock):
        await fund("alice", 50)
        clock.advance(minutes=1)
        await fund("alice", 20)
        clock.advance(minutes=1)
        await ledger_service.debit("alice", 10, EntryKind.CLAIM_DEBIT)

        history = await ledger_service.get_history("alice")

        assert [e.amount for e in history] == [-10, 20, 50]

    async def test_history_pagination(self, ledger_service, fund, clock):
        for amount in (10, 20, 30):
            await fund("alice", amount)
            clock.advance(minutes=1)
        page = await ledger_service.get_history("alice", limit=1, skip=1)
        assert [e.amount for e in page] == [20]


@pytest.mark.asyncio
class TestCredit:

    async def test_credit_must_be_positive(self, ledger_service):
        with pytest.raises(InputValidationError):
            await ledger_service.credit("alice", 0, EntryKind.PURCHASE)

    async def test_keyed_credit_is_idempotent(self, ledger_service):
        first, created = await ledger_service.credit(
            "alice", 100, EntryKind.PAYOUT, entry_id="payout:g1:0"
        )
        again, created_again = await ledger_service.credit(
            "alice", 100, EntryKind.PAYOUT, entry_id="payout:g1:0"
        )

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert await ledger_service.get_balance("alice") == 100

    async def test_debit_beyond_balance_rejected(self, ledger_service, fund):
        await fund("alice", 10)
        with pytest.raises(InsufficientFundsError):
            await ledger_service.debit("alice", 11, EntryKind.CLAIM_DEBIT)
        assert await ledger_service.get_balance("alice") == 10


@pytest.mark.asyncio
class TestPurchases:

    async def test_below_minimum(self, ledger_service):
        with pytest.raises(InputValidationError):
            await ledger_service.record_purchase("alice", 9, PaymentMethod.CASHAPP)

    async def test_small_purchase_auto_approved(self, ledger_service):
        entry = await ledger_service.record_purchase("alice", 100, PaymentMethod.VENMO, "tx-1")
        assert entry.status == VerificationStatus.APPROVED
        assert entry.id == "purchase:venmo:tx-1"
        assert await ledger_service.get_balance("alice") == 100

    async def test_large_purchase_waits_for_verification(self, ledger_service):
        entry = await ledger_service.record_purchase("alice", 101, PaymentMethod.PAYPAL)
        assert entry.status == VerificationStatus.PENDING
        assert await ledger_service.get_balance("alice") == 0
        pending = await ledger_service.list_pending_entries()
        assert [e.id for e in pending] == [entry.id]

    async def test_provider_reference_recorded_once(self, ledger_service):
        await ledger_service.record_purchase("alice", 50, PaymentMethod.CASHAPP, "tx-9")
        await ledger_service.record_purchase("alice", 50, PaymentMethod.CASHAPP, "tx-9")
        assert await ledger_service.get_balance("alice") == 50

    async def test_same_reference_on_other_provider_is_distinct(self, ledger_service):
        await ledger_service.record_purchase("alice", 50, PaymentMethod.CASHAPP, "tx-9")
        await ledger_service.record_purchase("alice", 50, PaymentMethod.VENMO, "tx-9")
        assert await ledger_service.get_balance("alice") == 100


@pytest.mark.asyncio
class TestVerification:

    async def test_approve_pending_purchase(self, ledger_service, balance_dal):
        entry = await ledger_service.record_purchase("alice", 250, PaymentMethod.CASHAPP)

        approved = await ledger_service.approve_entry(entry.id, "admin1")

        assert approved.status == VerificationStatus.APPROVED
        assert approved.resolved_by == "admin1"
        assert approved.resolved_at is not None
        assert await ledger_service.get_balance("alice") == 250
        assert await balance_dal.get_available("alice") == 250

    async def test_approve_twice_rejected(self, ledger_service):
        entry = await ledger_service.record_purchase("alice", 250, PaymentMethod.CASHAPP)
        await ledger_service.approve_entry(entry.id, "admin1")
        with pytest.raises(InvalidStateError):
            await ledger_service.approve_entry(entry.id, "admin2")
        assert await ledger_service.get_balance("alice") == 250

    async def test_reject_pending_purchase(self, ledger_service):
        entry = await ledger_service.record_purchase("alice", 250, PaymentMethod.CASHAPP)

        rejected = await ledger_service.reject_entry(entry.id, "admin1")

        assert rejected.status == VerificationStatus.REJECTED
        assert await ledger_service.get_balance("alice") == 0
        with pytest.raises(InvalidStateError):
            await ledger_service.approve_entry(entry.id, "admin1")

    async def test_approved_entries_cannot_be_rejected(self, ledger_service, fund):
        entry = await fund("alice", 50)
        with pytest.raises(InvalidStateError):
            await ledger_service.reject_entry(entry.id, "admin1")

    async def test_unknown_entry(self, ledger_service):
        with pytest.raises(NotFoundError):
            await ledger_service.approve_entry("missing", "admin1")


@pytest.mark.asyncio
class TestAdministration:

    async def test_positive_adjustment(self, ledger_service):
        entry = await ledger_service.adjust_balance("alice", 40, "admin1", "goodwill")
        assert entry.kind == EntryKind.ADMIN_ADJUSTMENT
        assert entry.description == "goodwill"
        assert await ledger_service.get_balance("alice") == 40

    async def test_negative_adjustment_cannot_overdraw(self, ledger_service, fund):
        await fund("alice", 20)
        with pytest.raises(InsufficientFundsError):
            await ledger_service.adjust_balance("alice", -30, "admin1")
        await ledger_service.adjust_balance("alice", -20, "admin1")
        assert await ledger_service.get_balance("alice") == 0

    async def test_zero_adjustment_rejected(self, ledger_service):
        with pytest.raises(InputValidationError):
            await ledger_service.adjust_balance("alice", 0, "admin1")

    async def test_reconcile_restores_guard(self, ledger_service, fund, balance_dal):
        await fund("alice", 70)
        await balance_dal.set_available("alice", 0)

        assert await ledger_service.reconcile("alice") == 70
        assert await balance_dal.get_available("alice") == 70
