"""Tests for the ledger, withdrawal and settlement models."""

import pytest
from pydantic import ValidationError

from squares.models.common import EntryKind, VerificationStatus, WithdrawalStatus
from squares.models.ledger import LedgerEntry
from squares.models.settlement import Payout, PayoutList, Winner
from squares.models.withdrawal import (
    WithdrawalRequest,
    completion_entry_id,
    hold_entry_id,
    release_entry_id,
)


class TestLedgerEntry:

    def test_defaults(self):
        entry = LedgerEntry(user_id="alice", amount=50, kind=EntryKind.PURCHASE)
        assert entry.status == VerificationStatus.APPROVED
        assert entry.counts_toward_balance is True
        assert entry.id

    def test_generated_ids_are_unique(self):
        a = LedgerEntry(user_id="alice", amount=50, kind=EntryKind.PURCHASE)
        b = LedgerEntry(user_id="alice", amount=50, kind=EntryKind.PURCHASE)
        assert a.id != b.id

    def test_pending_entry_does_not_count(self):
        entry = LedgerEntry(
            user_id="alice",
            amount=150,
            kind=EntryKind.PURCHASE,
            status=VerificationStatus.PENDING,
        )
        assert entry.counts_toward_balance is False

    def test_zero_amount_rejected(self):
        with pytest.raises(ValidationError):
            LedgerEntry(user_id="alice", amount=0, kind=EntryKind.PAYOUT)

    def test_completion_entry_is_zero(self):
        entry = LedgerEntry(user_id="alice", amount=0, kind=EntryKind.WITHDRAWAL_COMPLETE)
        assert entry.amount == 0

    def test_completion_entry_cannot_move_value(self):
        with pytest.raises(ValidationError):
            LedgerEntry(user_id="alice", amount=-50, kind=EntryKind.WITHDRAWAL_COMPLETE)

    def test_mongo_dict_uses_id_alias(self):
        entry = LedgerEntry(_id="payout:g1:0", user_id="alice", amount=100, kind=EntryKind.PAYOUT)
        data = entry.to_mongo_dict()
        assert data["_id"] == "payout:g1:0"
        assert data["kind"] == "payout"


class TestWithdrawalRequest:

    def test_entry_ids(self):
        assert hold_entry_id("abc") == "withdrawal-hold:abc"
        assert release_entry_id("abc") == "withdrawal-release:abc"
        assert completion_entry_id("abc") == "withdrawal-complete:abc"

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            WithdrawalRequest(user_id="alice", amount=0, destination="$alice")

    def test_destination_required(self):
        with pytest.raises(ValidationError):
            WithdrawalRequest(user_id="alice", amount=50, destination="")

    @pytest.mark.parametrize(
        "status,counts",
        [
            (WithdrawalStatus.PENDING, True),
            (WithdrawalStatus.APPROVED, True),
            (WithdrawalStatus.COMPLETED, True),
            (WithdrawalStatus.REJECTED, False),
        ],
    )
    def test_daily_limit_counting(self, status, counts):
        request = WithdrawalRequest(user_id="alice", amount=50, destination="$alice", status=status)
        assert request.counts_toward_daily_limit is counts


class TestSettlementModels:

    def test_winner_label(self):
        winner = Winner(
            checkpoint=3,
            home_score=24,
            away_score=17,
            home_digit=4,
            away_digit=7,
            row=1,
            col=2,
        )
        assert winner.label == "Final"
        assert winner.user_id is None

    def test_payout_totals(self):
        result = PayoutList(
            game_id="g1",
            payouts=[
                Payout(checkpoint=0, user_id="a", amount=100, entry_id="payout:g1:0", newly_issued=False),
                Payout(checkpoint=1, user_id="b", amount=200, entry_id="payout:g1:1", newly_issued=True),
            ],
        )
        assert result.total_issued == 200
        assert result.total_paid == 300
