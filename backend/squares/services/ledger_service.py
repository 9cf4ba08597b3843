"""Ledger business logic service.

Owns every balance-affecting write. A user's balance is the sum of their
approved ledger entries; the balance guard (see ``BalanceDAL``) is the
compare-and-set point that keeps concurrent debits from spending the
same funds twice.

Ordering rules that keep the guard at or below the ledger balance:
    * debits reserve on the guard first, then append the entry; if the
      append fails the reservation is handed back;
    * credits append the entry first, then raise the guard.
"""

import logging
from typing import Callable, Optional

from pymongo.errors import ConnectionFailure, DuplicateKeyError

from squares.config import settings
from squares.dal.balances_dal import BalanceDAL
from squares.dal.ledger_dal import LedgerDAL
from squares.errors import (
    InputValidationError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from squares.models.common import EntryKind, PaymentMethod, VerificationStatus, utc_now
from squares.models.ledger import LedgerEntry
from squares.services.storage import storage_errors

logger = logging.getLogger("squares.services.ledger")


class LedgerService:
    """Service layer for ledger appends, verification, and balance queries."""

    def __init__(
        self,
        ledger_dal: LedgerDAL,
        balance_dal: BalanceDAL,
        clock: Callable = utc_now,
        purchase_minimum: Optional[int] = None,
        auto_approval_limit: Optional[int] = None,
    ) -> None:
        self._ledger_dal = ledger_dal
        self._balance_dal = balance_dal
        self._clock = clock
        self._purchase_minimum = (
            settings.PURCHASE_MINIMUM if purchase_minimum is None else purchase_minimum
        )
        self._auto_approval_limit = (
            settings.AUTO_APPROVAL_LIMIT if auto_approval_limit is None else auto_approval_limit
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_entry_or_404(self, entry_id: str) -> LedgerEntry:
        entry = await self._ledger_dal.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError("Ledger entry not found")
        return entry

    async def _raise_guard(self, user_id: str, amount: int) -> None:
        """Credit the guard after a committed credit entry.

        The entry is already durable at this point, so an outage here only
        leaves the guard below the ledger (funds temporarily unspendable)
        and is repaired by ``reconcile``. Raising would report a committed
        credit as failed.
        """
        try:
            await self._balance_dal.credit(user_id, amount)
        except ConnectionFailure as e:
            logger.error(
                "Balance guard for %s not credited by %d (%s); run reconcile",
                user_id,
                amount,
                str(e),
            )

    # ------------------------------------------------------------------
    # Core appends
    # ------------------------------------------------------------------

    async def credit(
        self,
        user_id: str,
        amount: int,
        kind: EntryKind,
        *,
        entry_id: Optional[str] = None,
        status: VerificationStatus = VerificationStatus.APPROVED,
        game_id: Optional[str] = None,
        reference: Optional[str] = None,
        description: str = "",
        payment_method: Optional[PaymentMethod] = None,
        external_ref: Optional[str] = None,
    ) -> tuple[LedgerEntry, bool]:
        """Append a credit entry.

        Passing ``entry_id`` makes the append idempotent: if an entry with
        that id already exists it is returned untouched.

        Returns:
            ``(entry, created)`` where ``created`` is False on a replay.
        """
        if amount <= 0:
            raise InputValidationError("Credit amount must be positive")

        fields = dict(
            user_id=user_id,
            amount=amount,
            kind=kind,
            status=status,
            game_id=game_id,
            reference=reference,
            description=description,
            payment_method=payment_method,
            external_ref=external_ref,
            created_at=self._clock(),
        )
        if entry_id is not None:
            fields["_id"] = entry_id
        entry = LedgerEntry(**fields)

        async with storage_errors(f"{kind} credit"):
            try:
                await self._ledger_dal.create(entry)
            except DuplicateKeyError:
                existing = await self._ledger_dal.get_by_id(entry.id)
                logger.info("Ledger entry %s already exists; credit not repeated", entry.id)
                return existing, False  # type: ignore[return-value]

        if entry.counts_toward_balance:
            await self._raise_guard(user_id, amount)
        return entry, True

    async def reserve_funds(self, user_id: str, amount: int) -> None:
        """Atomically set ``amount`` aside from the user's balance.

        Raises:
            InsufficientFundsError: the user's balance is below ``amount``.
        """
        if amount <= 0:
            raise InputValidationError("Debit amount must be positive")
        async with storage_errors("funds reservation"):
            reserved = await self._balance_dal.try_debit(user_id, amount)
        if not reserved:
            raise InsufficientFundsError(
                f"Balance is below the required {amount} HotCoins"
            )

    async def release_funds(self, user_id: str, amount: int) -> None:
        """Hand back a reservation whose operation did not go through."""
        async with storage_errors("funds release"):
            await self._balance_dal.credit(user_id, amount)
        logger.warning("Released reservation of %d for %s", amount, user_id)

    async def commit_debit(
        self,
        user_id: str,
        amount: int,
        kind: EntryKind,
        *,
        entry_id: Optional[str] = None,
        game_id: Optional[str] = None,
        reference: Optional[str] = None,
        description: str = "",
    ) -> LedgerEntry:
        """Append the approved ``-amount`` entry for funds already reserved.

        If the append fails the reservation is handed back before the
        error propagates.
        """
        entry_fields = dict(
            user_id=user_id,
            amount=-amount,
            kind=kind,
            status=VerificationStatus.APPROVED,
            game_id=game_id,
            reference=reference,
            description=description,
            created_at=self._clock(),
        )
        if entry_id is not None:
            entry_fields["_id"] = entry_id
        entry = LedgerEntry(**entry_fields)

        async with storage_errors(f"{kind} debit"):
            try:
                await self._ledger_dal.create(entry)
            except Exception:
                await self._balance_dal.credit(user_id, amount)
                logger.warning(
                    "Debit of %d for %s rolled back; entry %s not written",
                    amount,
                    user_id,
                    entry.id,
                )
                raise
        return entry

    async def debit(
        self,
        user_id: str,
        amount: int,
        kind: EntryKind,
        *,
        entry_id: Optional[str] = None,
        game_id: Optional[str] = None,
        reference: Optional[str] = None,
        description: str = "",
    ) -> LedgerEntry:
        """Reserve ``amount`` and append an approved debit entry of ``-amount``.

        Raises:
            InsufficientFundsError: the user's balance is below ``amount``.
            StorageUnavailableError: the append failed; the reservation has
                been handed back.
        """
        await self.reserve_funds(user_id, amount)
        return await self.commit_debit(
            user_id,
            amount,
            kind,
            entry_id=entry_id,
            game_id=game_id,
            reference=reference,
            description=description,
        )

    async def record_audit(
        self,
        user_id: str,
        kind: EntryKind,
        *,
        entry_id: str,
        reference: Optional[str] = None,
        description: str = "",
    ) -> tuple[LedgerEntry, bool]:
        """Append a zero-amount audit entry; a replay returns the existing one."""
        entry = LedgerEntry(
            _id=entry_id,
            user_id=user_id,
            amount=0,
            kind=kind,
            reference=reference,
            description=description,
            created_at=self._clock(),
        )
        async with storage_errors(f"{kind} audit"):
            try:
                await self._ledger_dal.create(entry)
            except DuplicateKeyError:
                return await self._get_entry_or_404(entry_id), False
        return entry, True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        async with storage_errors("ledger entry lookup"):
            return await self._ledger_dal.get_by_id(entry_id)

    async def get_balance(self, user_id: str) -> int:
        """Current balance: the sum of the user's approved entries."""
        async with storage_errors("balance query"):
            return await self._ledger_dal.sum_approved(user_id)

    async def get_history(
        self, user_id: str, limit: int = 100, skip: int = 0
    ) -> list[LedgerEntry]:
        async with storage_errors("ledger history"):
            return await self._ledger_dal.get_by_user(user_id, limit=limit, skip=skip)

    async def list_pending_entries(self, limit: int = 100) -> list[LedgerEntry]:
        async with storage_errors("pending entries"):
            return await self._ledger_dal.get_by_status(VerificationStatus.PENDING, limit=limit)

    # ------------------------------------------------------------------
    # Funds received
    # ------------------------------------------------------------------

    async def record_purchase(
        self,
        user_id: str,
        amount: int,
        payment_method: PaymentMethod,
        external_ref: Optional[str] = None,
    ) -> LedgerEntry:
        """Record HotCoins bought through an external payment provider.

        Purchases up to the auto-approval limit count immediately; larger
        ones wait as ``pending`` for manual verification. A purchase that
        carries a provider reference is recorded at most once.

        Raises:
            InputValidationError: amount below the purchase minimum.
        """
        if amount < self._purchase_minimum:
            raise InputValidationError(
                f"Minimum purchase is {self._purchase_minimum} HotCoins"
            )

        auto_approved = amount <= self._auto_approval_limit
        status = VerificationStatus.APPROVED if auto_approved else VerificationStatus.PENDING
        entry_id = f"purchase:{payment_method}:{external_ref}" if external_ref else None

        entry, created = await self.credit(
            user_id,
            amount,
            EntryKind.PURCHASE,
            entry_id=entry_id,
            status=status,
            description=f"Purchased {amount} HotCoins via {payment_method}",
            payment_method=payment_method,
            external_ref=external_ref,
        )
        if created:
            logger.info(
                "Purchase recorded: user=%s amount=%d method=%s auto_approved=%s",
                user_id,
                amount,
                payment_method,
                auto_approved,
            )
        return entry

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def approve_entry(self, entry_id: str, admin_id: str) -> LedgerEntry:
        """Approve a pending entry so it starts counting toward the balance.

        Raises:
            NotFoundError: unknown entry.
            InvalidStateError: the entry is not pending.
        """
        async with storage_errors("entry approval"):
            entry = await self._get_entry_or_404(entry_id)
            if entry.status != VerificationStatus.PENDING:
                raise InvalidStateError(f"Ledger entry already {entry.status}")

            updated = await self._ledger_dal.update_status(
                entry_id, VerificationStatus.APPROVED, admin_id, self._clock()
            )
            if not updated:
                raise InvalidStateError("Ledger entry already processed")

        await self._raise_guard(entry.user_id, entry.amount)
        return await self._get_entry_or_404(entry_id)

    async def reject_entry(self, entry_id: str, admin_id: str) -> LedgerEntry:
        """Reject a pending entry; it will never count toward the balance."""
        async with storage_errors("entry rejection"):
            entry = await self._get_entry_or_404(entry_id)
            if entry.status != VerificationStatus.PENDING:
                raise InvalidStateError(f"Ledger entry already {entry.status}")

            updated = await self._ledger_dal.update_status(
                entry_id, VerificationStatus.REJECTED, admin_id, self._clock()
            )
            if not updated:
                raise InvalidStateError("Ledger entry already processed")
            return await self._get_entry_or_404(entry_id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def adjust_balance(
        self, user_id: str, amount: int, admin_id: str, description: str = ""
    ) -> LedgerEntry:
        """Apply a manual correction. Negative adjustments cannot overdraw."""
        if amount == 0:
            raise InputValidationError("Adjustment amount must be non-zero")
        note = description or f"Adjustment by {admin_id}"
        if amount > 0:
            entry, _ = await self.credit(
                user_id, amount, EntryKind.ADMIN_ADJUSTMENT, description=note
            )
        else:
            entry = await self.debit(
                user_id, -amount, EntryKind.ADMIN_ADJUSTMENT, description=note
            )
        logger.info("Balance of %s adjusted by %d (admin=%s)", user_id, amount, admin_id)
        return entry

    async def reconcile(self, user_id: str) -> int:
        """Reset the balance guard to the ledger balance.

        Only safe while no debit for the user is in flight.

        Returns:
            The reconciled balance.
        """
        async with storage_errors("reconcile"):
            balance = await self._ledger_dal.sum_approved(user_id)
            await self._balance_dal.set_available(user_id, balance)
            return balance
