"""Withdrawal state machine service.

Lifecycle::

    pending --approve--> approved --complete--> completed
       |
       +--reject--> rejected

The funds leave the balance when the request is made (``withdrawal-hold``
of ``-amount``). Approval only records a zero-amount ``withdrawal-complete``
audit entry; rejection credits a ``withdrawal-release`` of ``+amount``. The
hold itself is never deleted.

Every transition is an optimistic lock on the request's current status, so
two admins acting at once cannot both approve and reject one request.

Requests of one user are serialised by a short lease document, so the
trailing 24h total read for the daily limit cannot be stale by the time
the hold is written.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Callable, Optional

from bson import ObjectId
from pymongo.errors import ConnectionFailure

from squares.config import settings
from squares.dal.withdrawals_dal import WithdrawalDAL
from squares.errors import (
    DailyLimitExceededError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
)
from squares.models.common import EntryKind, WithdrawalStatus, utc_now
from squares.models.withdrawal import (
    WithdrawalRequest,
    completion_entry_id,
    hold_entry_id,
    release_entry_id,
)
from squares.services.ledger_service import LedgerService
from squares.services.payout_notifier import PayoutNotifier
from squares.services.storage import storage_errors

logger = logging.getLogger("squares.services.withdrawal")

DAILY_WINDOW = timedelta(hours=24)

LEASE_TTL = timedelta(seconds=30)
LEASE_ATTEMPTS = 20
LEASE_RETRY_DELAY = 0.05


def _reference(request_id: str) -> str:
    return f"withdrawal:{request_id}"


class WithdrawalService:
    """Service layer for withdrawal requests."""

    def __init__(
        self,
        withdrawal_dal: WithdrawalDAL,
        ledger_service: LedgerService,
        notifier: Optional[PayoutNotifier] = None,
        clock: Callable = utc_now,
        minimum: Optional[int] = None,
        daily_limit: Optional[int] = None,
    ) -> None:
        self._dal = withdrawal_dal
        self._ledger = ledger_service
        self._notifier = notifier or PayoutNotifier()
        self._clock = clock
        self._minimum = settings.WITHDRAWAL_MINIMUM if minimum is None else minimum
        self._daily_limit = (
            settings.WITHDRAWAL_DAILY_LIMIT if daily_limit is None else daily_limit
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_request_or_404(self, request_id: str) -> WithdrawalRequest:
        async with storage_errors("withdrawal lookup"):
            request = await self._dal.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Withdrawal request not found")
        return request

    async def _withdrawn_today(self, user_id: str) -> int:
        since = self._clock() - DAILY_WINDOW
        async with storage_errors("daily limit check"):
            recent = await self._dal.created_since(user_id, since)
        return sum(r.amount for r in recent if r.counts_toward_daily_limit)

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    async def request_withdrawal(
        self, user_id: str, amount: int, destination: str
    ) -> WithdrawalRequest:
        """Open a withdrawal and hold the funds immediately.

        Raises:
            InputValidationError: amount below the minimum or blank destination.
            DailyLimitExceededError: the trailing 24h total would exceed the limit.
            InsufficientFundsError: the balance is below ``amount``.
            InvalidStateError: another request of the same user kept its
                lease for every retry.
            StorageUnavailableError: nothing was held and no request exists.
        """
        if amount < self._minimum:
            raise InputValidationError(f"Minimum withdrawal is {self._minimum} HotCoins")
        destination = (destination or "").strip()
        if not destination:
            raise InputValidationError("A payout destination is required")

        token = str(ObjectId())
        await self._acquire_lease(user_id, token)
        try:
            return await self._open_request(user_id, amount, destination)
        finally:
            try:
                await self._dal.release_user_lease(user_id, token)
            except ConnectionFailure as e:
                logger.warning(
                    "Withdrawal lease of user=%s not released (%s); it expires on its own",
                    user_id,
                    str(e),
                )

    async def _acquire_lease(self, user_id: str, token: str) -> None:
        """Serialise one user's requests so the daily limit check and the hold
        act as a single step."""
        for _ in range(LEASE_ATTEMPTS):
            now = self._clock().timestamp()
            async with storage_errors("withdrawal lease"):
                if await self._dal.acquire_user_lease(
                    user_id, token, now, LEASE_TTL.total_seconds()
                ):
                    return
            await asyncio.sleep(LEASE_RETRY_DELAY)
        raise InvalidStateError("Another withdrawal for this user is in progress; retry")

    async def _open_request(
        self, user_id: str, amount: int, destination: str
    ) -> WithdrawalRequest:
        withdrawn = await self._withdrawn_today(user_id)
        if withdrawn + amount > self._daily_limit:
            raise DailyLimitExceededError(
                f"Daily withdrawal limit of {self._daily_limit} HotCoins exceeded "
                f"({withdrawn} already requested in the last 24 hours)"
            )

        await self._ledger.reserve_funds(user_id, amount)

        request_id = str(ObjectId())
        request = WithdrawalRequest(
            _id=request_id,
            user_id=user_id,
            amount=amount,
            destination=destination,
            hold_entry_id=hold_entry_id(request_id),
            created_at=self._clock(),
        )
        try:
            async with storage_errors("withdrawal request"):
                await self._dal.create(request)
        except Exception:
            await self._ledger.release_funds(user_id, amount)
            raise

        try:
            await self._ledger.commit_debit(
                user_id,
                amount,
                EntryKind.WITHDRAWAL_HOLD,
                entry_id=hold_entry_id(request_id),
                reference=_reference(request_id),
                description=f"Withdrawal hold to {destination}",
            )
        except Exception:
            # commit_debit already handed the reserved funds back
            async with storage_errors("withdrawal request rollback"):
                await self._dal.delete(request_id)
            raise

        logger.info(
            "Withdrawal requested: id=%s user=%s amount=%d",
            request_id,
            user_id,
            amount,
        )
        return request

    # ------------------------------------------------------------------
    # Admin decisions
    # ------------------------------------------------------------------

    async def approve_withdrawal(self, request_id: str, admin_id: str) -> WithdrawalRequest:
        """Approve and complete a withdrawal.

        An ``approved`` request (left behind by an interrupted call) is
        resumed. The payout notifier is signalled once, by the call that
        completes the request; its failures are logged and never raised.

        Raises:
            NotFoundError: unknown request.
            InvalidStateError: the request is completed or rejected.
        """
        request = await self._get_request_or_404(request_id)
        now = self._clock()

        if request.status == WithdrawalStatus.PENDING:
            async with storage_errors("withdrawal approval"):
                moved = await self._dal.transition(
                    request_id,
                    WithdrawalStatus.PENDING,
                    WithdrawalStatus.APPROVED,
                    {"resolved_by": admin_id, "resolved_at": now},
                )
            if not moved:
                request = await self._get_request_or_404(request_id)
                if request.status != WithdrawalStatus.APPROVED:
                    raise InvalidStateError(f"Withdrawal already {request.status}")
        elif request.status != WithdrawalStatus.APPROVED:
            raise InvalidStateError(f"Withdrawal already {request.status}")

        entry_id = completion_entry_id(request_id)
        await self._ledger.record_audit(
            request.user_id,
            EntryKind.WITHDRAWAL_COMPLETE,
            entry_id=entry_id,
            reference=_reference(request_id),
            description=f"Withdrawal of {request.amount} sent to {request.destination}",
        )

        async with storage_errors("withdrawal completion"):
            completed = await self._dal.transition(
                request_id,
                WithdrawalStatus.APPROVED,
                WithdrawalStatus.COMPLETED,
                {"completion_entry_id": entry_id},
            )
        request = await self._get_request_or_404(request_id)
        if not completed:
            if request.status == WithdrawalStatus.COMPLETED:
                return request
            raise InvalidStateError(f"Withdrawal already {request.status}")

        logger.info(
            "Withdrawal completed: id=%s user=%s amount=%d admin=%s",
            request_id,
            request.user_id,
            request.amount,
            admin_id,
        )
        try:
            await self._notifier.notify_withdrawal_approved(request)
        except Exception as e:
            logger.error("Payout notifier failed for withdrawal %s: %s", request_id, str(e))
        return request

    async def reject_withdrawal(
        self, request_id: str, admin_id: str, reason: Optional[str] = None
    ) -> WithdrawalRequest:
        """Reject a pending withdrawal and release its hold.

        A rejected request whose release was never written (interrupted
        call) gets it on the next invocation.

        Raises:
            NotFoundError: unknown request.
            InvalidStateError: the request is not pending.
        """
        request = await self._get_request_or_404(request_id)
        entry_id = release_entry_id(request_id)

        if request.status == WithdrawalStatus.REJECTED:
            if await self._ledger.get_entry(entry_id) is not None:
                raise InvalidStateError("Withdrawal already rejected")
        elif request.status != WithdrawalStatus.PENDING:
            raise InvalidStateError(f"Withdrawal already {request.status}")
        else:
            async with storage_errors("withdrawal rejection"):
                moved = await self._dal.transition(
                    request_id,
                    WithdrawalStatus.PENDING,
                    WithdrawalStatus.REJECTED,
                    {
                        "resolved_by": admin_id,
                        "resolved_at": self._clock(),
                        "reason": reason,
                        "release_entry_id": entry_id,
                    },
                )
            if not moved:
                current = await self._get_request_or_404(request_id)
                raise InvalidStateError(f"Withdrawal already {current.status}")

        await self._ledger.credit(
            request.user_id,
            request.amount,
            EntryKind.WITHDRAWAL_RELEASE,
            entry_id=entry_id,
            reference=_reference(request_id),
            description=reason or "Withdrawal rejected",
        )
        logger.info(
            "Withdrawal rejected: id=%s user=%s amount=%d admin=%s",
            request_id,
            request.user_id,
            request.amount,
            admin_id,
        )
        return await self._get_request_or_404(request_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_withdrawal(self, request_id: str) -> WithdrawalRequest:
        return await self._get_request_or_404(request_id)

    async def list_withdrawals(
        self, status: Optional[WithdrawalStatus] = None, limit: int = 100
    ) -> list[WithdrawalRequest]:
        async with storage_errors("withdrawal listing"):
            return await self._dal.get_by_status(status, limit=limit)

    async def list_user_withdrawals(self, user_id: str) -> list[WithdrawalRequest]:
        async with storage_errors("withdrawal listing"):
            return await self._dal.get_by_user(user_id)
