"""Payout notifier collaborator.

The withdrawal state machine signals the notifier once a request is
completed; delivering the instruction to a payment provider or an operator
is outside the engine. The default implementation only logs it.
"""

import logging

from squares.models.withdrawal import WithdrawalRequest

logger = logging.getLogger("squares.services.payout_notifier")


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

MESSAGE_TEMPLATES = {
    "WITHDRAWAL_APPROVED": (
        "Send {amount} HotCoins to {destination} for user {user_id} "
        "(withdrawal {request_id})"
    ),
}


def format_payout_instruction(request: WithdrawalRequest) -> str:
    """Render the payout instruction for a completed withdrawal."""
    return MESSAGE_TEMPLATES["WITHDRAWAL_APPROVED"].format(
        amount=request.amount,
        destination=request.destination,
        user_id=request.user_id,
        request_id=request.id,
    )


class PayoutNotifier:
    """Receives "send funds" instructions for approved withdrawals.

    Subclasses override ``notify_withdrawal_approved`` to reach a real
    channel. Exceptions raised here never undo the withdrawal.
    """

    async def notify_withdrawal_approved(self, request: WithdrawalRequest) -> None:
        logger.info("Payout instruction: %s", format_payout_instruction(request))
