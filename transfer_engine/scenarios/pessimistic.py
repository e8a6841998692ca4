from typing import Tuple

from ..models import TransferOutcome, TransferRequest, TransferResult
from ..store import Scope
from .base import TransferStrategy


def lock_order(from_id: int, to_id: int) -> Tuple[int, int]:
    """Ascending id order, whatever the direction of the transfer"""
    return min(from_id, to_id), max(from_id, to_id)


class PessimisticLockTransfer(TransferStrategy):
    name = "pessimistic"
    technique = "SELECT FOR NO KEY UPDATE"
    description = "Takes exclusive row holds in ascending id order before reading, serializing conflicting transfers"
    pros = [
        "conflicting transfers wait instead of aborting",
        "funds are checked on the locked values",
    ]
    cons = [
        "callers block while another transfer holds a row",
        "throughput drops under contention",
    ]

    async def apply(self, scope: Scope, request: TransferRequest) -> TransferOutcome:
        ############################ lock + read ############################
        # two transfers in opposite directions would each hold one row and wait
        # on the other if the holds were taken in transfer order
        accounts = await scope.read_for_update(lock_order(request.from_id, request.to_id))

        from_account = accounts.get(request.from_id)
        to_account = accounts.get(request.to_id)
        if from_account is None or to_account is None:
            return TransferOutcome(result=TransferResult.ACCOUNT_NOT_FOUND)

        if from_account.balance < request.amount:
            return TransferOutcome(
                result=TransferResult.INSUFFICIENT_FUNDS,
                from_balance=from_account.balance,
                to_balance=to_account.balance,
                from_version=from_account.version,
                to_version=to_account.version
            )

        ############################ write ############################
        await scope.unconditional_delta(request.from_id, -request.amount)
        await scope.unconditional_delta(request.to_id, request.amount)

        return TransferOutcome(
            result=TransferResult.SUCCESS,
            from_balance=from_account.balance - request.amount,
            to_balance=to_account.balance + request.amount,
            from_version=from_account.version + 1,
            to_version=to_account.version + 1
        )
