from ..models import TransferOutcome, TransferRequest, TransferResult
from ..store import Scope
from .base import TransferStrategy


class AtomicStatementTransfer(TransferStrategy):
    name = "atomic"
    technique = "Single conditional UPDATE chain (CTE)"
    description = "Debit-if-sufficient and dependent credit run as one statement the storage engine applies atomically"
    pros = [
        "no client-side read before the write",
        "shortest hold time of the three",
    ]
    cons = [
        "needs a store that can chain conditional multi-row updates",
        "failure reason has to be worked out after the fact",
    ]

    async def apply(self, scope: Scope, request: TransferRequest) -> TransferOutcome:
        debited, credited = await scope.atomic_transfer(request.from_id, request.to_id, request.amount)
        if debited and credited:
            return TransferOutcome(result=TransferResult.SUCCESS)

        # zero rows on a leg: find out why. A debit without a credit is undone by the rollback
        from_account = await scope.read(request.from_id)
        to_account = await scope.read(request.to_id)
        if from_account is None or to_account is None:
            return TransferOutcome(result=TransferResult.ACCOUNT_NOT_FOUND)

        if not debited and from_account.balance < request.amount:
            return TransferOutcome(
                result=TransferResult.INSUFFICIENT_FUNDS,
                from_balance=from_account.balance,
                to_balance=to_account.balance,
                from_version=from_account.version,
                to_version=to_account.version
            )

        return TransferOutcome(result=TransferResult.CONCURRENT_CONFLICT)
