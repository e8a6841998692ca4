from ..models import TransferOutcome, TransferRequest, TransferResult
from ..store import Scope
from .base import TransferStrategy


class OptimisticLockTransfer(TransferStrategy):
    name = "optimistic"
    technique = "Version Column"
    description = "Reads without holds and detects concurrent writers by checking the version at write time"
    pros = [
        "no lock wait before the write",
        "short hold time under low contention",
    ]
    cons = [
        "aborts with a conflict under contention",
        "retrying is left to the caller",
    ]

    async def apply(self, scope: Scope, request: TransferRequest) -> TransferOutcome:
        ############################ read (no holds) ############################
        from_account = await scope.read(request.from_id)
        to_account = await scope.read(request.to_id)

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

        ############################ write (version checked) ############################
        new_from_balance = from_account.balance - request.amount
        new_to_balance = to_account.balance + request.amount

        # a version mismatch means another writer committed after our read
        from_written = await scope.conditional_write(request.from_id, new_from_balance, from_account.version)
        if not from_written:
            return self._conflict(from_account, to_account)

        to_written = await scope.conditional_write(request.to_id, new_to_balance, to_account.version)
        if not to_written:
            return self._conflict(from_account, to_account)

        return TransferOutcome(
            result=TransferResult.SUCCESS,
            from_balance=new_from_balance,
            to_balance=new_to_balance,
            from_version=from_account.version + 1,
            to_version=to_account.version + 1
        )

    @staticmethod
    def _conflict(from_account, to_account) -> TransferOutcome:
        return TransferOutcome(
            result=TransferResult.CONCURRENT_CONFLICT,
            from_balance=from_account.balance,
            to_balance=to_account.balance,
            from_version=from_account.version,
            to_version=to_account.version
        )
