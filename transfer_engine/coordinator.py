import logging
import time
from decimal import Decimal

from .errors import ConcurrentModification, LockTimeout, StoreError, StoreUnavailable
from .models import TransferOutcome, TransferRequest, TransferResponse, TransferResult, TransferState
from .scenarios.base import TransferStrategy
from .store import AccountStore

logger = logging.getLogger(__name__)

MESSAGES = {
    TransferResult.SUCCESS: "transfer completed",
    TransferResult.INSUFFICIENT_FUNDS: "insufficient funds",
    TransferResult.ACCOUNT_NOT_FOUND: "account not found",
    TransferResult.CONCURRENT_CONFLICT: "concurrent modification detected, retry the transfer",
    TransferResult.STORE_UNAVAILABLE: "account store unavailable",
    TransferResult.LOCK_TIMEOUT: "timed out waiting for an account lock",
}


# store failures worth re-issuing the request for; any other error propagates
_TRANSIENT = (StoreUnavailable, LockTimeout, ConcurrentModification)


def _result_for(error: StoreError) -> TransferResult:
    if isinstance(error, LockTimeout):
        return TransferResult.LOCK_TIMEOUT
    if isinstance(error, ConcurrentModification):
        return TransferResult.CONCURRENT_CONFLICT
    return TransferResult.STORE_UNAVAILABLE


class TransferCoordinator:
    """Runs one strategy per transfer inside its own transactional scope.

    idle -> scope_open -> strategy_applied -> committed
                       \\-> failed -> rolled_back

    Only a ``SUCCESS`` outcome is committed. Business rejections and transient
    store failures roll back and come back as a ``TransferResult``; any
    other exception (data or constraint errors included) rolls back and
    propagates. Nothing is retried here.
    """

    def __init__(self, store: AccountStore, strategy: TransferStrategy):
        self.store = store
        self.strategy = strategy

    async def transfer_between(self, from_id: int, to_id: int, amount: Decimal) -> TransferResponse:
        return await self.transfer(TransferRequest(from_id=from_id, to_id=to_id, amount=amount))

    async def transfer(self, request: TransferRequest) -> TransferResponse:
        start_time = time.time()
        state = TransferState.IDLE
        scope = None
        outcome = None

        try:
            scope = await self.store.begin()
            state = TransferState.SCOPE_OPEN

            outcome = await self.strategy.apply(scope, request)
            if outcome.result is not TransferResult.SUCCESS:
                state = TransferState.FAILED
                await scope.rollback()
                state = TransferState.ROLLED_BACK
                return self._respond(request, outcome, state, start_time)

            state = TransferState.STRATEGY_APPLIED
            await scope.commit()
            state = TransferState.COMMITTED
            return self._respond(request, outcome, state, start_time)

        except _TRANSIENT as e:
            logger.error("%s transfer %s -> %s failed in state %s: %r",
                         self.strategy.name, request.from_id, request.to_id, state.value, e)
            await self._rollback(scope)
            return self._respond(
                request, TransferOutcome(result=_result_for(e)), TransferState.ROLLED_BACK, start_time,
                detail=str(e)
            )
        except BaseException:
            await self._rollback(scope)
            raise

    @staticmethod
    async def _rollback(scope):
        if scope is None:
            return
        try:
            await scope.rollback()
        except StoreError as e:
            logger.error("rollback failed: %r", e)

    def _respond(self, request: TransferRequest, outcome: TransferOutcome, state: TransferState,
                 start_time: float, detail: str = "") -> TransferResponse:
        result = outcome.result
        message = MESSAGES[result] + (f": {detail}" if detail else "")
        if result is TransferResult.SUCCESS:
            logger.info("%s transfer %s -> %s of %s committed",
                        self.strategy.name, request.from_id, request.to_id, request.amount)
        elif result.retryable:
            logger.warning("%s transfer %s -> %s of %s rolled back: %s",
                           self.strategy.name, request.from_id, request.to_id, request.amount, result.value)
        else:
            logger.info("%s transfer %s -> %s of %s rejected: %s",
                        self.strategy.name, request.from_id, request.to_id, request.amount, result.value)

        return TransferResponse(
            result=result,
            success=result is TransferResult.SUCCESS,
            message=message,
            state=state,
            strategy=self.strategy.name,
            from_balance=outcome.from_balance,
            to_balance=outcome.to_balance,
            from_version=outcome.from_version,
            to_version=outcome.to_version,
            execution_time=time.time() - start_time
        )
