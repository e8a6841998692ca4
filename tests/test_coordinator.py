from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from helpers import ALICE, BOB, balances, money
from transfer_engine.coordinator import TransferCoordinator
from transfer_engine.errors import ConcurrentModification, LockTimeout, StoreError, StoreUnavailable
from transfer_engine.models import Account, TransferOutcome, TransferResult, TransferState
from transfer_engine.scenarios.atomic import AtomicStatementTransfer
from transfer_engine.scenarios.base import TransferStrategy
from transfer_engine.store import AccountStore, Scope


@pytest.fixture
def scope():
    scope = MagicMock(spec=Scope)
    scope.commit = AsyncMock()
    scope.rollback = AsyncMock()
    return scope


@pytest.fixture
def mock_store(scope):
    store = MagicMock(spec=AccountStore)
    store.begin = AsyncMock(return_value=scope)
    return store


@pytest.fixture
def strategy():
    strategy = MagicMock(spec=TransferStrategy)
    strategy.name = "mock"
    strategy.apply = AsyncMock()
    return strategy


@pytest.mark.asyncio
class TestTransferCoordinator:

    async def test_success_commits(self, mock_store, scope, strategy):
        strategy.apply.return_value = TransferOutcome(result=TransferResult.SUCCESS)

        response = await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        assert response.success
        assert response.state is TransferState.COMMITTED
        assert response.strategy == "mock"
        scope.commit.assert_awaited_once()
        scope.rollback.assert_not_awaited()

    @pytest.mark.parametrize("result", [
        TransferResult.INSUFFICIENT_FUNDS,
        TransferResult.ACCOUNT_NOT_FOUND,
        TransferResult.CONCURRENT_CONFLICT,
    ])
    async def test_business_failure_rolls_back(self, mock_store, scope, strategy, result):
        strategy.apply.return_value = TransferOutcome(result=result)

        response = await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        assert response.result is result
        assert response.state is TransferState.ROLLED_BACK
        scope.rollback.assert_awaited_once()
        scope.commit.assert_not_awaited()

    @pytest.mark.parametrize("error,result", [
        (StoreUnavailable("connection reset"), TransferResult.STORE_UNAVAILABLE),
        (LockTimeout("lock wait"), TransferResult.LOCK_TIMEOUT),
        (ConcurrentModification("deadlock detected"), TransferResult.CONCURRENT_CONFLICT),
    ])
    async def test_store_errors_become_results(self, mock_store, scope, strategy, error, result):
        strategy.apply.side_effect = error

        response = await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        assert response.result is result
        assert response.result.retryable
        assert response.state is TransferState.ROLLED_BACK
        assert str(error) in response.message
        scope.rollback.assert_awaited_once()

    async def test_begin_failure(self, mock_store, strategy):
        mock_store.begin.side_effect = StoreUnavailable("no route to host")

        response = await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        assert response.result is TransferResult.STORE_UNAVAILABLE
        strategy.apply.assert_not_awaited()

    async def test_commit_failure_rolls_back(self, mock_store, scope, strategy):
        strategy.apply.return_value = TransferOutcome(result=TransferResult.SUCCESS)
        scope.commit.side_effect = ConcurrentModification("could not serialize access")

        response = await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        assert response.result is TransferResult.CONCURRENT_CONFLICT
        scope.rollback.assert_awaited_once()

    async def test_unexpected_error_rolls_back_and_propagates(self, mock_store, scope, strategy):
        strategy.apply.side_effect = ZeroDivisionError()

        with pytest.raises(ZeroDivisionError):
            await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        scope.rollback.assert_awaited_once()

    @pytest.mark.parametrize("error", [
        asyncpg.exceptions.NumericValueOutOfRangeError("numeric field overflow"),
        asyncpg.exceptions.CheckViolationError("violates check constraint \"accounts_balance_check\""),
        StoreError("scope already closed"),
    ])
    async def test_deterministic_errors_are_not_reported_as_retryable(self, mock_store, scope, strategy, error):
        strategy.apply.side_effect = error

        with pytest.raises(type(error)):
            await TransferCoordinator(mock_store, strategy).transfer_between(ALICE, BOB, money("1"))

        scope.rollback.assert_awaited_once()
        scope.commit.assert_not_awaited()

    async def test_atomic_chain_without_rows_despite_funds_is_a_conflict(self, mock_store, scope):
        scope.atomic_transfer = AsyncMock(return_value=(0, 0))
        scope.read = AsyncMock(side_effect=[
            Account(id=ALICE, name="Alice", balance=money("500.00"), version=3),
            Account(id=BOB, name="Bob", balance=money("500.00"), version=3),
        ])

        response = await TransferCoordinator(mock_store, AtomicStatementTransfer()).transfer_between(
            ALICE, BOB, money("100.00")
        )

        assert response.result is TransferResult.CONCURRENT_CONFLICT
        assert response.result.retryable
        assert response.state is TransferState.ROLLED_BACK
        scope.rollback.assert_awaited_once()
        scope.commit.assert_not_awaited()


class ExplodingAfterDebit(TransferStrategy):
    name = "exploding"
    technique = description = "test"

    async def apply(self, scope, request):
        await scope.unconditional_delta(request.from_id, -request.amount)
        raise StoreUnavailable("connection dropped mid-transfer")


@pytest.mark.asyncio
async def test_half_applied_transfer_is_never_visible(store):
    response = await TransferCoordinator(store, ExplodingAfterDebit()).transfer_between(ALICE, BOB, money("100"))

    assert response.result is TransferResult.STORE_UNAVAILABLE
    assert await balances(store) == {ALICE: money("500.00"), BOB: money("500.00")}
    # holds are released by the rollback
    scope = await store.begin()
    assert set(await scope.read_for_update([ALICE, BOB])) == {ALICE, BOB}
    await scope.rollback()
