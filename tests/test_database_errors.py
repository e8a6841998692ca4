import asyncpg
import pytest

from transfer_engine.database import translate_errors
from transfer_engine.errors import ConcurrentModification, LockTimeout, StoreError, StoreUnavailable


@pytest.mark.asyncio
class TestTranslateErrors:

    @pytest.mark.parametrize("error,translated", [
        (asyncpg.exceptions.LockNotAvailableError("canceling statement due to lock timeout"), LockTimeout),
        (asyncpg.exceptions.DeadlockDetectedError("deadlock detected"), ConcurrentModification),
        (asyncpg.exceptions.SerializationError("could not serialize access"), ConcurrentModification),
        (asyncpg.exceptions.PostgresConnectionError("connection reset"), StoreUnavailable),
        (ConnectionResetError("connection reset by peer"), StoreUnavailable),
    ])
    async def test_transient_errors_are_translated(self, error, translated):
        with pytest.raises(translated) as exc_info:
            async with translate_errors():
                raise error

        assert exc_info.value.__cause__ is error

    @pytest.mark.parametrize("error", [
        asyncpg.exceptions.NumericValueOutOfRangeError("numeric field overflow"),
        asyncpg.exceptions.CheckViolationError("violates check constraint \"accounts_balance_check\""),
    ])
    async def test_data_errors_pass_through(self, error):
        with pytest.raises(type(error)) as exc_info:
            async with translate_errors():
                raise error

        assert exc_info.value is error
        assert not isinstance(exc_info.value, StoreError)

    async def test_store_errors_are_not_rewrapped(self):
        error = StoreError("account 2 disappeared during the transfer")

        with pytest.raises(StoreError) as exc_info:
            async with translate_errors():
                raise error

        assert exc_info.value is error
