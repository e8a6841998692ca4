"""
Pytest fixtures for the transfer ledger.

Every test gets a fresh in-memory store seeded with the two demo accounts
(Alice: 500.00, Bob: 500.00).
"""
import pytest
import pytest_asyncio

from transfer_engine.config import Settings
from transfer_engine.coordinator import TransferCoordinator
from transfer_engine.memory import InMemoryAccountStore
from transfer_engine.scenarios.registry import STRATEGIES, get_strategy


@pytest.fixture
def seed_accounts():
    return Settings().seed_accounts


@pytest_asyncio.fixture
async def store(seed_accounts):
    store = InMemoryAccountStore()
    await store.reset(seed_accounts)
    return store


@pytest.fixture(params=sorted(STRATEGIES))
def strategy_name(request):
    return request.param


@pytest.fixture
def coordinator(store, strategy_name):
    return TransferCoordinator(store, get_strategy(strategy_name))
