from decimal import Decimal

ALICE = 1
BOB = 2


async def balances(store):
    return {a.id: a.balance for a in await store.list_accounts()}


async def versions(store):
    return {a.id: a.version for a in await store.list_accounts()}


def money(value: str) -> Decimal:
    return Decimal(value)
