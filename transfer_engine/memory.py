import asyncio
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ConcurrentModification, LockTimeout, StoreError
from .models import Account
from .store import AccountStore, Scope

logger = logging.getLogger(__name__)


class _Row:
    def __init__(self, account: Account):
        self.account = account
        self.lock = asyncio.Lock()


class InMemoryAccountStore(AccountStore):
    """Process-local account table with row locks and buffered writes.

    Mirrors what the PostgreSQL store relies on: plain reads see committed
    data, writes take a row lock that is held until the scope ends, and a
    waiter that would close a cycle of lock waits is aborted the way the
    database deadlock detector does it.
    """

    def __init__(self, lock_timeout: Optional[float] = None, latency: float = 0.0):
        self.lock_timeout = lock_timeout
        self.latency = latency
        self._rows: Dict[int, _Row] = {}
        self._owners: Dict[int, "InMemoryScope"] = {}
        self._waiting: Dict["InMemoryScope", int] = {}

    async def begin(self) -> "InMemoryScope":
        await self._io()
        return InMemoryScope(self)

    async def reset(self, accounts: Iterable[Account]) -> List[Account]:
        if self._owners:
            raise StoreError("cannot reset while transfers hold row locks")
        self._rows = {}
        for account in accounts:
            self._rows[account.id] = _Row(account.model_copy(update={"version": 0}))
        return await self.list_accounts()

    async def list_accounts(self) -> List[Account]:
        return [self._rows[account_id].account for account_id in sorted(self._rows)]

    async def _io(self):
        # always yield so concurrent transfers interleave between statements
        await asyncio.sleep(self.latency)

    async def _acquire(self, scope: "InMemoryScope", account_id: int):
        row = self._rows[account_id]
        if self._owners.get(account_id) is scope:
            return

        # walk the wait-for chain from the current holder
        holder = self._owners.get(account_id)
        while holder is not None:
            if holder is scope:
                logger.warning("deadlock detected waiting for account %s", account_id)
                raise ConcurrentModification(f"deadlock detected on account {account_id}")
            waited = self._waiting.get(holder)
            holder = self._owners.get(waited) if waited is not None else None

        self._waiting[scope] = account_id
        try:
            await asyncio.wait_for(row.lock.acquire(), self.lock_timeout)
        except asyncio.TimeoutError:
            raise LockTimeout(f"lock wait on account {account_id} exceeded {self.lock_timeout}s")
        finally:
            self._waiting.pop(scope, None)
        self._owners[account_id] = scope
        scope.held.append(account_id)

    def _release(self, scope: "InMemoryScope"):
        for account_id in scope.held:
            if self._owners.get(account_id) is scope:
                del self._owners[account_id]
                self._rows[account_id].lock.release()
        scope.held = []


class InMemoryScope(Scope):
    def __init__(self, store: InMemoryAccountStore):
        self.store = store
        self.held: List[int] = []
        self.pending: Dict[int, Account] = {}
        self.closed = False

    def _check_open(self):
        if self.closed:
            raise StoreError("scope already closed")

    def _current(self, account_id: int) -> Optional[Account]:
        if account_id in self.pending:
            return self.pending[account_id]
        row = self.store._rows.get(account_id)
        return row.account if row else None

    async def read(self, account_id: int) -> Optional[Account]:
        self._check_open()
        await self.store._io()
        return self._current(account_id)

    async def read_for_update(self, account_ids: Sequence[int]) -> Dict[int, Account]:
        self._check_open()
        locked = {}
        for account_id in account_ids:
            await self.store._io()
            if account_id not in self.store._rows:
                continue
            await self.store._acquire(self, account_id)
            locked[account_id] = self._current(account_id)
        return locked

    async def conditional_write(self, account_id: int, new_balance: Decimal, expected_version: int) -> bool:
        self._check_open()
        await self.store._io()
        if account_id not in self.store._rows:
            return False
        await self.store._acquire(self, account_id)
        current = self._current(account_id)
        if current.version != expected_version:
            return False
        self.pending[account_id] = current.model_copy(
            update={"balance": new_balance, "version": current.version + 1}
        )
        return True

    async def unconditional_delta(self, account_id: int, delta: Decimal) -> None:
        self._check_open()
        await self.store._io()
        if account_id not in self.store._rows:
            raise StoreError(f"account {account_id} disappeared during the transfer")
        await self.store._acquire(self, account_id)
        self._apply_delta(account_id, delta)

    async def atomic_transfer(self, from_id: int, to_id: int, amount: Decimal) -> Tuple[int, int]:
        self._check_open()
        await self.store._io()
        # a single statement locks the rows it touches before any other scope can step in
        for account_id in sorted({from_id, to_id}):
            if account_id in self.store._rows:
                await self.store._acquire(self, account_id)

        source = self._current(from_id)
        if source is None or source.balance < amount:
            return 0, 0
        self._apply_delta(from_id, -amount)
        if self._current(to_id) is None:
            return 1, 0
        self._apply_delta(to_id, amount)
        return 1, 1

    def _apply_delta(self, account_id: int, delta: Decimal):
        current = self._current(account_id)
        self.pending[account_id] = current.model_copy(
            update={"balance": current.balance + delta, "version": current.version + 1}
        )

    async def commit(self) -> None:
        self._check_open()
        await self.store._io()
        for account_id, account in self.pending.items():
            self.store._rows[account_id].account = account
        self._close()

    async def rollback(self) -> None:
        if self.closed:
            return
        self._close()

    def _close(self):
        self.pending = {}
        self.closed = True
        self.store._release(self)
