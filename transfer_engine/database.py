import functools
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import asyncpg

from .errors import ConcurrentModification, LockTimeout, StoreError, StoreUnavailable
from .models import Account
from .store import AccountStore, Scope

logger = logging.getLogger(__name__)

ACCOUNT_COLUMNS = "id, name, balance, version"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        balance NUMERIC(19, 4) NOT NULL DEFAULT 0 CHECK (balance >= 0),
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

# debit only when funds suffice, credit only when the debit touched a row
ATOMIC_TRANSFER_SQL = """
    WITH withdrawal AS (
        UPDATE accounts
           SET balance = balance - $1, version = version + 1, updated_at = CURRENT_TIMESTAMP
         WHERE id = $2 AND balance >= $1
     RETURNING id
    ), deposit AS (
        UPDATE accounts
           SET balance = balance + $1, version = version + 1, updated_at = CURRENT_TIMESTAMP
         WHERE id = $3 AND EXISTS (SELECT 1 FROM withdrawal)
     RETURNING id
    )
    SELECT (SELECT count(*) FROM withdrawal) AS debited,
           (SELECT count(*) FROM deposit) AS credited
"""

_UNAVAILABLE = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    ConnectionError,
    OSError,
)


@asynccontextmanager
async def translate_errors():
    """Map transient asyncpg failures onto the store error hierarchy.

    Data and constraint errors (numeric overflow, CHECK violations) are left
    as they are: re-issuing the same statement cannot succeed.
    """
    try:
        yield
    except StoreError:
        raise
    except asyncpg.exceptions.LockNotAvailableError as e:
        raise LockTimeout(str(e)) from e
    except (asyncpg.exceptions.DeadlockDetectedError, asyncpg.exceptions.SerializationError) as e:
        raise ConcurrentModification(str(e)) from e
    except _UNAVAILABLE as e:
        raise StoreUnavailable(str(e)) from e


def _translated(method):
    @functools.wraps(method)
    async def wrapper(*args, **kwargs):
        async with translate_errors():
            return await method(*args, **kwargs)
    return wrapper


def _account(row) -> Account:
    return Account(id=row["id"], name=row["name"], balance=row["balance"], version=row["version"])


class Database:
    def __init__(self, db_url: str, min_size: int = 1, max_size: int = 10):
        self.db_url = db_url
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[asyncpg.Pool] = None
        self._initialized = False

    async def init_pool(self):
        """Create the connection pool"""
        if self.pool is None:
            async with translate_errors():
                self.pool = await asyncpg.create_pool(
                    self.db_url,
                    min_size=self.min_size,
                    max_size=self.max_size
                )

    async def close_pool(self):
        if self.pool:
            await self.pool.close()
            self.pool = None

    async def acquire(self) -> asyncpg.Connection:
        if not self.pool:
            await self.init_pool()
        async with translate_errors():
            return await self.pool.acquire()

    async def release(self, conn: asyncpg.Connection):
        await self.pool.release(conn)

    @asynccontextmanager
    async def get_connection(self):
        conn = await self.acquire()
        try:
            yield conn
        finally:
            await self.release(conn)

    async def initialize_db(self):
        """Create the accounts table once per process"""
        if self._initialized:
            return

        async with self.get_connection() as conn:
            async with translate_errors():
                await conn.execute(SCHEMA)

        self._initialized = True


class PostgresAccountStore(AccountStore):
    def __init__(self, database: Database, lock_timeout_ms: int = 0):
        self.database = database
        self.lock_timeout_ms = lock_timeout_ms

    async def begin(self) -> "PostgresScope":
        await self.database.initialize_db()
        conn = await self.database.acquire()
        transaction = conn.transaction()
        try:
            async with translate_errors():
                await transaction.start()
                if self.lock_timeout_ms:
                    # same as SET LOCAL lock_timeout
                    await conn.execute(
                        "SELECT set_config('lock_timeout', $1, true)", f"{self.lock_timeout_ms}ms"
                    )
        except BaseException:
            await self.database.release(conn)
            raise
        return PostgresScope(self.database, conn, transaction)

    @_translated
    async def reset(self, accounts: Iterable[Account]) -> List[Account]:
        await self.database.initialize_db()
        async with self.database.get_connection() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM accounts")
                await conn.executemany(
                    "INSERT INTO accounts (id, name, balance, version) VALUES ($1, $2, $3, 0)",
                    [(a.id, a.name, a.balance) for a in accounts]
                )
        return await self.list_accounts()

    @_translated
    async def list_accounts(self) -> List[Account]:
        await self.database.initialize_db()
        async with self.database.get_connection() as conn:
            rows = await conn.fetch(f"SELECT {ACCOUNT_COLUMNS} FROM accounts ORDER BY id")
        return [_account(row) for row in rows]

    async def close(self) -> None:
        await self.database.close_pool()


class PostgresScope(Scope):
    def __init__(self, database: Database, conn: asyncpg.Connection, transaction):
        self.database = database
        self.conn = conn
        self.transaction = transaction
        self.closed = False

    def _check_open(self):
        if self.closed:
            raise StoreError("scope already closed")

    @_translated
    async def read(self, account_id: int) -> Optional[Account]:
        self._check_open()
        row = await self.conn.fetchrow(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = $1", account_id
        )
        return _account(row) if row else None

    @_translated
    async def read_for_update(self, account_ids: Sequence[int]) -> Dict[int, Account]:
        self._check_open()
        locked = {}
        # one statement per row so the holds are taken in exactly the caller's order
        for account_id in account_ids:
            row = await self.conn.fetchrow(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = $1 FOR NO KEY UPDATE",
                account_id
            )
            if row:
                locked[account_id] = _account(row)
        return locked

    @_translated
    async def conditional_write(self, account_id: int, new_balance: Decimal, expected_version: int) -> bool:
        self._check_open()
        status = await self.conn.execute(
            "UPDATE accounts SET balance = $1, version = version + 1, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = $2 AND version = $3",
            new_balance, account_id, expected_version
        )
        return status != "UPDATE 0"

    @_translated
    async def unconditional_delta(self, account_id: int, delta: Decimal) -> None:
        self._check_open()
        status = await self.conn.execute(
            "UPDATE accounts SET balance = balance + $1, version = version + 1, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = $2",
            delta, account_id
        )
        if status == "UPDATE 0":
            raise StoreError(f"account {account_id} disappeared during the transfer")

    @_translated
    async def atomic_transfer(self, from_id: int, to_id: int, amount: Decimal) -> Tuple[int, int]:
        self._check_open()
        row = await self.conn.fetchrow(ATOMIC_TRANSFER_SQL, amount, from_id, to_id)
        return row["debited"], row["credited"]

    async def commit(self) -> None:
        self._check_open()
        try:
            async with translate_errors():
                await self.transaction.commit()
        finally:
            await self._close()

    async def rollback(self) -> None:
        if self.closed:
            return
        try:
            await self.transaction.rollback()
        except (asyncpg.exceptions.PostgresError, *_UNAVAILABLE) as e:
            # the server drops the transaction with the connection anyway
            logger.warning("rollback failed, discarding connection: %s", e)
            self.conn.terminate()
        finally:
            await self._close()

    async def _close(self):
        if not self.closed:
            self.closed = True
            await self.database.release(self.conn)
