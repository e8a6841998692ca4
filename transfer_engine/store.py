from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Account


class Scope(ABC):
    """One transactional scope against the account store.

    Writes made through a scope become visible to other scopes only at
    ``commit``. ``commit`` and ``rollback`` both release every row hold the
    scope acquired; afterwards the scope can no longer be used.
    """

    @abstractmethod
    async def read(self, account_id: int) -> Optional[Account]:
        """Plain read, no hold. ``None`` when the account does not exist."""

    @abstractmethod
    async def read_for_update(self, account_ids: Sequence[int]) -> Dict[int, Account]:
        """Acquire exclusive holds in exactly the given order and return the locked rows.

        Ids that do not exist are absent from the returned mapping.
        """

    @abstractmethod
    async def conditional_write(self, account_id: int, new_balance: Decimal, expected_version: int) -> bool:
        """Set the balance iff the row is still at ``expected_version``; bumps the version by 1"""

    @abstractmethod
    async def unconditional_delta(self, account_id: int, delta: Decimal) -> None:
        """Add ``delta`` to the balance (and bump the version) without a version check"""

    @abstractmethod
    async def atomic_transfer(self, from_id: int, to_id: int, amount: Decimal) -> Tuple[int, int]:
        """Conditional debit chained to a dependent credit as one atomic statement.

        Returns the number of rows touched by the debit and by the credit.
        """

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class AccountStore(ABC):
    @abstractmethod
    async def begin(self) -> Scope:
        ...

    # setup / reporting, not part of the transfer protocol

    @abstractmethod
    async def reset(self, accounts: Iterable[Account]) -> List[Account]:
        """Drop every account and insert ``accounts`` at version 0"""

    @abstractmethod
    async def list_accounts(self) -> List[Account]:
        ...

    async def close(self) -> None:
        pass
