from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TransferResult(str, Enum):
    SUCCESS = "success"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ACCOUNT_NOT_FOUND = "account_not_found"
    CONCURRENT_CONFLICT = "concurrent_conflict"
    STORE_UNAVAILABLE = "store_unavailable"
    LOCK_TIMEOUT = "lock_timeout"

    @property
    def retryable(self) -> bool:
        """Re-issuing the same request may succeed"""
        return self in _RETRYABLE


_RETRYABLE = frozenset({
    TransferResult.CONCURRENT_CONFLICT,
    TransferResult.STORE_UNAVAILABLE,
    TransferResult.LOCK_TIMEOUT,
})


class TransferState(str, Enum):
    IDLE = "idle"
    SCOPE_OPEN = "scope_open"
    STRATEGY_APPLIED = "strategy_applied"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class Account(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    balance: Decimal
    version: int = 0


class TransferRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_id: int = 1
    to_id: int = 2
    amount: Decimal = Field(default=Decimal("100.00"), gt=0, max_digits=19, decimal_places=4)

    @model_validator(mode="after")
    def _two_parties(self):
        if self.from_id == self.to_id:
            raise ValueError("from_id and to_id must be different accounts")
        return self


class TransferOutcome(BaseModel):
    """What a strategy observed or wrote inside its scope"""
    result: TransferResult
    from_balance: Optional[Decimal] = None
    to_balance: Optional[Decimal] = None
    from_version: Optional[int] = None
    to_version: Optional[int] = None


class TransferResponse(BaseModel):
    result: TransferResult
    success: bool
    message: str
    state: TransferState
    strategy: str
    from_balance: Optional[Decimal] = None
    to_balance: Optional[Decimal] = None
    from_version: Optional[int] = None  # optimistic: version after the write
    to_version: Optional[int] = None
    execution_time: Optional[float] = None
