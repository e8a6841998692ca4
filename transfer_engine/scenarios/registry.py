from typing import Dict, Type

from .atomic import AtomicStatementTransfer
from .base import TransferStrategy
from .optimistic import OptimisticLockTransfer
from .pessimistic import PessimisticLockTransfer

STRATEGIES: Dict[str, Type[TransferStrategy]] = {
    OptimisticLockTransfer.name: OptimisticLockTransfer,
    PessimisticLockTransfer.name: PessimisticLockTransfer,
    AtomicStatementTransfer.name: AtomicStatementTransfer,
}


def get_strategy(name: str) -> TransferStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"unknown transfer strategy {name!r}, expected one of {sorted(STRATEGIES)}") from None
