from abc import ABC, abstractmethod
from typing import ClassVar, List

from ..models import TransferOutcome, TransferRequest
from ..store import Scope


class TransferStrategy(ABC):
    """Moves funds between two accounts inside a scope opened by the coordinator.

    A strategy never commits or rolls back; it only reports what happened.
    Anything other than ``SUCCESS`` makes the coordinator discard every write
    the strategy made.
    """

    name: ClassVar[str]
    technique: ClassVar[str]
    description: ClassVar[str]
    pros: ClassVar[List[str]] = []
    cons: ClassVar[List[str]] = []

    @abstractmethod
    async def apply(self, scope: Scope, request: TransferRequest) -> TransferOutcome:
        ...

    def info(self) -> dict:
        return {
            "method": self.name,
            "technique": self.technique,
            "description": self.description,
            "pros": list(self.pros),
            "cons": list(self.cons),
        }
