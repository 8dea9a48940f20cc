"""Abstract base class for anomaly rules."""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from ..config import FraudConfig
from ..models import AnomalyCode, AnomalyReason, Transaction
from ..stores.base import TransactionStore


def to_decimal(value: float | int | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


class FraudRule(ABC):
    """Base class for all anomaly rules.

    A rule inspects one transaction, optionally querying the transaction
    store for history, and yields at most one reason.
    """

    code: AnomalyCode
    tier: str  # "basic" | "enhanced"

    @abstractmethod
    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        """Return a reason if the rule fires, otherwise None."""
        ...

    def _reason(self, message: str) -> AnomalyReason:
        return AnomalyReason(code=self.code, message=message)
