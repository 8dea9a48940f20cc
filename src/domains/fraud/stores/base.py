"""Store interfaces the detection pipeline depends on.

The rules engine only needs read access to transaction history; the
dispatcher needs to append fraud-log entries; analytics needs read-only
rollups over both. Concrete backends live in ``sql`` and ``memory``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from ..models import (
    AnomalyReason,
    FraudLogEntry,
    RiskDistribution,
    SharedDevice,
    Transaction,
)


class TransactionStore(ABC):
    """Historical context queries over committed transactions.

    Every query takes ``exclude_id`` so the transaction under evaluation is
    never counted as its own history, whether or not its insert is visible yet.
    Time ranges are inclusive on both ends.
    """

    @abstractmethod
    async def average_amount(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> Decimal | None:
        ...

    @abstractmethod
    async def count_for_user(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> int:
        ...

    @abstractmethod
    async def sum_amount(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> Decimal:
        ...

    @abstractmethod
    async def count_in_amount_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        low: Decimal,
        high: Decimal,
        exclude_id: str,
    ) -> int:
        """Count transactions with ``low <= amount < high``."""
        ...

    @abstractmethod
    async def last_before(
        self, user_id: str, at: datetime, exclude_id: str
    ) -> Transaction | None:
        """Most recent transaction at or before ``at``."""
        ...

    @abstractmethod
    async def users_on_device(
        self, device_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> set[str]:
        ...

    @abstractmethod
    async def shared_devices(
        self, since: datetime, min_users: int, limit: int
    ) -> list[SharedDevice]:
        """Devices used by more than ``min_users`` distinct users since ``since``."""
        ...


class FraudLogStore(ABC):
    def __init__(self, detection_version: str) -> None:
        self.detection_version = detection_version

    def build_entry(
        self, transaction: Transaction, reasons: list[AnomalyReason], score: int
    ) -> FraudLogEntry:
        if not reasons:
            raise ValueError("fraud log entries require at least one anomaly reason")
        return FraudLogEntry(
            transaction_id=transaction.transaction_id,
            user_id=transaction.user_id,
            timestamp=transaction.timestamp,
            risk_score=score,
            reason=list(reasons),
            detection_version=self.detection_version,
        )

    @abstractmethod
    async def record(
        self, transaction: Transaction, reasons: list[AnomalyReason], score: int
    ) -> FraudLogEntry | None:
        """Persist a flagged evaluation. Returns None if the transaction was already logged."""
        ...

    @abstractmethod
    async def purge(self) -> int:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def risk_distribution(self) -> RiskDistribution:
        ...

    @abstractmethod
    async def pattern_counts(self) -> dict[str, int]:
        ...

    @abstractmethod
    async def high_risk_since(
        self, since: datetime, min_score: int, limit: int
    ) -> list[FraudLogEntry]:
        ...

    @abstractmethod
    async def hourly_counts(self, since: datetime) -> dict[int, int]:
        """Entry counts keyed by UTC hour-of-day."""
        ...

    @abstractmethod
    async def latest_with_code(self, code: str, limit: int) -> list[FraudLogEntry]:
        ...
