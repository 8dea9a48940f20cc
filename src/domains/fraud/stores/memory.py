"""In-process stores for single-process runs and tests."""

from collections import Counter, defaultdict
from datetime import UTC, datetime
from decimal import Decimal

import structlog

from src.consumers.base import QueueChangeFeed

from ..models import (
    AnomalyReason,
    FraudLogEntry,
    RiskDistribution,
    SharedDevice,
    Transaction,
)
from ..scorer import risk_bucket
from .base import FraudLogStore, TransactionStore

logger = structlog.get_logger()


class InMemoryTransactionStore(TransactionStore):
    def __init__(self) -> None:
        self._transactions: dict[str, Transaction] = {}
        self._feeds: list[QueueChangeFeed] = []

    def watch(self) -> QueueChangeFeed:
        feed = QueueChangeFeed("memory.transactions")
        self._feeds.append(feed)
        return feed

    async def insert(self, transaction: Transaction) -> None:
        if transaction.transaction_id in self._transactions:
            raise ValueError(f"duplicate transaction_id: {transaction.transaction_id}")
        self._transactions[transaction.transaction_id] = transaction
        document = transaction.model_dump(mode="json")
        for feed in self._feeds:
            feed.push(document)

    def _history(self, start: datetime, end: datetime, exclude_id: str, **match):
        for txn in self._transactions.values():
            if txn.transaction_id == exclude_id:
                continue
            if not (start <= txn.timestamp <= end):
                continue
            if all(getattr(txn, k) == v for k, v in match.items()):
                yield txn

    async def average_amount(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> Decimal | None:
        amounts = [t.amount for t in self._history(start, end, exclude_id, user_id=user_id)]
        if not amounts:
            return None
        return sum(amounts, Decimal(0)) / len(amounts)

    async def count_for_user(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> int:
        return sum(1 for _ in self._history(start, end, exclude_id, user_id=user_id))

    async def sum_amount(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> Decimal:
        return sum(
            (t.amount for t in self._history(start, end, exclude_id, user_id=user_id)),
            Decimal(0),
        )

    async def count_in_amount_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        low: Decimal,
        high: Decimal,
        exclude_id: str,
    ) -> int:
        return sum(
            1
            for t in self._history(start, end, exclude_id, user_id=user_id)
            if low <= t.amount < high
        )

    async def last_before(
        self, user_id: str, at: datetime, exclude_id: str
    ) -> Transaction | None:
        # Newest insert first so ties on timestamp go to the latest row, as in SQL
        candidates = [
            t
            for t in reversed(self._transactions.values())
            if t.user_id == user_id and t.transaction_id != exclude_id and t.timestamp <= at
        ]
        return max(candidates, key=lambda t: t.timestamp, default=None)

    async def users_on_device(
        self, device_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> set[str]:
        return {t.user_id for t in self._history(start, end, exclude_id, device_id=device_id)}

    async def shared_devices(
        self, since: datetime, min_users: int, limit: int
    ) -> list[SharedDevice]:
        users: dict[str, set[str]] = defaultdict(set)
        counts: Counter[str] = Counter()
        for txn in self._transactions.values():
            if txn.device_id is None or txn.timestamp < since:
                continue
            users[txn.device_id].add(txn.user_id)
            counts[txn.device_id] += 1

        devices = [
            SharedDevice(
                device_id=device_id,
                user_count=len(user_ids),
                transaction_count=counts[device_id],
            )
            for device_id, user_ids in users.items()
            if len(user_ids) > min_users
        ]
        devices.sort(key=lambda d: d.user_count, reverse=True)
        return devices[:limit]


class InMemoryFraudLogStore(FraudLogStore):
    def __init__(self, detection_version: str) -> None:
        super().__init__(detection_version)
        self._entries: list[FraudLogEntry] = []
        self._feeds: list[QueueChangeFeed] = []

    def watch(self) -> QueueChangeFeed:
        feed = QueueChangeFeed("memory.fraud_logs")
        self._feeds.append(feed)
        return feed

    @property
    def entries(self) -> list[FraudLogEntry]:
        return list(self._entries)

    async def record(
        self, transaction: Transaction, reasons: list[AnomalyReason], score: int
    ) -> FraudLogEntry | None:
        entry = self.build_entry(transaction, reasons, score)
        if any(e.transaction_id == entry.transaction_id for e in self._entries):
            logger.info("duplicate_fraud_log_skipped", transaction_id=entry.transaction_id)
            return None

        self._entries.append(entry)
        document = entry.model_dump(mode="json")
        for feed in self._feeds:
            feed.push(document)
        return entry

    async def purge(self) -> int:
        deleted = len(self._entries)
        self._entries.clear()
        return deleted

    async def count(self) -> int:
        return len(self._entries)

    async def risk_distribution(self) -> RiskDistribution:
        counts = Counter(risk_bucket(e.risk_score) for e in self._entries)
        return RiskDistribution(**counts)

    async def pattern_counts(self) -> dict[str, int]:
        counts = Counter(code for e in self._entries for code in e.codes())
        return dict(counts.most_common())

    async def high_risk_since(
        self, since: datetime, min_score: int, limit: int
    ) -> list[FraudLogEntry]:
        matches = [e for e in self._entries if e.timestamp >= since and e.risk_score >= min_score]
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches[:limit]

    async def hourly_counts(self, since: datetime) -> dict[int, int]:
        hours = [e.timestamp.astimezone(UTC).hour for e in self._entries if e.timestamp >= since]
        return dict(Counter(hours))

    async def latest_with_code(self, code: str, limit: int) -> list[FraudLogEntry]:
        matches = [e for e in self._entries if code in e.codes()]
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches[:limit]
