"""PostgreSQL-backed stores (async SQLAlchemy).

Each query opens its own session so the enhanced rules can run
concurrently; the engine's pool size caps how many run at once.
"""

from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from sqlalchemy import case, cast, column, delete, func, literal_column, select, true
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import FraudLogRow, TransactionRow

from ..errors import PersistenceError
from ..models import (
    AnomalyReason,
    FraudLogEntry,
    RiskDistribution,
    SharedDevice,
    Transaction,
)
from ..scorer import RISK_BUCKETS
from .base import FraudLogStore, TransactionStore

logger = structlog.get_logger()

EntryPublisher = Callable[[FraudLogEntry], Awaitable[None]]


class SqlTransactionStore(TransactionStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _user_window(user_id: str, start: datetime, end: datetime, exclude_id: str) -> tuple:
        return (
            TransactionRow.user_id == user_id,
            TransactionRow.timestamp >= start,
            TransactionRow.timestamp <= end,
            TransactionRow.transaction_id != exclude_id,
        )

    async def _scalar(self, stmt):
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def average_amount(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> Decimal | None:
        stmt = select(func.avg(TransactionRow.amount)).where(
            *self._user_window(user_id, start, end, exclude_id)
        )
        return await self._scalar(stmt)

    async def count_for_user(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> int:
        stmt = select(func.count()).where(*self._user_window(user_id, start, end, exclude_id))
        return await self._scalar(stmt)

    async def sum_amount(
        self, user_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(TransactionRow.amount), 0)).where(
            *self._user_window(user_id, start, end, exclude_id)
        )
        return await self._scalar(stmt)

    async def count_in_amount_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        low: Decimal,
        high: Decimal,
        exclude_id: str,
    ) -> int:
        stmt = select(func.count()).where(
            *self._user_window(user_id, start, end, exclude_id),
            TransactionRow.amount >= low,
            TransactionRow.amount < high,
        )
        return await self._scalar(stmt)

    async def last_before(
        self, user_id: str, at: datetime, exclude_id: str
    ) -> Transaction | None:
        stmt = (
            select(TransactionRow)
            .where(
                TransactionRow.user_id == user_id,
                TransactionRow.timestamp <= at,
                TransactionRow.transaction_id != exclude_id,
            )
            .order_by(TransactionRow.timestamp.desc(), TransactionRow.id.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
        return Transaction.model_validate(row) if row else None

    async def users_on_device(
        self, device_id: str, start: datetime, end: datetime, exclude_id: str
    ) -> set[str]:
        stmt = (
            select(TransactionRow.user_id)
            .distinct()
            .where(
                TransactionRow.device_id == device_id,
                TransactionRow.timestamp >= start,
                TransactionRow.timestamp <= end,
                TransactionRow.transaction_id != exclude_id,
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return set(result.scalars().all())

    async def shared_devices(
        self, since: datetime, min_users: int, limit: int
    ) -> list[SharedDevice]:
        user_count = func.count(func.distinct(TransactionRow.user_id))
        stmt = (
            select(
                TransactionRow.device_id,
                user_count.label("user_count"),
                func.count().label("transaction_count"),
            )
            .where(TransactionRow.timestamp >= since, TransactionRow.device_id.is_not(None))
            .group_by(TransactionRow.device_id)
            .having(user_count > min_users)
            .order_by(user_count.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()
        return [
            SharedDevice(
                device_id=row.device_id,
                user_count=row.user_count,
                transaction_count=row.transaction_count,
            )
            for row in rows
        ]


def _row_to_entry(row: FraudLogRow) -> FraudLogEntry:
    return FraudLogEntry(
        transaction_id=row.transaction_id,
        user_id=row.user_id,
        timestamp=row.timestamp,
        anomaly_detected=row.anomaly_detected,
        risk_score=row.risk_score,
        reason=[AnomalyReason(**r) for r in row.reason or []],
        detection_version=row.detection_version,
        created_at=row.created_at or datetime.now(UTC),
    )


class SqlFraudLogStore(FraudLogStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        detection_version: str,
        publisher: EntryPublisher | None = None,
    ) -> None:
        super().__init__(detection_version)
        self._session_factory = session_factory
        self._publisher = publisher

    async def record(
        self, transaction: Transaction, reasons: list[AnomalyReason], score: int
    ) -> FraudLogEntry | None:
        entry = self.build_entry(transaction, reasons, score)
        row = FraudLogRow(
            transaction_id=entry.transaction_id,
            user_id=entry.user_id,
            timestamp=entry.timestamp,
            anomaly_detected=True,
            risk_score=entry.risk_score,
            reason=[r.model_dump() for r in entry.reason],
            detection_version=entry.detection_version,
            created_at=entry.created_at,
        )

        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # Redelivered insert event, already flagged
                logger.info("duplicate_fraud_log_skipped", transaction_id=entry.transaction_id)
                return None
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception(
                    "fraud_log_persist_failed", transaction_id=entry.transaction_id
                )
                raise PersistenceError(
                    f"could not record fraud log for {entry.transaction_id}"
                ) from exc

        logger.warning(
            "fraud_log_recorded",
            transaction_id=entry.transaction_id,
            user_id=entry.user_id,
            risk_score=entry.risk_score,
            reasons=entry.codes(),
        )

        if self._publisher:
            await self._publisher(entry)
        return entry

    async def purge(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(FraudLogRow))
            await session.commit()
        deleted = result.rowcount or 0
        logger.warning("fraud_logs_purged", deleted=deleted)
        return deleted

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(FraudLogRow))
            return result.scalar_one()

    async def risk_distribution(self) -> RiskDistribution:
        columns = [
            func.coalesce(
                func.sum(
                    case(
                        (FraudLogRow.risk_score.between(low, high), 1),
                        else_=0,
                    )
                ),
                0,
            ).label(name)
            for name, low, high in RISK_BUCKETS
        ]
        async with self._session_factory() as session:
            result = await session.execute(select(*columns))
            row = result.one()
        return RiskDistribution(**{name: int(getattr(row, name)) for name, _, _ in RISK_BUCKETS})

    async def pattern_counts(self) -> dict[str, int]:
        reasons = (
            func.jsonb_array_elements(cast(FraudLogRow.reason, JSONB))
            .table_valued(column("value", JSONB))
            .lateral("reason_item")
        )
        code = reasons.c.value["code"].astext
        occurrences = func.count()
        stmt = (
            select(code.label("code"), occurrences.label("occurrences"))
            .select_from(FraudLogRow)
            .join(reasons, true())
            # By output name: the JSON key is a bind param and would not match twice
            .group_by(literal_column("code"))
            .order_by(occurrences.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()
        return {row.code: row.occurrences for row in rows}

    async def high_risk_since(
        self, since: datetime, min_score: int, limit: int
    ) -> list[FraudLogEntry]:
        stmt = (
            select(FraudLogRow)
            .where(FraudLogRow.timestamp >= since, FraudLogRow.risk_score >= min_score)
            .order_by(FraudLogRow.timestamp.desc())
            .limit(limit)
        )
        return await self._entries(stmt)

    async def hourly_counts(self, since: datetime) -> dict[int, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FraudLogRow.timestamp).where(FraudLogRow.timestamp >= since)
            )
            timestamps = result.scalars().all()
        return dict(Counter(ts.astimezone(UTC).hour for ts in timestamps))

    async def latest_with_code(self, code: str, limit: int) -> list[FraudLogEntry]:
        stmt = (
            select(FraudLogRow)
            .where(cast(FraudLogRow.reason, JSONB).contains([{"code": code}]))
            .order_by(FraudLogRow.timestamp.desc())
            .limit(limit)
        )
        return await self._entries(stmt)

    async def _entries(self, stmt) -> list[FraudLogEntry]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_row_to_entry(row) for row in rows]
