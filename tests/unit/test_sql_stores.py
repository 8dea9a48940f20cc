"""Unit tests for the PostgreSQL stores against a mocked session."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from src.db.models import FraudLogRow, TransactionRow
from src.domains.fraud.errors import PersistenceError
from src.domains.fraud.stores.sql import SqlFraudLogStore, SqlTransactionStore
from tests.conftest import NOW, make_reason, make_transaction


def _mock_session():
    session = AsyncMock()
    session.__aenter__.return_value = session
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()

    mock_result = MagicMock()
    mock_result.scalar_one.return_value = 0
    mock_result.all.return_value = []
    mock_result.scalars.return_value = MagicMock(
        all=MagicMock(return_value=[]), first=MagicMock(return_value=None)
    )
    session.execute = AsyncMock(return_value=mock_result)
    return session


def _factory(session):
    return MagicMock(return_value=session)


def _executed_sql(session) -> str:
    return str(session.execute.await_args.args[0])


class TestSqlTransactionStore:
    @pytest.mark.asyncio
    async def test_average_excludes_current_transaction(self):
        session = _mock_session()
        session.execute.return_value.scalar_one.return_value = Decimal("1000.00")
        store = SqlTransactionStore(_factory(session))

        avg = await store.average_amount("user-1", NOW - timedelta(days=30), NOW, "txn-1")

        assert avg == Decimal("1000.00")
        sql = _executed_sql(session)
        assert "avg(transactions.amount)" in sql
        assert "transactions.transaction_id !=" in sql
        assert "transactions.timestamp <=" in sql

    @pytest.mark.asyncio
    async def test_count_in_amount_range_is_half_open(self):
        session = _mock_session()
        session.execute.return_value.scalar_one.return_value = 2
        store = SqlTransactionStore(_factory(session))

        count = await store.count_in_amount_range(
            "user-1", NOW - timedelta(hours=24), NOW, Decimal("9000"), Decimal("10000"), "txn-1"
        )

        assert count == 2
        sql = _executed_sql(session)
        assert "transactions.amount >=" in sql
        assert "transactions.amount <" in sql

    @pytest.mark.asyncio
    async def test_last_before_maps_row(self):
        session = _mock_session()
        row = TransactionRow(
            transaction_id="prev",
            user_id="user-1",
            timestamp=NOW - timedelta(hours=1),
            amount=Decimal("250.00"),
            payment_method="CARD",
            location="Delhi",
            device_id="device-2",
            ip_address="10.0.0.1",
            status="SUCCESS",
        )
        session.execute.return_value.scalars.return_value.first.return_value = row
        store = SqlTransactionStore(_factory(session))

        previous = await store.last_before("user-1", NOW, "txn-1")

        assert previous.transaction_id == "prev"
        assert previous.location == "Delhi"
        assert previous.amount == Decimal("250.00")
        assert "ORDER BY transactions.timestamp DESC" in _executed_sql(session)

    @pytest.mark.asyncio
    async def test_last_before_none(self):
        store = SqlTransactionStore(_factory(_mock_session()))
        assert await store.last_before("user-1", NOW, "txn-1") is None

    @pytest.mark.asyncio
    async def test_users_on_device_returns_set(self):
        session = _mock_session()
        session.execute.return_value.scalars.return_value.all.return_value = ["u1", "u2", "u1"]
        store = SqlTransactionStore(_factory(session))

        users = await store.users_on_device("device-1", NOW - timedelta(hours=24), NOW, "txn-1")

        assert users == {"u1", "u2"}

    @pytest.mark.asyncio
    async def test_shared_devices(self):
        session = _mock_session()
        session.execute.return_value.all.return_value = [
            SimpleNamespace(device_id="shared", user_count=4, transaction_count=9)
        ]
        store = SqlTransactionStore(_factory(session))

        devices = await store.shared_devices(NOW - timedelta(hours=24), 2, 10)

        assert devices[0].device_id == "shared"
        assert devices[0].user_count == 4
        assert "HAVING count(distinct(transactions.user_id)) >" in _executed_sql(session)


class TestSqlFraudLogStore:
    @pytest.mark.asyncio
    async def test_record_commits_and_publishes(self):
        session = _mock_session()
        publisher = AsyncMock()
        store = SqlFraudLogStore(_factory(session), "2.0", publisher=publisher)

        reasons = [make_reason("ODD_HOUR", "Transaction at 2:00")]
        entry = await store.record(make_transaction(), reasons, 15)

        assert entry.risk_score == 15
        row = session.add.call_args.args[0]
        assert isinstance(row, FraudLogRow)
        assert row.reason == [{"code": "ODD_HOUR", "message": "Transaction at 2:00"}]
        assert row.anomaly_detected is True
        session.commit.assert_awaited_once()
        publisher.assert_awaited_once_with(entry)

    @pytest.mark.asyncio
    async def test_duplicate_transaction_skipped(self):
        session = _mock_session()
        session.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))
        publisher = AsyncMock()
        store = SqlFraudLogStore(_factory(session), "2.0", publisher=publisher)

        assert await store.record(make_transaction(), [make_reason("ODD_HOUR")], 15) is None
        session.rollback.assert_awaited_once()
        publisher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_failure_raises_persistence_error(self):
        session = _mock_session()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))
        store = SqlFraudLogStore(_factory(session), "2.0")

        with pytest.raises(PersistenceError):
            await store.record(make_transaction(), [make_reason("ODD_HOUR")], 15)

    @pytest.mark.asyncio
    async def test_purge_returns_rowcount(self):
        session = _mock_session()
        session.execute.return_value.rowcount = 12
        store = SqlFraudLogStore(_factory(session), "2.0")

        assert await store.purge() == 12
        assert "DELETE FROM fraud_logs" in _executed_sql(session)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_risk_distribution(self):
        session = _mock_session()
        session.execute.return_value.one.return_value = SimpleNamespace(
            low=3, medium=2, high=1, critical=0
        )
        store = SqlFraudLogStore(_factory(session), "2.0")

        distribution = await store.risk_distribution()

        assert distribution.model_dump() == {"low": 3, "medium": 2, "high": 1, "critical": 0}

    @pytest.mark.asyncio
    async def test_pattern_counts_grouped_in_database(self):
        session = _mock_session()
        session.execute.return_value.all.return_value = [
            SimpleNamespace(code="RAPID_TXNS", occurrences=2),
            SimpleNamespace(code="ODD_HOUR", occurrences=1),
        ]
        store = SqlFraudLogStore(_factory(session), "2.0")

        assert await store.pattern_counts() == {"RAPID_TXNS": 2, "ODD_HOUR": 1}

        stmt = session.execute.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "jsonb_array_elements" in sql
        assert "JOIN LATERAL" in sql
        assert "GROUP BY code" in sql
        assert "count(*)" in sql
        assert "DESC" in sql
        assert "SELECT fraud_logs.reason" not in sql

    @pytest.mark.asyncio
    async def test_hourly_counts_in_utc(self):
        session = _mock_session()
        session.execute.return_value.scalars.return_value.all.return_value = [
            datetime(2026, 1, 15, 13, 5, tzinfo=UTC),
            datetime(2026, 1, 15, 13, 55, tzinfo=UTC),
            datetime(2026, 1, 15, 9, 0, tzinfo=UTC),
        ]
        store = SqlFraudLogStore(_factory(session), "2.0")

        assert await store.hourly_counts(NOW - timedelta(hours=24)) == {13: 2, 9: 1}

    @pytest.mark.asyncio
    async def test_high_risk_maps_rows(self):
        session = _mock_session()
        row = FraudLogRow(
            transaction_id="t1",
            user_id="user-1",
            timestamp=NOW,
            anomaly_detected=True,
            risk_score=85,
            reason=[{"code": "ACCOUNT_TAKEOVER_RISK", "message": "x"}],
            detection_version="2.0",
            created_at=NOW,
        )
        session.execute.return_value.scalars.return_value.all.return_value = [row]
        store = SqlFraudLogStore(_factory(session), "2.0")

        entries = await store.high_risk_since(NOW - timedelta(hours=24), 70, 20)

        assert entries[0].risk_score == 85
        assert entries[0].codes() == ["ACCOUNT_TAKEOVER_RISK"]
        assert "fraud_logs.risk_score >=" in _executed_sql(session)
