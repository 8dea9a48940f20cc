"""Unit tests for enhanced-tier anomaly rules."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from src.domains.fraud.config import FraudConfig
from src.domains.fraud.models import AnomalyCode
from src.domains.fraud.rules.enhanced import (
    AccountTakeoverRule,
    CrossUserDeviceRule,
    HighVelocitySpendingRule,
    ImpossibleTravelRule,
    StructuringPatternRule,
)
from tests.conftest import NOW, make_transaction

CONFIG = FraudConfig()


def _ago(**delta) -> datetime:
    return NOW - timedelta(**delta)


class TestCrossUserDeviceRule:
    rule = CrossUserDeviceRule()

    async def _seed_users(self, store, count: int):
        for i in range(count):
            await store.insert(
                make_transaction(
                    transaction_id=f"d{i}",
                    user_id=f"other-{i}",
                    device_id="shared",
                    timestamp=_ago(hours=i + 1),
                )
            )

    @pytest.mark.asyncio
    async def test_four_users_fires(self, transaction_store):
        await self._seed_users(transaction_store, 3)
        txn = make_transaction(device_id="shared")
        reason = await self.rule.evaluate(txn, transaction_store, CONFIG)
        assert reason is not None
        assert reason.code == AnomalyCode.CROSS_USER_DEVICE
        assert reason.message == "Device used by 4 different users in 24h"

    @pytest.mark.asyncio
    async def test_three_users_does_not_fire(self, transaction_store):
        await self._seed_users(transaction_store, 2)
        txn = make_transaction(device_id="shared")
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_current_user_counted_once(self, transaction_store):
        await self._seed_users(transaction_store, 2)
        await transaction_store.insert(
            make_transaction(transaction_id="mine", device_id="shared", timestamp=_ago(hours=1))
        )
        txn = make_transaction(device_id="shared")
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_missing_device_id(self, transaction_store):
        txn = make_transaction(device_id=None)
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_users_outside_window_ignored(self, transaction_store):
        for i in range(5):
            await transaction_store.insert(
                make_transaction(
                    transaction_id=f"old{i}",
                    user_id=f"other-{i}",
                    device_id="shared",
                    timestamp=_ago(hours=25),
                )
            )
        txn = make_transaction(device_id="shared")
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None


class TestImpossibleTravelRule:
    rule = ImpossibleTravelRule()

    @pytest.mark.asyncio
    async def test_location_change_within_two_hours(self, transaction_store):
        await transaction_store.insert(
            make_transaction(transaction_id="prev", location="Delhi", timestamp=_ago(minutes=30))
        )
        txn = make_transaction(location="Mumbai")
        reason = await self.rule.evaluate(txn, transaction_store, CONFIG)
        assert reason is not None
        assert reason.code == AnomalyCode.IMPOSSIBLE_TRAVEL
        assert reason.message == "Location changed from Delhi to Mumbai in 0.5h"

    @pytest.mark.asyncio
    async def test_two_hours_apart_does_not_fire(self, transaction_store):
        await transaction_store.insert(
            make_transaction(transaction_id="prev", location="Delhi", timestamp=_ago(hours=2))
        )
        txn = make_transaction(location="Mumbai")
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_same_location(self, transaction_store):
        await transaction_store.insert(
            make_transaction(transaction_id="prev", timestamp=_ago(minutes=5))
        )
        assert await self.rule.evaluate(make_transaction(), transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_missing_location(self, transaction_store):
        await transaction_store.insert(
            make_transaction(transaction_id="prev", location=None, timestamp=_ago(minutes=5))
        )
        assert await self.rule.evaluate(make_transaction(), transaction_store, CONFIG) is None


class TestHighVelocitySpendingRule:
    rule = HighVelocitySpendingRule()

    @pytest.mark.asyncio
    async def test_above_limit_fires(self, transaction_store):
        await transaction_store.insert(
            make_transaction(transaction_id="prev", amount=Decimal("2000"), timestamp=_ago(hours=3))
        )
        txn = make_transaction(amount=Decimal("600"))
        reason = await self.rule.evaluate(txn, transaction_store, CONFIG)
        assert reason is not None
        assert reason.code == AnomalyCode.HIGH_VELOCITY_SPENDING
        assert reason.message == "Spent 2600.00 in 24h (5x daily average of 500.00)"

    @pytest.mark.asyncio
    async def test_exactly_limit_does_not_fire(self, transaction_store):
        await transaction_store.insert(
            make_transaction(transaction_id="prev", amount=Decimal("2000"), timestamp=_ago(hours=3))
        )
        txn = make_transaction(amount=Decimal("500"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_spend_outside_window_ignored(self, transaction_store):
        await transaction_store.insert(
            make_transaction(
                transaction_id="prev", amount=Decimal("5000"), timestamp=_ago(hours=30)
            )
        )
        assert await self.rule.evaluate(make_transaction(), transaction_store, CONFIG) is None


class TestStructuringPatternRule:
    rule = StructuringPatternRule()

    @pytest.mark.asyncio
    async def test_three_just_under_threshold(self, transaction_store):
        for i, amount in enumerate(["9000", "9999.99"]):
            await transaction_store.insert(
                make_transaction(
                    transaction_id=f"s{i}",
                    amount=Decimal(amount),
                    timestamp=_ago(hours=i + 1),
                )
            )
        reason = await self.rule.evaluate(
            make_transaction(amount=Decimal("9500")), transaction_store, CONFIG
        )
        assert reason is not None
        assert reason.code == AnomalyCode.STRUCTURING_PATTERN
        assert reason.message == "3 transactions just under 10000 threshold"

    @pytest.mark.asyncio
    async def test_ten_thousand_is_excluded(self, transaction_store):
        for i, amount in enumerate(["9000", "10000"]):
            await transaction_store.insert(
                make_transaction(
                    transaction_id=f"s{i}",
                    amount=Decimal(amount),
                    timestamp=_ago(hours=i + 1),
                )
            )
        txn = make_transaction(amount=Decimal("9500"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_current_out_of_range_not_counted(self, transaction_store):
        for i in range(2):
            await transaction_store.insert(
                make_transaction(
                    transaction_id=f"s{i}",
                    amount=Decimal("9100"),
                    timestamp=_ago(hours=i + 1),
                )
            )
        txn = make_transaction(amount=Decimal("100"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None


class TestAccountTakeoverRule:
    rule = AccountTakeoverRule()

    async def _seed_previous(self, store, *, device_id="device-1", minutes_ago=30):
        await store.insert(
            make_transaction(
                transaction_id="prev",
                device_id=device_id,
                timestamp=_ago(minutes=minutes_ago),
            )
        )

    @pytest.mark.asyncio
    async def test_all_conditions_fire(self, transaction_store):
        await self._seed_previous(transaction_store)
        txn = make_transaction(device_id="device-new", amount=Decimal("7500"))
        reason = await self.rule.evaluate(txn, transaction_store, CONFIG)
        assert reason is not None
        assert reason.code == AnomalyCode.ACCOUNT_TAKEOVER_RISK
        assert reason.message == "New device + 7500 transaction within 0.5h"

    @pytest.mark.asyncio
    async def test_same_device(self, transaction_store):
        await self._seed_previous(transaction_store)
        txn = make_transaction(amount=Decimal("7500"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_amount_at_threshold(self, transaction_store):
        await self._seed_previous(transaction_store)
        txn = make_transaction(device_id="device-new", amount=Decimal("5000"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_gap_of_an_hour(self, transaction_store):
        await self._seed_previous(transaction_store, minutes_ago=60)
        txn = make_transaction(device_id="device-new", amount=Decimal("7500"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None

    @pytest.mark.asyncio
    async def test_no_previous_transaction(self, transaction_store):
        txn = make_transaction(device_id="device-new", amount=Decimal("7500"))
        assert await self.rule.evaluate(txn, transaction_store, CONFIG) is None
