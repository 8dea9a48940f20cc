"""Enhanced-tier rules.

These checks are independent of each other and are launched concurrently by
the rules engine; each reads at most a 24-hour window or a single lookup.
"""

from datetime import timedelta

from ..config import FraudConfig
from ..models import AnomalyCode, AnomalyReason, Transaction
from ..stores.base import TransactionStore
from .base import FraudRule, hours_between, to_decimal


class CrossUserDeviceRule(FraudRule):
    """One device shared by many distinct users."""

    code = AnomalyCode.CROSS_USER_DEVICE
    tier = "enhanced"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        if not transaction.device_id:
            return None
        window = config.enhanced.window_hours
        end = transaction.timestamp
        users = await store.users_on_device(
            transaction.device_id,
            end - timedelta(hours=window),
            end,
            exclude_id=transaction.transaction_id,
        )
        users.add(transaction.user_id)
        if len(users) <= config.enhanced.cross_user_device_max:
            return None
        return self._reason(f"Device used by {len(users)} different users in {window}h")


class ImpossibleTravelRule(FraudRule):
    """Location changed faster than a plausible trip between transactions."""

    code = AnomalyCode.IMPOSSIBLE_TRAVEL
    tier = "enhanced"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        previous = await store.last_before(
            transaction.user_id, transaction.timestamp, exclude_id=transaction.transaction_id
        )
        if previous is None or not previous.location or not transaction.location:
            return None
        if previous.location == transaction.location:
            return None

        hours = hours_between(previous.timestamp, transaction.timestamp)
        if hours >= config.enhanced.impossible_travel_hours:
            return None

        # Analytics parses this message back into from/to/elapsed; keep the shape stable
        return self._reason(
            f"Location changed from {previous.location} to {transaction.location} in {hours:.1f}h"
        )


class HighVelocitySpendingRule(FraudRule):
    """24h spend far above a fixed reference daily average."""

    code = AnomalyCode.HIGH_VELOCITY_SPENDING
    tier = "enhanced"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        thresholds = config.enhanced
        end = transaction.timestamp
        prior_total = await store.sum_amount(
            transaction.user_id,
            end - timedelta(hours=thresholds.window_hours),
            end,
            exclude_id=transaction.transaction_id,
        )
        total = to_decimal(prior_total) + transaction.amount
        limit = to_decimal(thresholds.reference_daily_spend) * to_decimal(
            thresholds.velocity_multiplier
        )
        if total <= limit:
            return None
        return self._reason(
            f"Spent {total:.2f} in {thresholds.window_hours}h "
            f"({thresholds.velocity_multiplier:g}x daily average of "
            f"{thresholds.reference_daily_spend:.2f})"
        )


class StructuringPatternRule(FraudRule):
    """Repeated amounts just under the reporting threshold."""

    code = AnomalyCode.STRUCTURING_PATTERN
    tier = "enhanced"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        thresholds = config.enhanced
        low, high = (to_decimal(v) for v in thresholds.structuring_range)
        end = transaction.timestamp
        count = await store.count_in_amount_range(
            transaction.user_id,
            end - timedelta(hours=thresholds.window_hours),
            end,
            low,
            high,
            exclude_id=transaction.transaction_id,
        )
        if low <= transaction.amount < high:
            count += 1
        if count < thresholds.structuring_count_min:
            return None
        return self._reason(f"{count} transactions just under {high:.0f} threshold")


class AccountTakeoverRule(FraudRule):
    """New device, large amount and a short gap since the last transaction, jointly."""

    code = AnomalyCode.ACCOUNT_TAKEOVER_RISK
    tier = "enhanced"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        thresholds = config.enhanced
        if transaction.amount <= to_decimal(thresholds.takeover_amount_min):
            return None

        previous = await store.last_before(
            transaction.user_id, transaction.timestamp, exclude_id=transaction.transaction_id
        )
        if previous is None or previous.device_id == transaction.device_id:
            return None

        hours = hours_between(previous.timestamp, transaction.timestamp)
        if hours >= thresholds.takeover_window_hours:
            return None

        return self._reason(
            f"New device + {transaction.amount} transaction within {hours:.1f}h"
        )
