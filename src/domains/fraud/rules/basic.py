"""Basic-tier rules: amount outlier, rapid bursts, device/IP drift, odd hours."""

from datetime import timedelta
from zoneinfo import ZoneInfo

from ..config import FraudConfig
from ..models import AnomalyCode, AnomalyReason, Transaction
from ..stores.base import TransactionStore
from .base import FraudRule


class HighAmountOutlierRule(FraudRule):
    """Amount well above the user's trailing 30-day mean."""

    code = AnomalyCode.HIGH_AMOUNT_OUTLIER
    tier = "basic"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        thresholds = config.basic
        end = transaction.timestamp
        start = end - timedelta(days=thresholds.outlier_lookback_days)
        avg = await store.average_amount(
            transaction.user_id, start, end, exclude_id=transaction.transaction_id
        )
        # No prior history, nothing to compare against
        if not avg:
            return None

        if float(transaction.amount) <= float(avg) * thresholds.outlier_multiplier:
            return None

        return self._reason(
            f"Amount {transaction.amount} > {thresholds.outlier_multiplier:g}x avg {float(avg):.2f}"
        )


class RapidTransactionsRule(FraudRule):
    """Burst of transactions from one user in a short window."""

    code = AnomalyCode.RAPID_TXNS
    tier = "basic"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        window = config.basic.rapid_window_minutes
        end = transaction.timestamp
        prior = await store.count_for_user(
            transaction.user_id,
            end - timedelta(minutes=window),
            end,
            exclude_id=transaction.transaction_id,
        )
        count = prior + 1  # window is inclusive of the current transaction
        if count < config.basic.rapid_count_min:
            return None
        return self._reason(f"{count} txns in last {window} minutes")


class LocationDeviceMismatchRule(FraudRule):
    """Device or IP differs from the user's previous transaction."""

    code = AnomalyCode.LOCATION_DEVICE_MISMATCH
    tier = "basic"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        previous = await store.last_before(
            transaction.user_id, transaction.timestamp, exclude_id=transaction.transaction_id
        )
        if previous is None:
            return None
        if (
            previous.device_id == transaction.device_id
            and previous.ip_address == transaction.ip_address
        ):
            return None
        return self._reason("Device/IP mismatch from previous txn")


class OddHourRule(FraudRule):
    """Transaction made in the small hours of the configured local timezone."""

    code = AnomalyCode.ODD_HOUR
    tier = "basic"

    async def evaluate(
        self,
        transaction: Transaction,
        store: TransactionStore,
        config: FraudConfig,
    ) -> AnomalyReason | None:
        local = transaction.timestamp.astimezone(ZoneInfo(config.local_timezone))
        hour = local.hour
        if not (config.basic.odd_hour_start <= hour < config.basic.odd_hour_end):
            return None
        return self._reason(f"Transaction at {hour}:00")
