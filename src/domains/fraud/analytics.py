"""Read-only fraud rollups for the dashboard."""

import re
from datetime import UTC, datetime, timedelta

import structlog

from .models import AnomalyCode, FraudAnalysis, FraudLogEntry, GeoAnomaly, TrendBucket
from .stores.base import FraudLogStore, TransactionStore

logger = structlog.get_logger()

WINDOW = timedelta(hours=24)
HIGH_RISK_MIN_SCORE = 70
HIGH_RISK_LIMIT = 20
SHARED_DEVICE_MIN_USERS = 2
SHARED_DEVICE_LIMIT = 10
GEO_ANOMALY_LIMIT = 10

_TRAVEL_RE = re.compile(r" from (?P<src>.*?) to (?P<dst>.*?) in (?P<hours>[\d.]+)h")


def parse_travel_message(message: str) -> tuple[str, str, str]:
    """Split an IMPOSSIBLE_TRAVEL message into (from, to, elapsed hours)."""
    match = _TRAVEL_RE.search(message or "")
    if not match:
        return "Unknown", "Unknown", "0"
    return match["src"] or "Unknown", match["dst"] or "Unknown", match["hours"]


def geo_anomaly_from_entry(entry: FraudLogEntry) -> GeoAnomaly:
    message = next(
        (r.message for r in entry.reason if r.code == AnomalyCode.IMPOSSIBLE_TRAVEL), ""
    )
    src, dst, hours = parse_travel_message(message)
    return GeoAnomaly(
        user_id=entry.user_id, from_location=src, to_location=dst, time_diff_hours=hours
    )


class FraudAnalytics:
    def __init__(self, transactions: TransactionStore, fraud_log: FraudLogStore) -> None:
        self._transactions = transactions
        self._fraud_log = fraud_log

    async def analyze(self, now: datetime | None = None) -> FraudAnalysis:
        now = now or datetime.now(UTC)
        since = now - WINDOW

        distribution = await self._fraud_log.risk_distribution()
        patterns = await self._fraud_log.pattern_counts()
        high_risk = await self._fraud_log.high_risk_since(
            since, HIGH_RISK_MIN_SCORE, HIGH_RISK_LIMIT
        )
        hourly = await self._fraud_log.hourly_counts(since)
        devices = await self._transactions.shared_devices(
            since, SHARED_DEVICE_MIN_USERS, SHARED_DEVICE_LIMIT
        )
        travel = await self._fraud_log.latest_with_code(
            AnomalyCode.IMPOSSIBLE_TRAVEL, GEO_ANOMALY_LIMIT
        )

        logger.info(
            "fraud_analysis_computed",
            high_risk=len(high_risk),
            shared_devices=len(devices),
            geo_anomalies=len(travel),
        )

        return FraudAnalysis(
            risk_distribution=distribution,
            pattern_counts=patterns,
            high_risk_txns=high_risk,
            trend_data=[
                TrendBucket(hour=f"{hour}:00", count=count)
                for hour, count in sorted(hourly.items())
            ],
            cross_user_devices=devices,
            geo_anomalies=[geo_anomaly_from_entry(e) for e in travel],
            computed_at=now,
        )
