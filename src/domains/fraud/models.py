"""Pydantic models for the fraud domain."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AnomalyCode(StrEnum):
    # Basic tier
    HIGH_AMOUNT_OUTLIER = "HIGH_AMOUNT_OUTLIER"
    RAPID_TXNS = "RAPID_TXNS"
    LOCATION_DEVICE_MISMATCH = "LOCATION_DEVICE_MISMATCH"
    ODD_HOUR = "ODD_HOUR"
    # Enhanced tier
    CROSS_USER_DEVICE = "CROSS_USER_DEVICE"
    IMPOSSIBLE_TRAVEL = "IMPOSSIBLE_TRAVEL"
    HIGH_VELOCITY_SPENDING = "HIGH_VELOCITY_SPENDING"
    STRUCTURING_PATTERN = "STRUCTURING_PATTERN"
    ACCOUNT_TAKEOVER_RISK = "ACCOUNT_TAKEOVER_RISK"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Transaction(BaseModel):
    """A committed transaction as delivered by the insert-event feed."""

    model_config = ConfigDict(frozen=True, extra="ignore", from_attributes=True)

    transaction_id: str
    user_id: str
    timestamp: datetime
    amount: Decimal = Field(ge=0)
    payment_method: str | None = None
    location: str | None = None
    device_id: str | None = None
    ip_address: str | None = None
    status: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AnomalyReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Plain str so codes outside AnomalyCode still score with the residual weight
    code: str
    message: str


class FraudLogEntry(BaseModel):
    transaction_id: str
    user_id: str
    timestamp: datetime
    anomaly_detected: bool = True
    risk_score: int = Field(ge=0, le=99)
    reason: list[AnomalyReason]
    detection_version: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("timestamp", "created_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def codes(self) -> list[str]:
        return [r.code for r in self.reason]


class RiskDistribution(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0


class TrendBucket(BaseModel):
    hour: str
    count: int


class SharedDevice(BaseModel):
    device_id: str
    user_count: int
    transaction_count: int


class GeoAnomaly(BaseModel):
    user_id: str
    from_location: str
    to_location: str
    time_diff_hours: str


class FraudAnalysis(BaseModel):
    risk_distribution: RiskDistribution
    pattern_counts: dict[str, int] = {}
    high_risk_txns: list[FraudLogEntry] = []
    trend_data: list[TrendBucket] = []
    cross_user_devices: list[SharedDevice] = []
    geo_anomalies: list[GeoAnomaly] = []
    computed_at: datetime
