"""Fraud detection configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


@dataclass
class BasicRuleThresholds:
    outlier_lookback_days: int = 30
    outlier_multiplier: float = 3.0
    rapid_window_minutes: int = 2
    rapid_count_min: int = 5
    odd_hour_start: int = 0
    odd_hour_end: int = 5  # exclusive


@dataclass
class EnhancedRuleThresholds:
    window_hours: int = 24
    cross_user_device_max: int = 3  # fires when distinct users exceed this
    impossible_travel_hours: float = 2.0
    # Fixed reference, not a per-user baseline
    reference_daily_spend: float = 500.0
    velocity_multiplier: float = 5.0
    structuring_range: tuple[float, float] = (9_000.0, 10_000.0)  # [low, high)
    structuring_count_min: int = 3
    takeover_amount_min: float = 5_000.0
    takeover_window_hours: float = 1.0


@dataclass
class FraudConfig:
    basic: BasicRuleThresholds = field(default_factory=BasicRuleThresholds)
    enhanced: EnhancedRuleThresholds = field(default_factory=EnhancedRuleThresholds)
    detection_version: str = "2.0"
    # Timezone used to derive the "local" hour for ODD_HOUR
    local_timezone: str = "UTC"

    @classmethod
    def from_env(cls) -> "FraudConfig":
        """Load config with env var overrides. Env vars use FRAUD_ prefix."""
        config = cls()

        if v := os.getenv("FRAUD_DETECTION_VERSION"):
            config.detection_version = v
        if v := os.getenv("FRAUD_LOCAL_TIMEZONE"):
            config.local_timezone = v

        # Basic tier overrides
        if v := os.getenv("FRAUD_OUTLIER_MULTIPLIER"):
            config.basic.outlier_multiplier = float(v)
        if v := os.getenv("FRAUD_RAPID_COUNT_MIN"):
            config.basic.rapid_count_min = int(v)
        if v := os.getenv("FRAUD_RAPID_WINDOW_MINUTES"):
            config.basic.rapid_window_minutes = int(v)

        # Enhanced tier overrides
        if v := os.getenv("FRAUD_CROSS_USER_DEVICE_MAX"):
            config.enhanced.cross_user_device_max = int(v)
        if v := os.getenv("FRAUD_REFERENCE_DAILY_SPEND"):
            config.enhanced.reference_daily_spend = float(v)
        if v := os.getenv("FRAUD_TAKEOVER_AMOUNT_MIN"):
            config.enhanced.takeover_amount_min = float(v)

        return config


# Module-level default instance
default_config = FraudConfig()
