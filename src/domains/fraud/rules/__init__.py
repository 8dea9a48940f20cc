"""Anomaly rules package.

Exports the two rule tiers in reporting order and the individual rule
classes for direct use.
"""

from .base import FraudRule
from .basic import (
    HighAmountOutlierRule,
    LocationDeviceMismatchRule,
    OddHourRule,
    RapidTransactionsRule,
)
from .enhanced import (
    AccountTakeoverRule,
    CrossUserDeviceRule,
    HighVelocitySpendingRule,
    ImpossibleTravelRule,
    StructuringPatternRule,
)

# Reason order in a fraud log entry follows these lists, not completion order
BASIC_RULES: list[FraudRule] = [
    HighAmountOutlierRule(),
    RapidTransactionsRule(),
    LocationDeviceMismatchRule(),
    OddHourRule(),
]

ENHANCED_RULES: list[FraudRule] = [
    CrossUserDeviceRule(),
    ImpossibleTravelRule(),
    HighVelocitySpendingRule(),
    StructuringPatternRule(),
    AccountTakeoverRule(),
]

ALL_RULES: list[FraudRule] = BASIC_RULES + ENHANCED_RULES

__all__ = [
    "ALL_RULES",
    "BASIC_RULES",
    "ENHANCED_RULES",
    "FraudRule",
    # Basic
    "HighAmountOutlierRule",
    "RapidTransactionsRule",
    "LocationDeviceMismatchRule",
    "OddHourRule",
    # Enhanced
    "CrossUserDeviceRule",
    "ImpossibleTravelRule",
    "HighVelocitySpendingRule",
    "StructuringPatternRule",
    "AccountTakeoverRule",
]
