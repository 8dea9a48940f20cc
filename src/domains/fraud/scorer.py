"""Deterministic risk scoring: per-code weights summed and clamped."""

from collections.abc import Iterable

from .models import AnomalyCode, AnomalyReason

MAX_RISK_SCORE = 99
DEFAULT_WEIGHT = 5

RULE_WEIGHTS: dict[str, int] = {
    AnomalyCode.HIGH_AMOUNT_OUTLIER: 40,
    AnomalyCode.RAPID_TXNS: 25,
    AnomalyCode.LOCATION_DEVICE_MISMATCH: 20,
    AnomalyCode.ODD_HOUR: 15,
    AnomalyCode.CROSS_USER_DEVICE: 35,
    AnomalyCode.IMPOSSIBLE_TRAVEL: 30,
    AnomalyCode.HIGH_VELOCITY_SPENDING: 25,
    AnomalyCode.STRUCTURING_PATTERN: 40,
    AnomalyCode.ACCOUNT_TAKEOVER_RISK: 45,
}

# (bucket, lowest score, highest score), both ends inclusive
RISK_BUCKETS: tuple[tuple[str, int, int], ...] = (
    ("low", 0, 30),
    ("medium", 31, 60),
    ("high", 61, 80),
    ("critical", 81, MAX_RISK_SCORE),
)


def weight_for(code: str) -> int:
    return RULE_WEIGHTS.get(code, DEFAULT_WEIGHT)


def score_reasons(reasons: Iterable[AnomalyReason]) -> int:
    """Sum the weight of each distinct reason code, clamped to [0, 99]."""
    codes = {reason.code for reason in reasons}
    total = sum(weight_for(code) for code in codes)
    return max(0, min(MAX_RISK_SCORE, total))


def risk_bucket(score: int) -> str:
    for name, low, high in RISK_BUCKETS:
        if low <= score <= high:
            return name
    raise ValueError(f"risk score out of range: {score}")


class RiskScorer:
    """Injectable wrapper around :func:`score_reasons`."""

    def score(self, reasons: Iterable[AnomalyReason]) -> int:
        return score_reasons(reasons)
