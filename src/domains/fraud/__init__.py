"""Fraud detection domain."""

from .models import (
    AnomalyCode,
    AnomalyReason,
    FraudAnalysis,
    FraudLogEntry,
    Transaction,
)
from .rules import ALL_RULES, BASIC_RULES, ENHANCED_RULES
from .rules_engine import RulesEngine
from .scorer import RULE_WEIGHTS, RiskScorer, score_reasons

__all__ = [
    "ALL_RULES",
    "AnomalyCode",
    "AnomalyReason",
    "BASIC_RULES",
    "ENHANCED_RULES",
    "FraudAnalysis",
    "FraudLogEntry",
    "RULE_WEIGHTS",
    "RiskScorer",
    "RulesEngine",
    "Transaction",
    "score_reasons",
]
