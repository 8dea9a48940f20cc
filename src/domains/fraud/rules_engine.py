"""Two-tier anomaly rules engine."""

import asyncio

import structlog

from .config import FraudConfig, default_config
from .models import AnomalyReason, Transaction
from .rules import BASIC_RULES, ENHANCED_RULES, FraudRule
from .stores.base import TransactionStore

logger = structlog.get_logger()


class RulesEngine:
    """Evaluates a transaction against the basic and enhanced rule tiers.

    1. Basic rules run one after another.
    2. Enhanced rules are launched together and joined; a failing rule
       contributes no reason instead of aborting the evaluation.
    3. Reasons are reported basic-first, each tier in its list order.
    """

    def __init__(
        self,
        store: TransactionStore,
        config: FraudConfig | None = None,
        basic_rules: list[FraudRule] | None = None,
        enhanced_rules: list[FraudRule] | None = None,
    ) -> None:
        self._store = store
        self._config = config or default_config
        self._basic = list(BASIC_RULES if basic_rules is None else basic_rules)
        self._enhanced = list(ENHANCED_RULES if enhanced_rules is None else enhanced_rules)
        logger.info(
            "rules_engine_initialized",
            basic_rules=len(self._basic),
            enhanced_rules=len(self._enhanced),
            detection_version=self._config.detection_version,
        )

    @property
    def rules(self) -> list[FraudRule]:
        return self._basic + self._enhanced

    async def evaluate(self, transaction: Transaction) -> list[AnomalyReason]:
        reasons: list[AnomalyReason] = []

        for rule in self._basic:
            reason = await self._run_rule(rule, transaction)
            if reason:
                reasons.append(reason)

        try:
            reasons.extend(await self._evaluate_enhanced(transaction))
        except Exception:
            logger.exception(
                "enhanced_tier_failed", transaction_id=transaction.transaction_id
            )

        logger.info(
            "rules_evaluated",
            transaction_id=transaction.transaction_id,
            user_id=transaction.user_id,
            triggered=[r.code for r in reasons],
        )
        return reasons

    async def _evaluate_enhanced(self, transaction: Transaction) -> list[AnomalyReason]:
        # gather() returns results in argument order regardless of completion order
        results = await asyncio.gather(
            *(self._run_rule(rule, transaction) for rule in self._enhanced)
        )
        return [reason for reason in results if reason]

    async def _run_rule(self, rule: FraudRule, transaction: Transaction) -> AnomalyReason | None:
        try:
            return await rule.evaluate(transaction, self._store, self._config)
        except Exception:
            logger.exception(
                "rule_evaluation_error",
                rule=rule.code,
                tier=rule.tier,
                transaction_id=transaction.transaction_id,
            )
            return None
