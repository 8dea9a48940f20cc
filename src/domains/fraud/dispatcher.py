"""Transaction dispatcher: evaluate -> score -> persist, off the feed reader's path."""

import asyncio
from typing import Any

import structlog
from pydantic import ValidationError

from .models import FraudLogEntry, Transaction
from .rules_engine import RulesEngine
from .scorer import RiskScorer
from .stores.base import FraudLogStore

logger = structlog.get_logger()


class TransactionDispatcher:
    """Runs one evaluation per inserted transaction on a pool of worker tasks.

    The feed reader only enqueues, so a slow evaluation never holds up
    notifications for other transactions. Entries may be committed out of
    feed order.
    """

    def __init__(
        self,
        engine: RulesEngine,
        fraud_log: FraudLogStore,
        scorer: RiskScorer | None = None,
        workers: int = 10,
        queue_size: int = 1000,
    ) -> None:
        self._engine = engine
        self._fraud_log = fraud_log
        self._scorer = scorer or RiskScorer()
        self._worker_count = workers
        self._queue: asyncio.Queue[Transaction] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task] = []
        self._accepting = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._workers:
            return
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"dispatcher-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("dispatcher_started", workers=self._worker_count)

    async def submit_document(self, document: dict[str, Any]) -> None:
        """Feed handler: validate an inserted document and queue it for evaluation."""
        try:
            transaction = Transaction.model_validate(document)
        except ValidationError as exc:
            logger.warning(
                "malformed_transaction_skipped",
                transaction_id=document.get("transaction_id"),
                errors=exc.error_count(),
            )
            return
        await self.submit(transaction)

    async def submit(self, transaction: Transaction) -> None:
        if not self._accepting:
            logger.warning(
                "dispatcher_not_accepting", transaction_id=transaction.transaction_id
            )
            return
        await self._queue.put(transaction)

    async def process(self, transaction: Transaction) -> FraudLogEntry | None:
        """Evaluate one transaction and record it if any rule fired."""
        reasons = await self._engine.evaluate(transaction)
        if not reasons:
            return None

        score = self._scorer.score(reasons)
        entry = await self._fraud_log.record(transaction, reasons, score)

        logger.info(
            "transaction_flagged",
            transaction_id=transaction.transaction_id,
            risk_score=score,
            reasons=[r.code for r in reasons],
            recorded=entry is not None,
        )
        return entry

    async def _worker(self, index: int) -> None:
        while True:
            transaction = await self._queue.get()
            try:
                await self.process(transaction)
            except Exception:
                logger.exception(
                    "transaction_processing_failed",
                    transaction_id=transaction.transaction_id,
                    worker=index,
                )
            finally:
                self._queue.task_done()

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop accepting work, let queued evaluations finish (up to ``timeout``), then exit."""
        self._accepting = False
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except TimeoutError:
            logger.warning("dispatcher_drain_timeout", abandoned=self._queue.qsize())

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("dispatcher_stopped")
