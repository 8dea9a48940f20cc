"""Wires stores, feeds, dispatcher and broadcaster into one running pipeline."""

import asyncio

import structlog

from src.config import Settings
from src.consumers.base import ChangeFeed

from .analytics import FraudAnalytics
from .broadcast import Broadcaster
from .config import FraudConfig
from .dispatcher import TransactionDispatcher
from .rules_engine import RulesEngine
from .scorer import RiskScorer
from .stores.base import FraudLogStore, TransactionStore
from .stores.memory import InMemoryFraudLogStore, InMemoryTransactionStore

logger = structlog.get_logger()


class DetectionPipeline:
    """Two persistent subscriptions plus the worker pool between them.

    transaction feed -> dispatcher -> rules/scorer -> fraud log
    fraud-log feed   -> broadcaster -> live subscribers
    """

    def __init__(
        self,
        transactions: TransactionStore,
        fraud_log: FraudLogStore,
        transaction_feed: ChangeFeed,
        fraud_log_feed: ChangeFeed,
        settings: Settings,
        config: FraudConfig,
        on_close=None,
    ) -> None:
        self.transactions = transactions
        self.fraud_log = fraud_log
        self.config = config
        self.engine = RulesEngine(transactions, config=config)
        self.scorer = RiskScorer()
        self.dispatcher = TransactionDispatcher(
            self.engine,
            fraud_log,
            scorer=self.scorer,
            workers=settings.dispatcher_workers,
            queue_size=settings.dispatcher_queue_size,
        )
        self.broadcaster = Broadcaster(settings.broadcast_subscriber_queue_size)
        self.analytics = FraudAnalytics(transactions, fraud_log)
        self._transaction_feed = transaction_feed
        self._fraud_log_feed = fraud_log_feed
        self._shutdown_timeout = settings.shutdown_timeout_seconds
        self._on_close = on_close
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        self.dispatcher.start()
        self._tasks = [
            asyncio.create_task(
                self._transaction_feed.run(self.dispatcher.submit_document),
                name="transaction-feed",
            ),
            asyncio.create_task(
                self._fraud_log_feed.run(self.broadcaster.publish), name="fraud-log-feed"
            ),
        ]
        for task in self._tasks:
            task.add_done_callback(_log_feed_exit)
        logger.info("detection_pipeline_started")

    async def stop(self) -> None:
        # Stop intake first so in-flight evaluations can still publish their entries
        await self._transaction_feed.stop()
        if self._tasks:
            await self._await_task(self._tasks[0])
        await self.dispatcher.stop(self._shutdown_timeout)

        await self._fraud_log_feed.stop()
        for task in self._tasks:
            await self._await_task(task)
        self._tasks = []

        self.broadcaster.close()
        if self._on_close:
            await self._on_close()
        logger.info("detection_pipeline_stopped")

    async def _await_task(self, task: asyncio.Task) -> None:
        """Give a feed task a chance to finish on its own, then cancel it."""
        done, _ = await asyncio.wait({task}, timeout=self._shutdown_timeout)
        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


def _log_feed_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if exc := task.exception():
        logger.error("change_feed_task_failed", feed=task.get_name(), error=str(exc))


def build_memory_pipeline(settings: Settings, config: FraudConfig) -> DetectionPipeline:
    transactions = InMemoryTransactionStore()
    fraud_log = InMemoryFraudLogStore(config.detection_version)
    return DetectionPipeline(
        transactions=transactions,
        fraud_log=fraud_log,
        transaction_feed=transactions.watch(),
        fraud_log_feed=fraud_log.watch(),
        settings=settings,
        config=config,
    )


async def build_sql_pipeline(settings: Settings, config: FraudConfig) -> DetectionPipeline:
    from src.consumers.fraud_log_consumer import FraudLogConsumer
    from src.consumers.transaction_consumer import TransactionConsumer
    from src.db.database import async_session_factory, dispose_db, init_db
    from src.shared.kafka_utils import FraudLogPublisher, create_producer

    from .stores.sql import SqlFraudLogStore, SqlTransactionStore

    await init_db()
    producer = await create_producer(settings.kafka_bootstrap_servers)
    publisher = FraudLogPublisher(producer, settings.fraud_log_topic)

    async def close() -> None:
        await publisher.close()
        await dispose_db()

    return DetectionPipeline(
        transactions=SqlTransactionStore(async_session_factory),
        fraud_log=SqlFraudLogStore(
            async_session_factory,
            config.detection_version,
            publisher=publisher.publish,
        ),
        transaction_feed=TransactionConsumer(settings),
        fraud_log_feed=FraudLogConsumer(settings),
        settings=settings,
        config=config,
        on_close=close,
    )


async def build_pipeline(settings: Settings, config: FraudConfig) -> DetectionPipeline:
    if settings.store_backend == "memory":
        return build_memory_pipeline(settings, config)
    if settings.store_backend == "sql":
        return await build_sql_pipeline(settings, config)
    raise ValueError(f"unknown store backend: {settings.store_backend}")
