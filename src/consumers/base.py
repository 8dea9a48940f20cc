"""Insert-event feeds: reconnecting Kafka consumer behind a small interface."""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from aiokafka import AIOKafkaConsumer

from src.domains.fraud.errors import ChangeFeedError

logger = structlog.get_logger()

DocumentHandler = Callable[[dict[str, Any]], Awaitable[None]]


def extract_inserted_document(event: Any) -> dict[str, Any] | None:
    """Return the full document of an insert event, or None for anything else.

    Accepts either a bare document or a change-stream style envelope
    (``{"operation_type": "insert", "full_document": {...}}``).
    """
    if not isinstance(event, dict):
        return None
    if "full_document" not in event and "operation_type" not in event:
        return event
    if event.get("operation_type", "insert") != "insert":
        return None
    document = event.get("full_document")
    return document if isinstance(document, dict) else None


class ChangeFeed(ABC):
    """A long-lived source of newly inserted documents."""

    @abstractmethod
    async def run(self, handler: DocumentHandler) -> None:
        """Deliver each inserted document to ``handler`` until stopped."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...


class ChangeFeedConsumer(ChangeFeed):
    def __init__(
        self,
        topic: str,
        bootstrap_servers: str,
        group_id: str | None,
        auto_offset_reset: str = "latest",
        retry_initial_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        max_reconnect_attempts: int = 0,
    ):
        self.topic = topic
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.auto_offset_reset = auto_offset_reset
        self.retry_initial_seconds = retry_initial_seconds
        self.retry_max_seconds = retry_max_seconds
        self.max_reconnect_attempts = max_reconnect_attempts
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        self._failures = 0

    def _create_consumer(self) -> AIOKafkaConsumer:
        return AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            value_deserializer=lambda m: json.loads(m.decode("utf-8")),
            auto_offset_reset=self.auto_offset_reset,
            # Group-less consumers have no offsets to commit
            enable_auto_commit=self.group_id is not None,
        )

    async def run(self, handler: DocumentHandler) -> None:
        """Consume until stopped, re-subscribing with capped backoff on failure."""
        self._running = True
        self._failures = 0
        while self._running:
            try:
                await self._consume(handler)
                if self._running:
                    # Iterator ended without stop(): treat like a dropped connection
                    raise ConnectionError("change feed closed unexpectedly")
            except asyncio.CancelledError:
                raise
            except Exception:
                if not self._running:
                    break
                self._failures += 1
                logger.exception(
                    "change_feed_error", topic=self.topic, consecutive_failures=self._failures
                )
                if self.max_reconnect_attempts and self._failures >= self.max_reconnect_attempts:
                    logger.error(
                        "change_feed_gave_up", topic=self.topic, attempts=self._failures
                    )
                    raise ChangeFeedError(
                        f"gave up on {self.topic} after {self._failures} attempts"
                    ) from None
                delay = min(
                    self.retry_initial_seconds * 2 ** (self._failures - 1),
                    self.retry_max_seconds,
                )
                logger.info("change_feed_reconnecting", topic=self.topic, delay_seconds=delay)
                await asyncio.sleep(delay)
        logger.info("change_feed_stopped", topic=self.topic)

    async def _consume(self, handler: DocumentHandler) -> None:
        self._consumer = self._create_consumer()
        await self._consumer.start()
        logger.info("consumer_started", topic=self.topic, group_id=self.group_id)
        try:
            async for msg in self._consumer:
                self._failures = 0
                await self._process_message(msg, handler)
        finally:
            await self._consumer.stop()

    async def _process_message(self, msg: Any, handler: DocumentHandler) -> None:
        try:
            document = extract_inserted_document(msg.value)
            if document is None:
                logger.debug("non_insert_event_skipped", topic=msg.topic, offset=msg.offset)
                return
            await handler(document)
        except Exception:
            logger.exception("message_processing_error", topic=msg.topic, offset=msg.offset)

    async def stop(self) -> None:
        self._running = False
        if self._consumer:
            await self._consumer.stop()
            logger.info("consumer_stopped", topic=self.topic)


class QueueChangeFeed(ChangeFeed):
    """In-process feed fed by a store that pushes inserted documents onto a queue."""

    _STOP = object()

    def __init__(self, name: str, maxsize: int = 0) -> None:
        self.name = name
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def push(self, document: dict[str, Any]) -> None:
        self.queue.put_nowait(document)

    async def run(self, handler: DocumentHandler) -> None:
        """Deliver queued documents in order; everything pushed before stop() is delivered."""
        logger.info("consumer_started", topic=self.name)
        while True:
            document = await self.queue.get()
            if document is self._STOP:
                break
            try:
                await handler(document)
            except Exception:
                logger.exception("message_processing_error", topic=self.name)
        logger.info("change_feed_stopped", topic=self.name)

    async def stop(self) -> None:
        self.queue.put_nowait(self._STOP)
