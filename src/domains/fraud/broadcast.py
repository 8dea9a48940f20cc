"""Live fan-out of new fraud-log entries to connected subscribers."""

import asyncio
import itertools
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog

logger = structlog.get_logger()

_CLOSED = None


class Subscriber:
    """One connected client. Messages are buffered in a bounded queue."""

    def __init__(self, subscriber_id: int, maxsize: int) -> None:
        self.subscriber_id = subscriber_id
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, message: str) -> bool:
        """Queue a message without waiting. False means the subscriber can't keep up."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self, timeout: float | None = None) -> str | None:
        """Wait for the next message; None once closed. Raises TimeoutError on idle."""
        message = await asyncio.wait_for(self._queue.get(), timeout)
        if message is _CLOSED:
            self.closed = True
        return message

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the reader even if the buffer is full
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()


class Broadcaster:
    """Registry of live subscriber sinks.

    Delivery is best effort and at most once per connected subscriber; a
    subscriber that connects after an entry was published never sees it.
    """

    def __init__(self, subscriber_queue_size: int = 100) -> None:
        self._subscriber_queue_size = subscriber_queue_size
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_subscriber(self) -> Subscriber:
        subscriber = Subscriber(next(self._ids), self._subscriber_queue_size)
        self._subscribers[subscriber.subscriber_id] = subscriber
        logger.info(
            "subscriber_connected",
            subscriber_id=subscriber.subscriber_id,
            subscribers=len(self._subscribers),
        )
        return subscriber

    def remove_subscriber(self, subscriber: Subscriber) -> None:
        if self._subscribers.pop(subscriber.subscriber_id, None) is None:
            return
        subscriber.close()
        logger.info(
            "subscriber_disconnected",
            subscriber_id=subscriber.subscriber_id,
            subscribers=len(self._subscribers),
        )

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[Subscriber]:
        subscriber = self.add_subscriber()
        try:
            yield subscriber
        finally:
            self.remove_subscriber(subscriber)

    async def publish(self, document: dict[str, Any]) -> int:
        """Push one serialized entry to every live subscriber. Returns the delivery count."""
        if not self._subscribers:
            return 0

        message = json.dumps(document, default=str)
        delivered = 0
        dropped = []
        for subscriber in list(self._subscribers.values()):
            if subscriber.offer(message):
                delivered += 1
            else:
                dropped.append(subscriber)

        for subscriber in dropped:
            logger.warning("subscriber_dropped", subscriber_id=subscriber.subscriber_id)
            self.remove_subscriber(subscriber)

        logger.debug(
            "fraud_log_broadcast",
            transaction_id=document.get("transaction_id"),
            delivered=delivered,
        )
        return delivered

    def close(self) -> None:
        for subscriber in list(self._subscribers.values()):
            self.remove_subscriber(subscriber)
        logger.info("broadcaster_closed")
