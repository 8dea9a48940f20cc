"""Kafka producer helpers."""

import json

import structlog
from aiokafka import AIOKafkaProducer

from src.domains.fraud.models import FraudLogEntry

logger = structlog.get_logger()


async def create_producer(bootstrap_servers: str) -> AIOKafkaProducer:
    """Create and start a Kafka producer."""
    producer = AIOKafkaProducer(
        bootstrap_servers=bootstrap_servers,
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
    )
    await producer.start()
    logger.info("kafka_producer_started", bootstrap_servers=bootstrap_servers)
    return producer


class FraudLogPublisher:
    """Emits the fraud-log insert event that live broadcasters subscribe to."""

    def __init__(self, producer: AIOKafkaProducer, topic: str) -> None:
        self._producer = producer
        self.topic = topic

    async def publish(self, entry: FraudLogEntry) -> None:
        try:
            await self._producer.send_and_wait(
                self.topic,
                value=entry.model_dump(mode="json"),
                key=entry.user_id.encode("utf-8"),
            )
            logger.debug(
                "fraud_log_event_published", transaction_id=entry.transaction_id, topic=self.topic
            )
        except Exception:
            # Entry is already committed; it just won't reach live subscribers
            logger.exception(
                "fraud_log_publish_failed", transaction_id=entry.transaction_id, topic=self.topic
            )

    async def close(self) -> None:
        await self._producer.stop()
        logger.info("kafka_producer_stopped", topic=self.topic)
