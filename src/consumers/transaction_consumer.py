"""Consumer for transaction insert events."""

from src.config import Settings

from .base import ChangeFeedConsumer


class TransactionConsumer(ChangeFeedConsumer):
    """Shared consumer group: each inserted transaction is evaluated by one process."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(
            topic=settings.transaction_topic,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=settings.kafka_consumer_group,
            auto_offset_reset=settings.kafka_auto_offset_reset,
            retry_initial_seconds=settings.feed_retry_initial_seconds,
            retry_max_seconds=settings.feed_retry_max_seconds,
            max_reconnect_attempts=settings.feed_max_reconnect_attempts,
        )
