"""Consumer for fraud-log insert events feeding the live broadcast."""

from src.config import Settings

from .base import ChangeFeedConsumer


class FraudLogConsumer(ChangeFeedConsumer):
    """Group-less consumer so every API process sees every new entry.

    Reads all partitions from the latest offset and commits nothing, so live
    subscribers get no backlog and restarts leave no consumer groups behind.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(
            topic=settings.fraud_log_topic,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=None,
            auto_offset_reset="latest",
            retry_initial_seconds=settings.feed_retry_initial_seconds,
            retry_max_seconds=settings.feed_retry_max_seconds,
            max_reconnect_attempts=settings.feed_max_reconnect_attempts,
        )
