from media_ingest.config.settings import Settings
from media_ingest.queue.base import BaseConsumer, BasePublisher
from media_ingest.queue.memory_adapter import InMemoryBroker
from media_ingest.queue.rabbitmq_adapter import RabbitMQConsumer, RabbitMQPublisher
from media_ingest.utils.retry import RetryConfig


class QueueFactory:
    """Creates publisher and consumer adapters selected by settings.

    The memory backend shares one broker between both sides, so it only
    connects ingestion and transcoding running in the same process.
    """

    BACKENDS = ("rabbitmq", "memory")

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._broker: InMemoryBroker | None = None

    def create_publisher(self) -> BasePublisher:
        backend = self._backend()
        if backend == "memory":
            return self._memory_broker()
        return RabbitMQPublisher(
            self._settings.rabbitmq_url,
            self._settings.rabbitmq_queue,
            RetryConfig.from_settings(self._settings),
        )

    def create_consumer(self) -> BaseConsumer:
        backend = self._backend()
        if backend == "memory":
            return self._memory_broker()
        return RabbitMQConsumer(
            self._settings.rabbitmq_url,
            self._settings.rabbitmq_queue,
            self._settings.rabbitmq_prefetch_count,
            RetryConfig.from_settings(self._settings),
        )

    def _backend(self) -> str:
        backend = self._settings.queue_backend.lower()
        if backend not in self.BACKENDS:
            raise ValueError(
                f"Unknown queue backend '{backend}'. Choose from: {list(self.BACKENDS)}"
            )
        return backend

    def _memory_broker(self) -> InMemoryBroker:
        if self._broker is None:
            self._broker = InMemoryBroker()
        return self._broker
