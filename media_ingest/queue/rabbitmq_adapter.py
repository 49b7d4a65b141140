import functools
import threading
from collections.abc import Callable
from typing import Any

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError

from media_ingest.ingest.exceptions import PublishError
from media_ingest.logging.logger import Log
from media_ingest.queue.base import BaseConsumer, BasePublisher, Delivery
from media_ingest.queue.exceptions import MalformedMessageError
from media_ingest.queue.messages import ProcessingMessage
from media_ingest.utils.retry import RetryConfig, retry_with_backoff


def dead_letter_queue(queue: str) -> str:
    return f"{queue}.dead"


def declare_queues(channel: BlockingChannel, queue: str) -> None:
    """Declare the durable work queue and its dead-letter queue."""
    channel.queue_declare(queue=dead_letter_queue(queue), durable=True)
    channel.queue_declare(
        queue=queue,
        durable=True,
        arguments={
            "x-dead-letter-exchange": "",
            "x-dead-letter-routing-key": dead_letter_queue(queue),
        },
    )


class RabbitMQPublisher(BasePublisher):
    """Publishes persistent messages with publisher confirms.

    pika connections are not thread-safe; publishes are serialized.
    """

    def __init__(self, url: str, queue: str, retry_config: RetryConfig) -> None:
        self._url = url
        self._queue = queue
        self._retry_config = retry_config
        self._lock = threading.Lock()
        self._connection: pika.BlockingConnection | None = None
        self._channel: BlockingChannel | None = None

    def connect(self) -> None:
        with self._lock:
            self._open()

    def close(self) -> None:
        with self._lock:
            self._close_quietly()

    def publish(self, message: ProcessingMessage) -> None:
        with self._lock:
            try:
                channel = self._channel
                if channel is None or channel.is_closed:
                    channel = self._open()
                channel.basic_publish(
                    exchange="",
                    routing_key=self._queue,
                    body=message.to_json(),
                    properties=pika.BasicProperties(
                        content_type="application/json",
                        delivery_mode=pika.DeliveryMode.Persistent,
                        message_id=f"{message.upload_id}:{message.content_hash}",
                        type=message.type,
                    ),
                    mandatory=True,
                )
            except AMQPError as exc:
                self._close_quietly()
                raise PublishError(
                    f"Failed to publish upload {message.upload_id}: {exc!r}"
                ) from exc
        Log.info(f"Published handoff for upload {message.upload_id} ({message.content_hash})")

    def _open(self) -> BlockingChannel:
        self._close_quietly()
        params = pika.URLParameters(self._url)
        connection = retry_with_backoff(
            lambda: pika.BlockingConnection(params),
            config=self._retry_config,
            description="RabbitMQ publisher connect",
            retry_on=(AMQPError,),
        )
        channel = connection.channel()
        declare_queues(channel, self._queue)
        channel.confirm_delivery()
        self._connection = connection
        self._channel = channel
        return channel

    def _close_quietly(self) -> None:
        if self._connection is not None and self._connection.is_open:
            try:
                self._connection.close()
            except AMQPError as exc:
                Log.warning(f"Error closing RabbitMQ publisher connection: {exc!r}")
        self._connection = None
        self._channel = None


class RabbitMQConsumer(BaseConsumer):
    """Consumes the work queue with manual acknowledgements.

    Deliveries are settled through add_callback_threadsafe so job threads
    never touch the channel directly.
    """

    def __init__(
        self,
        url: str,
        queue: str,
        prefetch_count: int,
        retry_config: RetryConfig,
    ) -> None:
        self._url = url
        self._queue = queue
        self._prefetch_count = prefetch_count
        self._retry_config = retry_config
        self._connection: pika.BlockingConnection | None = None
        self._channel: BlockingChannel | None = None

    def connect(self) -> None:
        params = pika.URLParameters(self._url)
        self._connection = retry_with_backoff(
            lambda: pika.BlockingConnection(params),
            config=self._retry_config,
            description="RabbitMQ consumer connect",
            retry_on=(AMQPError,),
        )
        self._channel = self._connection.channel()
        declare_queues(self._channel, self._queue)
        self._channel.basic_qos(prefetch_count=self._prefetch_count)

    def close(self) -> None:
        if self._connection is not None and self._connection.is_open:
            self._connection.close()
        self._connection = None
        self._channel = None

    def consume(self, on_delivery: Callable[[Delivery], None]) -> None:
        if self._connection is None or self._channel is None:
            raise RuntimeError("RabbitMQ consumer not connected. Call connect() first.")
        connection = self._connection
        channel = self._channel

        def on_message(
            ch: BlockingChannel,
            method: Any,
            properties: pika.BasicProperties,
            body: bytes,
        ) -> None:
            tag = method.delivery_tag
            try:
                message = ProcessingMessage.from_json(body)
            except MalformedMessageError as exc:
                Log.error(f"Dead-lettering malformed message {tag}: {exc}")
                ch.basic_nack(delivery_tag=tag, requeue=False)
                return
            on_delivery(
                Delivery(
                    message=message,
                    redelivered=bool(method.redelivered),
                    on_ack=lambda: connection.add_callback_threadsafe(
                        functools.partial(ch.basic_ack, delivery_tag=tag)
                    ),
                    on_nack=lambda requeue: connection.add_callback_threadsafe(
                        functools.partial(ch.basic_nack, delivery_tag=tag, requeue=requeue)
                    ),
                )
            )

        channel.basic_consume(queue=self._queue, on_message_callback=on_message)
        Log.info(f"Consuming from {self._queue} (prefetch {self._prefetch_count})")
        channel.start_consuming()

    def stop(self) -> None:
        if self._connection is not None and self._channel is not None:
            self._connection.add_callback_threadsafe(self._channel.stop_consuming)

    def settle_pending(self) -> None:
        if self._connection is not None and self._connection.is_open:
            self._connection.process_data_events(time_limit=0)
