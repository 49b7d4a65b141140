import itertools
import threading
from collections import deque
from collections.abc import Callable

from media_ingest.queue.base import BaseConsumer, BasePublisher, Delivery
from media_ingest.queue.messages import ProcessingMessage


class InMemoryBroker(BasePublisher, BaseConsumer):
    """Process-local queue with ack/nack semantics for single-node runs and tests.

    Unacknowledged deliveries are tracked; nack(requeue=True) puts the message
    back at the tail flagged as redelivered, nack(requeue=False) moves it to
    dead_letters.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._ready: deque[tuple[ProcessingMessage, bool]] = deque()
        self._unacked: dict[int, ProcessingMessage] = {}
        self._tags = itertools.count(1)
        self._stopping = False
        self.dead_letters: list[ProcessingMessage] = []
        self.published: list[ProcessingMessage] = []

    def publish(self, message: ProcessingMessage) -> None:
        with self._condition:
            self.published.append(message)
            self._ready.append((message, False))
            self._condition.notify_all()

    def consume(self, on_delivery: Callable[[Delivery], None]) -> None:
        with self._condition:
            self._stopping = False
        while True:
            with self._condition:
                while not self._ready and not self._stopping:
                    self._condition.wait()
                if self._stopping:
                    return
                message, redelivered = self._ready.popleft()
                tag = next(self._tags)
                self._unacked[tag] = message
            on_delivery(
                Delivery(
                    message=message,
                    redelivered=redelivered,
                    on_ack=lambda tag=tag: self._ack(tag),
                    on_nack=lambda requeue, tag=tag: self._nack(tag, requeue),
                )
            )

    def stop(self) -> None:
        with self._condition:
            self._stopping = True
            self._condition.notify_all()

    def pending(self) -> int:
        """Messages waiting for delivery."""
        with self._condition:
            return len(self._ready)

    def unacked(self) -> int:
        with self._condition:
            return len(self._unacked)

    def _ack(self, tag: int) -> None:
        with self._condition:
            self._unacked.pop(tag, None)

    def _nack(self, tag: int, requeue: bool) -> None:
        with self._condition:
            message = self._unacked.pop(tag, None)
            if message is None:
                return
            if requeue:
                self._ready.append((message, True))
                self._condition.notify_all()
            else:
                self.dead_letters.append(message)
