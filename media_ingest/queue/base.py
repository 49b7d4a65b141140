from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from media_ingest.queue.messages import ProcessingMessage


@dataclass
class Delivery:
    """One received message plus the callbacks that settle it."""

    message: ProcessingMessage
    redelivered: bool
    on_ack: Callable[[], None]
    on_nack: Callable[[bool], None]

    def ack(self) -> None:
        self.on_ack()

    def nack(self, requeue: bool) -> None:
        self.on_nack(requeue)


class BasePublisher(ABC):
    """Contract for handoff publishers."""

    def connect(self) -> None:
        """Open the broker connection."""

    def close(self) -> None:
        """Close the broker connection."""

    @abstractmethod
    def publish(self, message: ProcessingMessage) -> None:
        """Publish persistently.

        Raises:
            PublishError: if the broker did not confirm the message.
        """


class BaseConsumer(ABC):
    """Contract for handoff consumers."""

    def connect(self) -> None:
        """Open the broker connection."""

    def close(self) -> None:
        """Close the broker connection."""

    @abstractmethod
    def consume(self, on_delivery: Callable[[Delivery], None]) -> None:
        """Block, passing each delivery to on_delivery, until stop() is called.

        on_delivery may settle the delivery from any thread.
        """

    @abstractmethod
    def stop(self) -> None:
        """Ask a running consume() to return. Safe to call from any thread."""

    def settle_pending(self) -> None:
        """Flush acks/nacks issued after consume() returned."""
