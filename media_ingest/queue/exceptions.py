class QueueError(Exception):
    """Base exception for queue consumption errors."""


class MalformedMessageError(QueueError):
    """Raised when a delivered body is not a valid processing message."""
