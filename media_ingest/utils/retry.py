import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from media_ingest.config.settings import Settings
from media_ingest.logging.logger import Log

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Bounded exponential backoff with full jitter."""

    max_attempts: int = 5
    initial_delay: float = 0.5
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.connect_max_attempts,
            initial_delay=settings.connect_initial_delay_seconds,
            max_delay=settings.connect_max_delay_seconds,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Upper bound of the sleep after the given 1-indexed attempt."""
        if attempt < 1:
            return self.initial_delay
        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    config: RetryConfig,
    description: str,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run operation, retrying on the given exceptions.

    Raises the last exception once max_attempts is exhausted.
    """
    attempt = 1
    while True:
        try:
            return operation()
        except retry_on as exc:
            if attempt >= config.max_attempts:
                Log.error(f"{description} failed after {attempt} attempts: {exc}")
                raise
            delay = random.uniform(0, config.calculate_delay(attempt))
            Log.warning(
                f"{description} failed (attempt {attempt}/{config.max_attempts}), "
                f"retrying in {delay:.2f}s: {exc}"
            )
            sleep(delay)
            attempt += 1
