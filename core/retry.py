"""Retry policy shared by every stage invocation."""

import time
from dataclasses import dataclass, field
from typing import Callable

from pipeline_config.schema import BackoffStrategy, RetryConfig


@dataclass(frozen=True)
class RetryPolicy:
    """Maximum attempts and the delay before each retry.

    ``delay(attempt)`` is the wait after failed attempt ``attempt``
    (1-based): ``base * 2 ** (attempt - 1)`` for exponential backoff,
    ``base * attempt`` for linear, never more than ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")

    @classmethod
    def from_config(cls, config: RetryConfig, sleep: Callable[[float], None] = time.sleep) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            backoff=config.backoff,
            sleep=sleep,
        )

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        if self.backoff == BackoffStrategy.LINEAR:
            raw = self.base_delay * attempt
        else:
            raw = self.base_delay * (2 ** (attempt - 1))
        return min(raw, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts
