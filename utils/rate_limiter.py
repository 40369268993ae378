"""Rate limiting for calls to the generative reasoning service.

Calls are tracked in a sliding window so a burst of mapping prompts cannot
exceed the provider's quota.
"""

import os
import time
from collections import deque
from threading import Lock
from typing import Optional

from .logging import get_logger

logger = get_logger(__name__)

_PROVIDER_DEFAULTS = {
    "openai": {"max_calls": 60, "time_window": 60.0, "min_interval": 1.0},
    "anthropic": {"max_calls": 50, "time_window": 60.0, "min_interval": 1.2},
    "gemini": {"max_calls": 60, "time_window": 60.0, "min_interval": 1.0},
}


class RateLimitError(Exception):
    """Raised when rate limit is exceeded."""

    pass


class RateLimiter:
    """Sliding-window rate limiter with an optional minimum call spacing."""

    def __init__(
        self,
        max_calls: int = 60,
        time_window: float = 60.0,
        min_interval: Optional[float] = None,
    ):
        self.max_calls = max_calls
        self.time_window = time_window
        self.min_interval = min_interval
        self.call_times: deque = deque()
        self.lock = Lock()
        logger.debug(
            f"RateLimiter initialized: max_calls={max_calls}, "
            f"time_window={time_window}s, min_interval={min_interval}s"
        )

    def _wait_time(self, now: float) -> float:
        cutoff = now - self.time_window
        while self.call_times and self.call_times[0] < cutoff:
            self.call_times.popleft()

        wait = 0.0
        if self.min_interval and self.call_times:
            wait = max(wait, self.min_interval - (now - self.call_times[-1]))
        if len(self.call_times) >= self.max_calls:
            wait = max(wait, self.time_window - (now - self.call_times[0]))
        return wait

    def acquire(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """Acquire permission to make a call.

        Args:
            wait: If True, block until the window allows the call
            timeout: Maximum time to wait in seconds (None = wait indefinitely)

        Returns:
            True if permission granted, False if the wait would exceed timeout

        Raises:
            RateLimitError: If the limit is reached and wait=False
        """
        with self.lock:
            now = time.monotonic()
            wait_time = self._wait_time(now)
            if wait_time > 0:
                if not wait:
                    raise RateLimitError(
                        f"Rate limit exceeded: {self.max_calls} calls per "
                        f"{self.time_window}s. Wait {wait_time:.2f}s"
                    )
                if timeout is not None and wait_time > timeout:
                    logger.warning(
                        f"Rate limit wait time {wait_time:.2f}s exceeds timeout {timeout}s"
                    )
                    return False
                logger.info(f"Rate limit reached. Waiting {wait_time:.2f}s before next call...")
                time.sleep(wait_time)
                now = time.monotonic()
                self._wait_time(now)

            self.call_times.append(now)
            return True

    def reset(self) -> None:
        """Reset rate limiter state."""
        with self.lock:
            self.call_times.clear()


def get_rate_limiter(provider: Optional[str] = None) -> RateLimiter:
    """Build a rate limiter with provider-specific defaults.

    Environment overrides:
    - ETL_LLM_RATE_LIMIT_MAX_CALLS: Maximum calls per window
    - ETL_LLM_RATE_LIMIT_TIME_WINDOW: Window length in seconds
    - ETL_LLM_RATE_LIMIT_MIN_INTERVAL: Minimum spacing between calls

    Args:
        provider: LLM provider name

    Returns:
        Configured RateLimiter instance
    """
    defaults = _PROVIDER_DEFAULTS.get(provider or "", _PROVIDER_DEFAULTS["openai"])

    env_max_calls = os.getenv("ETL_LLM_RATE_LIMIT_MAX_CALLS")
    env_time_window = os.getenv("ETL_LLM_RATE_LIMIT_TIME_WINDOW")
    env_min_interval = os.getenv("ETL_LLM_RATE_LIMIT_MIN_INTERVAL")

    return RateLimiter(
        max_calls=int(env_max_calls) if env_max_calls else defaults["max_calls"],
        time_window=float(env_time_window) if env_time_window else defaults["time_window"],
        min_interval=float(env_min_interval) if env_min_interval else defaults["min_interval"],
    )
