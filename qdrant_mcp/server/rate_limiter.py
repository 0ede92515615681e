"""Rate limiting for tool invocations.

Sliding-window log per key, where a key is normally ``"<tool>:<cluster>"``.
Admission already granted is never refunded, even if the backend call that
follows times out or is cancelled.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from ..errors import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    window_ms: int = 1000
    max_requests: int = 10
    enable_rate_limiting: bool = True


class RateLimiter:
    """In-memory rate limiter with sliding window.

    Each key keeps the timestamps of the calls admitted inside the trailing
    window. Old timestamps are dropped lazily when the key is consulted.
    The prune, check and append for one call happen under a single lock, so
    concurrent callers for the same key cannot jointly exceed the cap.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        _clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize rate limiter.

        Args:
            config: Rate limiting configuration.
            _clock: Monotonic time source in seconds. Tests inject a fake.
        """
        self.config = config
        self._clock = _clock or time.monotonic
        self._lock = threading.Lock()
        self.buckets: Dict[str, Deque[float]] = {}
        logger.info(
            "rate_limiter.init",
            extra={
                "window_ms": config.window_ms,
                "max_requests": config.max_requests,
                "enabled": config.enable_rate_limiting,
            },
        )

    def consume(self, key: str) -> None:
        """Admit one call for ``key`` or raise.

        A bucket is created only when a call for ``key`` is admitted.

        Raises:
            RateLimitExceededError: ``max_requests`` calls were already
                admitted for ``key`` within the last ``window_ms``. The
                bucket is left untouched.
        """
        if not self.config.enable_rate_limiting:
            return

        with self._lock:
            now = self._clock()
            window_start = now - self.config.window_ms / 1000.0
            bucket = self.buckets.get(key)
            if bucket is not None:
                self._clean_old_entries(bucket, window_start)

            if bucket and len(bucket) >= self.config.max_requests:
                retry_after_ms = int((bucket[0] - window_start) * 1000)
                logger.warning(
                    "rate_limiter.rejected",
                    extra={
                        "key": key,
                        "requests": len(bucket),
                        "limit": self.config.max_requests,
                        "window_ms": self.config.window_ms,
                        "retry_after_ms": retry_after_ms,
                    },
                )
                raise RateLimitExceededError(
                    key, self.config.max_requests, self.config.window_ms
                )
            if bucket is None:
                bucket = deque()
                self.buckets[key] = bucket
            bucket.append(now)

    def describe(self) -> Dict[str, object]:
        """Configured window and limit, for capabilities and metadata."""
        return {
            "window_ms": self.config.window_ms,
            "max_requests": self.config.max_requests,
            "enabled": self.config.enable_rate_limiting,
        }

    @staticmethod
    def _clean_old_entries(bucket: Deque[float], window_start: float) -> None:
        """Remove timestamps strictly older than the window start."""
        while bucket and bucket[0] < window_start:
            bucket.popleft()
