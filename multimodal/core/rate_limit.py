"""
Client-side sliding window rate limiter.

Each timestamp of an admitted request is kept for one window; a new request
is admitted only while fewer than `max_requests` timestamps remain inside
the window. Rejection never touches the network: it raises a non-retryable
RATE_LIMIT_EXCEEDED error carrying the time until the oldest request leaves
the window.
"""
import math
import time
from collections import deque
from typing import Callable, Deque, Dict

from multimodal.core.errors import ErrorCode, ProviderError
from multimodal.core.logging import get_logger
from multimodal.core.metrics import record_rate_limit_rejection

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """Allows at most max_requests in any window_seconds interval."""

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._history: Deque[float] = deque()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._history and self._history[0] <= cutoff:
            self._history.popleft()

    def acquire(self) -> None:
        """
        Admit one request or fail fast.

        Raises:
            ProviderError(RATE_LIMIT_EXCEEDED) when the window is full.
        """
        now = self._clock()
        self._evict(now)

        if len(self._history) >= self.max_requests:
            wait_seconds = max(0.0, self._history[0] + self.window_seconds - now)
            record_rate_limit_rejection(self.name)
            logger.warning(
                "rate_limit_exceeded",
                limiter=self.name,
                limit=self.max_requests,
                window_seconds=self.window_seconds,
                retry_after_seconds=round(wait_seconds, 3),
            )
            raise ProviderError(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded. Please wait {math.ceil(wait_seconds)} seconds.",
                retryable=False,
                retry_after_seconds=wait_seconds,
            )

        self._history.append(now)

    def status(self) -> Dict[str, float]:
        """
        Current window state.

        Returns:
            requests_remaining and reset_in_seconds (0 when the window is empty)
        """
        now = self._clock()
        self._evict(now)
        remaining = max(0, self.max_requests - len(self._history))
        reset_in = self._history[0] + self.window_seconds - now if self._history else 0.0
        return {"requests_remaining": remaining, "reset_in_seconds": max(0.0, reset_in)}

    def reset(self) -> None:
        self._history.clear()
