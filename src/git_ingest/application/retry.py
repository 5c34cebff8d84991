"""Retry policy for GitHub calls that hit the rate limit."""

import logging
import threading
import time
from typing import Any, Callable, Optional

from git_ingest.infrastructure.github_client import RateLimitExceeded

logger = logging.getLogger(__name__)


class RetryAborted(Exception):
    """Raised when a rate-limited call is given up on before it succeeds."""
    pass


class RateLimitRetryPolicy:
    """Repeat a call until it stops being rate limited.

    On RateLimitExceeded the policy waits until the reported reset epoch (plus a
    small buffer) and issues the identical call again. Any other exception is
    propagated immediately. With the defaults the loop never gives up; a
    max_attempts cap or a cancel_event can be supplied to bound it.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        buffer_seconds: float = 1.0,
        max_attempts: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize retry policy.

        Args:
            clock: Returns the current epoch in seconds
            sleep: Suspends the calling thread for the given seconds
            buffer_seconds: Extra wait added after the reset epoch
            max_attempts: Give up after this many rate-limited attempts. None retries forever.
            cancel_event: When set, any pending wait is abandoned
        """
        self.clock = clock
        self.sleep = sleep
        self.buffer_seconds = buffer_seconds
        self.max_attempts = max_attempts
        self.cancel_event = cancel_event

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Invoke func, waiting out rate limits between attempts.

        Returns:
            Whatever func returns on its first non rate-limited attempt

        Raises:
            RetryAborted: If max_attempts is reached or cancel_event is set
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except RateLimitExceeded as e:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise RetryAborted(
                        f"Still rate limited after {attempt} attempts"
                    ) from e
                wait_time = max(e.reset_at - self.clock(), 0) + self.buffer_seconds
                logger.warning(
                    f"Rate limited (attempt {attempt}). Waiting {wait_time:.0f} seconds..."
                )
                self._wait(wait_time)

    def _wait(self, seconds: float):
        if self.cancel_event is None:
            self.sleep(seconds)
            return
        if self.cancel_event.wait(seconds):
            raise RetryAborted("Cancelled while waiting for rate limit reset")
