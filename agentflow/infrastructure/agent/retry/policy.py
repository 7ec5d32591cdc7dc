"""Fixed-delay retry policy for model calls.

Every retry layer of the execution loop (chain call, simple chain call) shares
the same shape: a fixed ceiling of attempts and a fixed delay between them.
Cancellation always wins over backoff: ``asyncio.CancelledError`` raised while
waiting propagates unchanged and no further attempt is made.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class FixedDelayRetryPolicy:
    """
    Bounded retry with a constant pause between attempts.

    Example:
        policy = FixedDelayRetryPolicy(max_attempts=3, delay_seconds=5.0)

        for attempt in policy.attempts():
            try:
                return await call_model()
            except Exception as e:
                last_error = e
                if policy.is_last(attempt):
                    break
                await policy.wait()
    """

    MAX_ATTEMPTS = 3
    DELAY_SECONDS = 5.0

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        delay_seconds: float = DELAY_SECONDS,
    ) -> None:
        """
        Initialize retry policy.

        Args:
            max_attempts: Number of calls before giving up
            delay_seconds: Pause after a failed call
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {delay_seconds}")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds

    def attempts(self) -> range:
        """Attempt indexes, starting at 0."""
        return range(self.max_attempts)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts - 1

    async def wait(self) -> None:
        """Sleep for the retry delay; cancellation propagates immediately."""
        try:
            await asyncio.sleep(self.delay_seconds)
        except asyncio.CancelledError:
            logger.info("[RetryPolicy] Cancelled while waiting for retry")
            raise
