from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

DEFAULT_RETRY_DELAYS = (1, 2, 4, 8, 16, 32)  # seconds
MAX_RETRIES = 6


@dataclass(frozen=True)
class RetryDecision:
    new_retry_count: int
    terminal: bool
    next_retry_at: Optional[datetime] = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with a capped delay table and a retry ceiling.

    With the defaults the first failure waits 1s, the second 2s, and so on up
    to 32s; the sixth failure is terminal, so an event spends at most 63s of
    cumulative backoff before it is marked failed.
    """
    delays: Tuple[int, ...] = DEFAULT_RETRY_DELAYS
    max_retries: int = MAX_RETRIES

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(delays=tuple(settings.retry_delays), max_retries=settings.max_retries)

    def next_delay(self, retry_count: int) -> int:
        """Seconds to wait after a failure, given the attempts made before it."""
        if retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        return self.delays[min(retry_count, len(self.delays) - 1)]

    def decide(self, retry_count: int, now: datetime) -> RetryDecision:
        new_retry_count = retry_count + 1
        if new_retry_count >= self.max_retries:
            return RetryDecision(new_retry_count=new_retry_count, terminal=True)

        return RetryDecision(
            new_retry_count=new_retry_count,
            terminal=False,
            next_retry_at=now + timedelta(seconds=self.next_delay(retry_count)),
        )
