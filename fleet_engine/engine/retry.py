# fleet_engine/engine/retry.py
"""Bounded exponential backoff for transient phase failures."""

import logging
import time
from dataclasses import dataclass, field
from threading import Event
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """
    Retry policy for transient failures.

    Features:
    - Exponential backoff (10s, 30s, 90s with the defaults)
    - Max 3 retries, then the failure escalates to fatal
    - Sleep interrupted by cancellation
    """

    max_retries: int = 3
    base_delay: float = 10.0
    factor: float = 3.0
    max_delay: float = 300.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            factor=settings.retry_factor,
            max_delay=settings.retry_max_delay,
        )

    def should_retry(self, attempt: int) -> bool:
        """`attempt` is the 1-based attempt that just failed."""
        return attempt <= self.max_retries

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (self.factor ** (attempt - 1))
        return min(delay, self.max_delay)

    def wait(self, attempt: int, cancel: Optional[Event] = None) -> bool:
        """
        Sleep before the next attempt.

        Returns:
            False if cancelled while waiting
        """
        delay = self.delay_for(attempt)
        if cancel is not None:
            return not cancel.wait(delay)
        self.sleep(delay)
        return True
