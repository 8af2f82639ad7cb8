"""
Module: delivery/retry.py
Description: Retry policy for failed deliveries.

Implements exponential backoff with jitter and the retry budget check.
The scheduler only decides when the next attempt is due; the
RetrySweeper in delivery.worker re-submits due deliveries.
"""

from datetime import datetime, timedelta
from typing import Optional

from tenacity import RetryCallState, wait_exponential, wait_random

from hookrelay.models.delivery import Delivery
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)


class RetryScheduler:
    """
    Backoff and budget policy.

    ``backoff(n) = min(base * 2**n, max_delay) + uniform(0, base)``

    Attributes:
        base_delay: Base delay in seconds, also the jitter range
        max_delay: Cap on the exponential component in seconds
        jitter: Whether the random component is added

    Example:
        >>> scheduler = RetryScheduler(base_delay=1.0, max_delay=60.0, jitter=False)
        >>> scheduler.backoff(3).total_seconds()
        8.0
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0, jitter: bool = True):
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must be >= base_delay")

        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

        # tenacity numbers attempts from 1, so attempt n+1 waits base * 2**n
        self._wait = wait_exponential(multiplier=base_delay, max=max_delay)
        if jitter:
            self._wait = self._wait + wait_random(0, base_delay)

    def backoff(self, retry_count: int) -> timedelta:
        """
        Delay before the retry that follows ``retry_count`` consumed retries.

        Args:
            retry_count: Retries already consumed (>= 0)

        Returns:
            Positive delay
        """
        if retry_count < 0:
            raise ValueError("retry_count cannot be negative")

        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = retry_count + 1
        return timedelta(seconds=self._wait(state))

    def has_budget(self, delivery: Delivery) -> bool:
        """True if the delivery may be retried once more."""
        return delivery.retry_count < delivery.max_retries

    def next_attempt_at(self, delivery: Delivery, now: datetime) -> Optional[datetime]:
        """
        When the next attempt of a failed delivery is due.

        Returns:
            The due time, or None when the retry budget is exhausted
        """
        if not self.has_budget(delivery):
            return None

        delay = self.backoff(delivery.retry_count)
        logger.debug(
            "Retry scheduled",
            delivery_id=delivery.delivery_id,
            retry_count=delivery.retry_count,
            delay_seconds=delay.total_seconds()
        )
        return now + delay
