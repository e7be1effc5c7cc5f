"""Retry delay strategies.

A failed job becomes due again ``next_delay(retry_count)`` seconds after it
is retried. The strategy only computes delays and the retry ceiling; the
retry itself is an explicit state transition made by the scheduler.

Example:
    >>> from jobspine.jobs.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(base_delay=30.0, max_delay=600.0)
    >>> [strategy.next_delay(n) for n in range(4)]
    [30.0, 60.0, 120.0, 240.0]
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobspine.core.settings import SchedulerSettings


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds, always > 0
        """
        ...

    def should_retry(self, retry_count: int, max_retries: int) -> bool:
        """True while another retry is allowed."""
        return retry_count < max_retries


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    delay: float = 300.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class LinearBackoff(RetryStrategy):
    """Linear backoff strategy.

    Delay = base_delay + (increment * attempt), capped at max_delay
    """

    base_delay: float = 60.0
    increment: float = 60.0
    max_delay: float = 3600.0

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay + (self.increment * attempt), self.max_delay)


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter

    ``jitter_range`` is a fraction of the delay and stays below 1 so the
    delay can never reach zero.
    """

    base_delay: float = 60.0
    max_delay: float = 3600.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def __post_init__(self) -> None:
        if not 0 <= self.jitter_range < 1:
            raise ValueError(f"jitter_range must be in [0, 1), got {self.jitter_range}")

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
        return delay


def strategy_from_settings(settings: SchedulerSettings) -> RetryStrategy:
    """Build the retry strategy selected by ``settings.retry_backoff``."""
    base = settings.retry_delay_seconds
    cap = max(settings.retry_max_delay_seconds, base)
    if settings.retry_backoff == "exponential":
        return ExponentialBackoff(base_delay=base, max_delay=cap)
    if settings.retry_backoff == "linear":
        return LinearBackoff(base_delay=base, increment=base, max_delay=cap)
    return ConstantBackoff(delay=base)
