"""
Retry and backoff decisions for failed job attempts.

``RetryController.decide`` turns a handler exception into one of three
actions; the worker applies it through the store:

    ┌──────────────────────────────────────┬──────────────────────────────┐
    │ condition                            │ action                        │
    ├──────────────────────────────────────┼──────────────────────────────┤
    │ ConfigurationError                   │ FAIL    (job → failed)        │
    │ non-retryable ConveyorError          │ DEAD    (job → dead)          │
    │ attempts >= max_attempts             │ DEAD                          │
    │ anything else                        │ REQUEUE after backoff delay   │
    └──────────────────────────────────────┴──────────────────────────────┘

Backoff delay after the n-th attempt (1-based)::

    min(backoff_ms * multiplier ** (n - 1), max_delay_ms)

Example:
    >>> policy = ExponentialBackoff(max_delay_ms=3_600_000)
    >>> policy.next_delay_ms(attempt=3, base_delay_ms=1000)
    4000
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from conveyor.core.errors import ConfigurationError, ConveyorError
from conveyor.core.timestamps import Clock, add_ms, utc_now
from conveyor.execution.models import Job

DEFAULT_MAX_DELAY_MS = 3_600_000


@dataclass
class ExponentialBackoff:
    """Exponential backoff in milliseconds with optional jitter.

    Attributes:
        max_delay_ms: Cap on any single delay (default one hour)
        multiplier: Growth factor per attempt
        jitter: Spread delays by ±``jitter_range`` to avoid retry storms
        jitter_range: Fraction of the delay used as jitter (0.0-1.0)
    """

    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay_ms(self, attempt: int, base_delay_ms: int) -> int:
        """Delay before the attempt that follows attempt number ``attempt``."""
        exponent = max(attempt - 1, 0)
        delay = min(base_delay_ms * (self.multiplier ** exponent), self.max_delay_ms)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return int(delay)


class RetryAction(str, Enum):
    REQUEUE = "requeue"
    DEAD = "dead"
    FAIL = "fail"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    reason: str
    delay_ms: int = 0
    retry_at: datetime | None = None


class RetryController:
    """Classifies a failed attempt and computes when it may run again."""

    def __init__(self, backoff: ExponentialBackoff | None = None, *, clock: Clock = utc_now):
        self.backoff = backoff or ExponentialBackoff()
        self._clock = clock

    def decide(self, job: Job, error: BaseException) -> RetryDecision:
        """Decide the fate of ``job`` whose current attempt raised ``error``.

        ``job.attempts`` already counts the failed attempt.
        """
        if isinstance(error, ConfigurationError):
            return RetryDecision(RetryAction.FAIL, reason="configuration error")
        if isinstance(error, ConveyorError) and not error.retryable:
            return RetryDecision(RetryAction.DEAD, reason="non-retryable error")
        if job.attempts >= job.max_attempts:
            return RetryDecision(RetryAction.DEAD, reason="attempts exhausted")

        delay_ms = self.backoff.next_delay_ms(job.attempts, job.backoff_ms)
        if isinstance(error, ConveyorError) and error.retry_after:
            delay_ms = max(delay_ms, error.retry_after * 1000)
        return RetryDecision(
            RetryAction.REQUEUE,
            reason="retry scheduled",
            delay_ms=delay_ms,
            retry_at=add_ms(self._clock(), delay_ms),
        )


def format_error(error: BaseException) -> str:
    """Error message stored on the job record."""
    message = str(error)
    if isinstance(error, ConveyorError):
        return message
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


__all__ = [
    "DEFAULT_MAX_DELAY_MS",
    "ExponentialBackoff",
    "RetryAction",
    "RetryDecision",
    "RetryController",
    "format_error",
]
