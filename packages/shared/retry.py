"""
Bounded retry with exponential backoff.

The policy only decides *how often* and *how long to wait*; whether a given
failure deserves another attempt is decided by a caller-supplied classifier.
What to do after the attempts run out is left to the caller, which receives a
RetryExhaustedError.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

from packages.shared.errors import RetryExhaustedError, UpstreamOverloadedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryDecision(str, Enum):
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt: base, 2x base, 4x base, ..."""
        return self.base_delay_seconds * (self.multiplier ** (attempt - 1))


def retry_on_overload(exc: Exception) -> RetryDecision:
    if isinstance(exc, UpstreamOverloadedError):
        return RetryDecision.RETRY
    return RetryDecision.FAIL


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    classify: Callable[[Exception], RetryDecision] = retry_on_overload,
    *,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """
    Run *fn* until it succeeds, the classifier says FAIL (the exception is
    re-raised unchanged), or *policy.max_attempts* is reached (raises
    RetryExhaustedError carrying the last exception).
    """
    last_error: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if classify(exc) is RetryDecision.FAIL:
                raise
            last_error = exc
            logger.warning(f"{label} failed with retryable error (attempt {attempt}/{policy.max_attempts}): {exc}")
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.info(f"{label}: retrying in {delay:.1f}s")
                sleep(delay)

    raise RetryExhaustedError(
        f"{label} still failing after {policy.max_attempts} attempts",
        attempts=policy.max_attempts,
        last_error=last_error,
    )
