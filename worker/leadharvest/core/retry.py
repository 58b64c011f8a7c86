"""Bounded retry with backoff, returning a tagged result instead of raising."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Outcome(Enum):
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    FAILURE = "failure"


@dataclass(frozen=True)
class RetryResult:
    outcome: Outcome
    attempts: int
    error: Optional[BaseException] = None


def exponential_backoff(base_seconds: float = 2.0, cap_seconds: float = 60.0) -> Callable[[int], float]:
    """Delay after the given 1-based attempt: base, 2*base, 4*base... capped."""

    def _delay(attempt: int) -> float:
        return float(min(base_seconds * 2 ** max(0, attempt - 1), cap_seconds))

    return _delay


def run_with_retry(
    operation: Callable[[], Outcome],
    *,
    max_attempts: int,
    backoff: Callable[[int], float],
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> RetryResult:
    """Call ``operation`` until it reports success or duplicate, or attempts run out.

    ``operation`` signals a retryable failure by returning ``Outcome.FAILURE``
    or raising. No wait follows the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            outcome = operation()
        except Exception as exc:  # noqa: BLE001
            outcome = Outcome.FAILURE
            last_error = exc

        if outcome is not Outcome.FAILURE:
            return RetryResult(outcome=outcome, attempts=attempt)

        if attempt < max_attempts:
            delay = backoff(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label,
                attempt,
                max_attempts,
                last_error,
                delay,
            )
            sleep(delay)

    logger.error("%s failed after %d attempts: %s", label, max_attempts, last_error)
    return RetryResult(outcome=Outcome.FAILURE, attempts=max_attempts, error=last_error)
