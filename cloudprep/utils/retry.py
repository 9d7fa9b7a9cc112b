"""
Retry and backoff utilities for calls that race provider-side eventual consistency.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Type

from cloudprep.errors import TransientProviderError

logger = logging.getLogger(__name__)


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    """Return a backoff function that always waits the same amount.

    Args:
        seconds: Delay between attempts in seconds.

    Returns:
        Function mapping a zero-based attempt index to a delay.
    """
    return lambda attempt: seconds


def exponential_backoff(initial: float, factor: float, cap: float) -> Callable[[int], float]:
    """Return a backoff function growing by ``factor`` each attempt, capped at ``cap``.

    Args:
        initial: Delay after the first failure, in seconds.
        factor: Multiplier applied after each further failure.
        cap: Upper bound for a single delay, in seconds.

    Returns:
        Function mapping a zero-based attempt index to a delay.
    """
    return lambda attempt: min(initial * (factor ** attempt), cap)


def retry_on(*exceptions: Type[BaseException]) -> Callable[[BaseException], bool]:
    """Build a retryable predicate matching the given exception types."""
    return lambda exc: isinstance(exc, exceptions)


@dataclass(frozen=True)
class RetryPolicy:
    """How often, how long and on which errors to retry a call."""

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default=fixed_backoff(1.0))
    retryable: Callable[[BaseException], bool] = field(default=retry_on(Exception))
    sleep: Callable[[float], Any] = field(default=time.sleep)

    def run(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call ``fn`` until it succeeds, the error is not retryable or attempts run out.

        The last error is re-raised unchanged.
        """
        attempt = 0
        while True:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                attempt += 1
                name = getattr(fn, "__name__", repr(fn))
                if not self.retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(f"All {self.max_attempts} retry attempts for {name} failed: {e}")
                    raise

                delay = self.backoff(attempt - 1)
                logger.warning(f"Attempt {attempt}/{self.max_attempts} for {name} failed: {e}. Retrying in {delay:.2f}s")
                self.sleep(delay)


def with_retries(fn: Callable[..., Any], policy: RetryPolicy, *args, **kwargs) -> Any:
    """Run ``fn`` under ``policy``."""
    return policy.run(fn, *args, **kwargs)


# Accepting a peering and creating its routes race the peering becoming visible.
PEERING_RETRY = RetryPolicy(max_attempts=3, backoff=fixed_backoff(10.0), retryable=retry_on(TransientProviderError))
