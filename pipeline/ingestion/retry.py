"""
Retry policy shared by every source adapter.

Only TransientSourceError is retried. Delays grow geometrically:
base_delay * backoff_factor ** (attempt - 1), capped at max_delay.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from pipeline.errors import TransientSourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0       # seconds
    backoff_factor: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.backoff_factor < 1:
            raise ValueError("base_delay must be >= 0 and backoff_factor >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (self.backoff_factor ** (attempt - 1)))


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` until it succeeds, raises a non-transient error, or the
    policy's attempts are exhausted.

    Args:
        operation: Factory returning a fresh awaitable per attempt.
        policy: Attempt count and backoff schedule.
        label: Name used in log lines.
        sleep: Injected for tests.

    Raises:
        TransientSourceError: The last transient error once attempts run out.
        Any other exception raised by `operation`, immediately.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except TransientSourceError as exc:
            if attempt >= policy.max_attempts:
                logger.warning(
                    "%s failed after %d attempt(s): %s", label, attempt, exc.reason
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                label, exc.reason, delay, attempt, policy.max_attempts,
            )
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
