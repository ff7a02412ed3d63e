"""Bounded retry with a constant delay.

Used by every operation that polls for eventual readiness (engine daemon
startup, gateway reachability). The delay between attempts is constant.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Retry bounds for a polling operation.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1)
        delay: Seconds to sleep between attempts
    """

    max_attempts: int
    delay: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    @property
    def ceiling(self) -> float:
        """Approximate worst-case wait in seconds."""
        return (self.max_attempts - 1) * self.delay


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation.

    Attributes:
        value: Value returned by the last attempt
        succeeded: Whether the last attempt satisfied the success predicate
        attempts: Number of attempts made
    """

    value: T
    succeeded: bool
    attempts: int


async def retry_until(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    succeeded: Callable[[T], bool] = bool,
    on_retry: Callable[[int, T], None] | None = None,
    label: str = "operation",
) -> RetryOutcome[T]:
    """Run an operation until it succeeds or attempts are exhausted.

    Args:
        operation: Async callable producing a result
        config: Attempt count and delay
        succeeded: Predicate deciding whether a result is a success
        on_retry: Optional callback invoked with (attempt, result) before sleeping
        label: Name used in log messages

    Returns:
        RetryOutcome holding the first successful result, or the last
        failure once attempts are exhausted
    """
    result = await operation()
    attempt = 1

    while not succeeded(result) and attempt < config.max_attempts:
        if on_retry is not None:
            on_retry(attempt, result)
        logger.debug(
            f"{label} not ready (attempt {attempt}/{config.max_attempts}), "
            f"retrying in {config.delay}s"
        )
        await asyncio.sleep(config.delay)
        result = await operation()
        attempt += 1

    ok = succeeded(result)
    if not ok:
        logger.info(f"{label} still failing after {attempt} attempts")
    return RetryOutcome(value=result, succeeded=ok, attempts=attempt)
