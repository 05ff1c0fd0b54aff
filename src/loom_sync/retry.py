"""Bounded exponential backoff for gateway calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for one bounded retry loop.

    Attributes:
        attempts (int): Total attempts, including the first.
        base_delay (float): Delay in seconds after the first failure.
        factor (float): Multiplier applied to the delay after each failure.
    """

    attempts: int = 2
    base_delay: float = 1.0
    factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given 0-indexed failed attempt."""
        return max(0.0, self.base_delay * (self.factor**attempt))


class RetryExhausted(Exception):
    """All attempts of a retry loop failed."""

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Retry exhausted after {attempts} attempts: {last_error}")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
    fatal: tuple[type[Exception], ...] = (),
) -> T:
    """Awaits `func` until it succeeds or the policy's attempts run out.

    Args:
        func (Callable): Zero-argument coroutine factory, called once per attempt.
        policy (RetryPolicy): Attempt cap and backoff schedule.
        description (str): Included in log lines for diagnosis.
        fatal (tuple): Exception types re-raised at once, without retrying.

    Returns:
        The result of the first successful attempt.

    Raises:
        RetryExhausted: If every attempt raised.
    """
    attempts = max(1, policy.attempts)
    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except fatal:
            raise
        except Exception as e:
            last_error = e
            if attempt + 1 >= attempts:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                f"RETRY {description}: attempt {attempt + 1}/{attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)

    assert last_error is not None
    raise RetryExhausted(attempts, last_error)
