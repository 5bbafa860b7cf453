"""
Retry utilities
Sequential async retry with capped exponential backoff.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

SleepFunc = Callable[[float], Awaitable[Any]]


class RetryError(Exception):
    """Raised when every attempt failed"""
    def __init__(self, message: str, last_error: Optional[Exception] = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff schedule for cold-start tolerant fetches.

    The delay between attempt n and n+1 is
    ``min(initial_delay_ms * backoff_multiplier ** (n - 1), max_delay_ms)``.
    """

    max_attempts: int = 5
    initial_delay_ms: int = 2000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay_ms=settings.initial_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            backoff_multiplier=settings.backoff_multiplier,
        )

    def delay_ms(self, attempt: int) -> int:
        """Delay after a failed ``attempt`` (1-based), in milliseconds."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        delay = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        return int(round(min(delay, self.max_delay_ms)))

    def schedule(self) -> List[int]:
        """Every delay that a fully failing run sleeps through."""
        return [self.delay_ms(attempt) for attempt in range(1, self.max_attempts)]


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_attempt: Optional[Callable[[int], None]] = None,
    sleep: SleepFunc = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds or attempts run out.

    Exceptions outside ``retry_on`` propagate immediately. Attempts never
    overlap, and no sleep follows the final attempt.

    Raises:
        RetryError: every attempt failed with a retryable error
    """
    for attempt in range(1, policy.max_attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            result = await operation(attempt)
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    f"Failed to execute {description} after {attempt} attempts: {e}"
                )
                raise RetryError(
                    f"Max attempts ({policy.max_attempts}) exceeded",
                    e,
                    attempt,
                ) from e

            delay_ms = policy.delay_ms(attempt)
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} for {description} failed: {e}. "
                f"Retrying in {delay_ms}ms..."
            )
            await sleep(delay_ms / 1000.0)
            continue

        if attempt > 1:
            logger.info(f"Successfully executed {description} after {attempt} attempts")
        return result

    # max_attempts >= 1 is enforced by RetryPolicy
    raise RetryError("No attempts were made", None, 0)
