"""
Retry policy for rate-limited external calls.

Bounded exponential backoff that only retries quota / rate-limit failures
(HTTP 429, RESOURCE_EXHAUSTED). Any other error propagates on the first
attempt. No jitter and no circuit breaker.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Optional, Callable, TypeVar, Any, Awaitable

from autolearn_agent.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "RESOURCEEXHAUSTED", "TOO MANY REQUESTS")

# A standalone 429, not one buried in an id or a byte count
HTTP_429_RE = re.compile(r"(?<![\w.])429(?!\w|\.\d)")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    initial_delay: float = 2.0  # seconds
    multiplier: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds after the given zero-based attempt (2s, 4s, 8s, ...)."""
        return self.initial_delay * (self.multiplier ** attempt)


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryExhaustedError(Exception):
    """Raised when every attempt failed with a quota error."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All {attempts} retry attempts exhausted{detail}")


def is_quota_error(error: BaseException) -> bool:
    """Check whether an error is a quota / rate-limit failure."""
    for attr in ("code", "status_code"):
        if getattr(error, attr, None) == 429:
            return True

    text = str(error).upper()
    if HTTP_429_RE.search(text):
        return True
    return any(marker in text for marker in QUOTA_MARKERS)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """
    Execute an async function, backing off on quota errors.

    Args:
        func: Async function to execute
        *args: Function arguments
        policy: Retry policy configuration
        on_retry: Callback before each backoff sleep (attempt, error, delay)
        sleep: Awaitable sleep used between attempts
        **kwargs: Function keyword arguments

    Returns:
        Function result

    Raises:
        RetryExhaustedError: If every attempt hit a quota error
        Exception: The original error for any non-quota failure
    """
    policy = policy or DEFAULT_RETRY_POLICY
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            last_error = e

            if not is_quota_error(e):
                logger.debug(
                    "Non-retryable error",
                    error=str(e),
                    attempt=attempt + 1,
                )
                raise

            if attempt >= policy.max_attempts - 1:
                break

            delay = policy.get_delay(attempt)

            logger.warning(
                "Quota reached, retry scheduled",
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=str(e),
            )

            if on_retry:
                on_retry(attempt + 1, e, delay)

            await sleep(delay)

    raise RetryExhaustedError(policy.max_attempts, last_error) from last_error
