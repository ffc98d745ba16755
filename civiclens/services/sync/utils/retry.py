"""Retry with exponential backoff for upstream fetches.

Built on tenacity. The wait grows as ``base_delay * 2**n`` for ordinary
failures and ``base_delay * 3**n`` when the failure is classified as rate
limiting, where ``n`` is the zero-based index of the failed attempt. The
classifier is a plain callable so each adapter can plug in its own rules.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt
from tenacity.wait import wait_base

from civiclens.services.sync.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RateLimitClassifier = Callable[[BaseException], bool]

# Messages can embed URLs, so bare status digits are not a marker
RATE_LIMIT_MARKERS = ('rate limit', 'too many requests')


def is_rate_limit_error(error: BaseException) -> bool:
    """Default classifier: HTTP 429 or an explicit rate-limit marker."""
    if isinstance(error, TransportError) and error.status_code is not None:
        return error.status_code == 429
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class wait_backoff(wait_base):
    """tenacity wait strategy switching base between 2 and 3 on rate limits."""

    def __init__(self, base_delay_seconds: float, is_rate_limited: RateLimitClassifier):
        self.base_delay_seconds = base_delay_seconds
        self.is_rate_limited = is_rate_limited

    def __call__(self, retry_state) -> float:
        attempt_index = retry_state.attempt_number - 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        factor = 3 if error is not None and self.is_rate_limited(error) else 2
        return self.base_delay_seconds * (factor ** attempt_index)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay_ms: int = 1000,
    is_rate_limited: Optional[RateLimitClassifier] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()``, retrying up to ``max_retries`` times.

    Args:
        operation: Zero-argument coroutine function to call
        max_retries: Retries after the first attempt
        base_delay_ms: Base delay in milliseconds
        is_rate_limited: Failure classifier (defaults to is_rate_limit_error)
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The operation's result

    Raises:
        The last error once retries are exhausted
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_backoff(base_delay_ms / 1000.0, is_rate_limited or is_rate_limit_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await operation()
