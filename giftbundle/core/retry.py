"""
Retrying Caller — exponential backoff with jitter for rate-limited upstreams.

Wraps any single awaitable call (product search, GetItems enrichment,
Anthropic messages) and retries it only when the failure is a provider
rate-limit signal. Any other error propagates on the first occurrence.

Delay before retry n (0-based failed attempt) is 2**n seconds plus up to one
second of uniform jitter, so attempt 0 waits ~1s, attempt 1 ~2s, attempt 2 ~4s.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
RATE_LIMIT_STATUS_CODES = frozenset({429})
RATE_LIMIT_MESSAGES = ("rate limit", "rate-limit", "too many requests", "throttl")


class RateLimitError(Exception):
    """Raised by provider clients when the upstream signals a rate limit."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_rate_limit_error(exc: BaseException) -> bool:
    """
    Classify an exception as a provider rate-limit signal.

    Matches RateLimitError, anything carrying a 429 status code (directly or
    on an attached response, e.g. httpx.HTTPStatusError or anthropic's
    RateLimitError), or a message containing a known rate-limit phrase.
    """
    if isinstance(exc, RateLimitError):
        return True

    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        response = getattr(exc, "response", None)
        status_code = getattr(response, "status_code", None)
    if status_code in RATE_LIMIT_STATUS_CODES:
        return True

    message = str(exc).lower()
    return any(phrase in message for phrase in RATE_LIMIT_MESSAGES)


class RetryingCaller:
    """Generic retry wrapper; one instance can be shared by several clients."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._jitter = jitter

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given 0-based failed attempt."""
        return 2**attempt + self._jitter()

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Await fn(*args, **kwargs), retrying on rate-limit errors.

        Raises:
            The last rate-limit error once max_attempts calls have failed,
            or any non-rate-limit error immediately.
        """
        name = getattr(fn, "__qualname__", repr(fn))
        attempt = 0

        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    raise
                if attempt == self.max_attempts - 1:
                    logger.warning("%s exhausted all %d attempts", name, self.max_attempts)
                    raise

            delay = self.backoff_delay(attempt)
            logger.warning(
                "%s rate limited, retrying in %.1fs (attempt %d/%d)",
                name, delay, attempt + 1, self.max_attempts,
            )
            await self._sleep(delay)
            attempt += 1
