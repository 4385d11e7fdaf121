"""ADSYNC — Retry Policy.

The single place that decides whether, and after how long, a failed
platform call is tried again. Platform clients raise classified errors and
never retry on their own; the orchestrator wraps each fetch in ``run``.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from adsync.config import settings
from adsync.core.errors import (
    PlatformRateLimitError,
    PlatformTransientError,
)
from adsync.core.logging import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")


class RetryPolicy:
    """Bounded exponential backoff for rate-limit and transient failures.

    ``*_attempts`` count every try, so ``transient_attempts=2`` means one
    retry. Auth errors, validation errors and anything else are raised on
    the first failure.
    """

    def __init__(
        self,
        rate_limit_attempts: int = 3,
        transient_attempts: int = 2,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate_limit_attempts = max(rate_limit_attempts, 1)
        self.transient_attempts = max(transient_attempts, 1)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            rate_limit_attempts=settings.retry_rate_limit_attempts,
            transient_attempts=settings.retry_transient_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, (PlatformRateLimitError, PlatformTransientError))

    def attempts_for(self, exc: BaseException) -> int:
        if isinstance(exc, PlatformRateLimitError):
            return self.rate_limit_attempts
        if isinstance(exc, PlatformTransientError):
            return self.transient_attempts
        return 1

    def delay_for(self, attempt: int, exc: Optional[BaseException] = None) -> float:
        """Backoff before try ``attempt + 1``; a server ``retry_after`` wins."""
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            return min(float(retry_after), self.max_delay)
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "") -> T:
        """Await ``operation()`` until it succeeds or the budget is spent."""
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.attempts_for(e):
                    raise
                wait = self.delay_for(attempt, e)
                logger.warning(
                    f"{label or 'operation'} failed ({e.code}: {e}). "
                    f"Retrying in {wait}s (attempt {attempt}/{self.attempts_for(e)})",
                    extra={"attempt": attempt},
                )
                await self._sleep(wait)
                attempt += 1
