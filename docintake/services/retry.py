"""Bounded retry policy for provider calls."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from docintake.core.config import settings
from docintake.core.exceptions import TransientProviderError

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """
    Retry a coroutine function on transient errors with exponential backoff.

    Usage:
        policy = RetryPolicy(max_attempts=3, initial_delay=0.5)
        text = await policy.run(provider.extract_text, document, label="ocr")

    Only exceptions listed in retry_on are retried; anything else propagates on
    the first attempt. After max_attempts the last error is re-raised.
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 10.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientProviderError,)
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        return min(self.max_delay, self.initial_delay * (self.multiplier ** (attempt - 1)))

    async def run(
        self,
        fn: Callable[..., Awaitable[Any]],
        *args,
        label: str = "call",
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        **kwargs,
    ) -> Any:
        attempt = 1
        while True:
            try:
                return await fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    logger.warning("%s failed after %d attempt(s): %s", label, attempt, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.info("%s attempt %d failed (%s); retrying in %.2fs", label, attempt, exc, delay)
                if on_retry is not None:
                    on_retry(attempt, exc)
                await self.sleep(delay)
                attempt += 1
