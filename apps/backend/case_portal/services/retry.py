"""Bounded retry with exponential backoff for transient DMS failures."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from case_portal.config import settings
from case_portal.logger import get_logger
from case_portal.services.errors import TransientNetworkError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a transient failure gets and how long to wait between them."""

    max_attempts: int
    base_delay: float
    max_delay: float
    jitter: float = 0.1

    @classmethod
    def from_settings(cls, max_attempts: int | None = None) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts or settings.sync_max_retries,
            base_delay=settings.sync_backoff_base_seconds,
            max_delay=settings.sync_backoff_max_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter and delay:
            delay += random.uniform(0, delay * self.jitter)
        return delay


class RetryOutcome:
    """Mutable attempt counter shared with the caller for reporting."""

    def __init__(self) -> None:
        self.attempts = 0


async def call_with_retries(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    outcome: RetryOutcome | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run func, retrying only TransientNetworkError up to policy.max_attempts.

    Any other exception propagates immediately. The last TransientNetworkError
    is re-raised once attempts are exhausted.
    """
    tracker = outcome or RetryOutcome()
    while True:
        tracker.attempts += 1
        try:
            return await func()
        except TransientNetworkError as exc:
            if tracker.attempts >= policy.max_attempts:
                logger.warning(
                    "Retry budget exhausted",
                    operation=operation,
                    attempts=tracker.attempts,
                    error=str(exc),
                )
                raise
            delay = policy.delay_for(tracker.attempts)
            logger.info(
                "Transient failure, retrying",
                operation=operation,
                attempt=tracker.attempts,
                delay_seconds=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
