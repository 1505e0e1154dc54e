"""
Retry with exponential backoff and jitter for every remote call.

Only errors the classifier marks transient are retried; anything else is
re-raised on the first attempt. The delay before retry ``n`` (0-based) is
``min(base * 2**n * U(0.8, 1.2), max)``.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from campus_eats.core.error_classifier import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_LOW = 0.8
JITTER_HIGH = 1.2


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 3
    base_delay_ms: float = 300
    max_delay_ms: float = 4000

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            retries=settings.RETRY_ATTEMPTS,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
        )


DEFAULT_POLICY = RetryPolicy()


class wait_jittered_exponential(wait_base):
    """tenacity wait strategy; returns seconds."""

    def __init__(self, base_delay_ms: float, max_delay_ms: float, jitter: Callable[[float, float], float] = random.uniform):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter

    def delay_ms(self, attempt: int) -> float:
        factor = self.jitter(JITTER_LOW, JITTER_HIGH)
        return min(self.base_delay_ms * (2 ** attempt) * factor, self.max_delay_ms)

    def __call__(self, retry_state) -> float:
        # attempt_number is 1 after the first failure
        return self.delay_ms(retry_state.attempt_number - 1) / 1000.0


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    jitter: Callable[[float, float], float] = random.uniform,
) -> T:
    """Run ``operation`` and retry transient failures per ``policy``.

    ``operation`` is re-invoked from scratch on every attempt, so it must be
    safe to repeat (reads, conditional updates, inserts keyed by a
    client-generated id).
    """
    policy = policy or DEFAULT_POLICY
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.retries + 1),
        wait=wait_jittered_exponential(policy.base_delay_ms, policy.max_delay_ms, jitter),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result


async def run_blocking(fn: Callable[..., T], *args, policy: Optional[RetryPolicy] = None, **kwargs) -> T:
    """Retry a blocking repository call, executing each attempt off the event loop."""
    return await with_retry(lambda: asyncio.to_thread(fn, *args, **kwargs), policy)
