"""
Retry utilities for Cardflow.

Two flavours of backoff live here:
- RetryPolicy: declarative per-step policy. Delays are not slept in
  process; the pipeline reschedules the step through the job queue.
- with_retries: in-process exponential backoff for short HTTP calls.
"""

import asyncio
import contextlib
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")


# =============================================================================
# Step retry policies
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for a pipeline step.

    ``max_attempts`` counts the first try. With an explicit ``schedule_ms``
    the n-th retry waits ``schedule_ms[n-1]`` (the last entry repeats);
    otherwise the delay is ``initial_backoff_ms * base ** (attempt - 1)``.
    """

    max_attempts: int
    initial_backoff_ms: int
    base: float
    schedule_ms: tuple[int, ...] = ()

    def delay_ms(self, attempt: int) -> int:
        """Delay before the attempt following ``attempt`` (1-based)."""
        if self.schedule_ms:
            index = min(attempt - 1, len(self.schedule_ms) - 1)
            return self.schedule_ms[index]
        return int(self.initial_backoff_ms * self.base ** (attempt - 1))

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


CLASSIFICATION_RETRY = RetryPolicy(max_attempts=8, initial_backoff_ms=400, base=1.8)
CATEGORIZATION_RETRY = RetryPolicy(max_attempts=5, initial_backoff_ms=1200, base=1.6)
METADATA_RETRY = RetryPolicy(
    max_attempts=4,
    initial_backoff_ms=5_000,
    base=6.0,
    schedule_ms=(5_000, 30_000, 120_000),
)
RENDERABLES_RETRY = RetryPolicy(max_attempts=3, initial_backoff_ms=1_000, base=2.0)
START_PIPELINE_RETRY = RetryPolicy(max_attempts=5, initial_backoff_ms=2_000, base=2.0)


# =============================================================================
# In-process HTTP retries
# =============================================================================

# Exceptions that should trigger a retry
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.PoolTimeout,
)

STATUS_TOO_MANY_REQUESTS = 429

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


async def with_retries(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    backoff_base: float = 1.0,
    backoff_max: float = 10.0,
    jitter: float = 0.1,
    retry_on: tuple = RETRYABLE_EXCEPTIONS,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with exponential backoff retries.

    Responses with a retryable status code are retried as well; the last
    such response is returned once attempts run out.

    Raises:
        Last exception if all attempts fail
    """
    log = logger.bind(func=getattr(func, "__name__", "call"), max_attempts=max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except retry_on as e:
            if attempt >= max_attempts:
                log.error("all_retry_attempts_failed", error=str(e), attempts=max_attempts)
                raise
            delay = min(backoff_base * (2 ** (attempt - 1)), backoff_max)
            delay *= 1 + random.uniform(-jitter, jitter)
            log.warning("retry_after_exception", error=str(e), attempt=attempt, delay=round(delay, 2))
            await asyncio.sleep(delay)
            continue

        if (
            isinstance(result, httpx.Response)
            and result.status_code in RETRYABLE_STATUS_CODES
            and attempt < max_attempts
        ):
            retry_after = None
            if result.status_code == STATUS_TOO_MANY_REQUESTS:
                header = result.headers.get("retry-after")
                if header:
                    with contextlib.suppress(ValueError):
                        retry_after = float(header)
            delay = retry_after or min(backoff_base * (2 ** (attempt - 1)), backoff_max)
            delay *= 1 + random.uniform(-jitter, jitter)
            log.warning(
                "retry_due_to_http_status",
                status=result.status_code,
                attempt=attempt,
                delay=round(delay, 2),
            )
            await asyncio.sleep(delay)
            continue

        return result

    raise RuntimeError("Unexpected retry loop exit")
