"""Retry with per-failure-class exponential backoff.

Only transient failures are retried:

- rate limit (HTTP 429): ``initial * 3**attempt`` plus up to 1 s jitter
- server error (HTTP 5xx): ``initial * 2**(attempt-1)`` plus up to 0.5 s jitter
- network / timeout: ``initial * 1.5**(attempt-1)``

Every other error (bad key, bad request) fails immediately.  Delays are
capped at ``max_retry_delay``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import openai

from medifly.configs.system import EmbeddingConfig
from medifly.core.metrics import EMBEDDING_RETRIES_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")

REASON_RATE_LIMIT = "rate_limit"
REASON_SERVER_ERROR = "server_error"
REASON_NETWORK = "network"


def classify(exc: BaseException) -> str | None:
    """Return the retry reason for *exc*, or ``None`` when not retryable."""
    if isinstance(exc, openai.RateLimitError):
        return REASON_RATE_LIMIT
    # APITimeoutError subclasses APIConnectionError.
    if isinstance(exc, openai.APIConnectionError):
        return REASON_NETWORK
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 429:
            return REASON_RATE_LIMIT
        if exc.status_code >= 500:
            return REASON_SERVER_ERROR
        return None
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return REASON_NETWORK
    return None


def backoff_delay(
    reason: str,
    attempt: int,
    initial: float,
    cap: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait after failed *attempt* (1-based)."""
    if reason == REASON_RATE_LIMIT:
        delay = initial * 3**attempt + rng() * 1.0
    elif reason == REASON_SERVER_ERROR:
        delay = initial * 2 ** (attempt - 1) + rng() * 0.5
    else:
        delay = initial * 1.5 ** (attempt - 1)
    return min(delay, cap)


async def with_retries(
    call: Callable[[], Awaitable[T]],
    *,
    provider: str,
    config: EmbeddingConfig,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``call()`` up to ``config.max_retries`` times.

    Re-raises the last error once attempts run out, or immediately for
    a non-retryable error.
    """
    initial = config.initial_retry_delay.total_seconds()
    cap = config.max_retry_delay.total_seconds()
    attempts = max(config.max_retries, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except Exception as exc:
            reason = classify(exc)
            if reason is None or attempt == attempts:
                raise
            delay = backoff_delay(reason, attempt, initial, cap)
            EMBEDDING_RETRIES_TOTAL.labels(provider=provider, reason=reason).inc()
            logger.warning(
                "Embedding call to %s failed (%s, attempt %d/%d), retrying in %.2fs",
                provider,
                reason,
                attempt,
                attempts,
                delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")
