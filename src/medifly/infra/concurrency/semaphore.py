"""ModelSemaphore: concurrency limiter for embedding provider calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, FastAPI

from medifly.configs.config import AppConfig, get_app_config
from medifly.core.metrics import SEMAPHORE_ACQUIRES_TOTAL, SEMAPHORE_WAIT_SECONDS
from medifly.infra.lifespan import get_app
from medifly.infra.telemetry import ATTR_SEMAPHORE_TIMEOUT, SPAN_SEMAPHORE_SLOT, tracer

from .base import AcquireTimeout, SemaphoreBackend
from .local_backend import LocalSemaphoreBackend

logger = logging.getLogger(__name__)


class ModelSemaphore:
    """Async semaphore with a wall-clock timeout on ``acquire``.

    Usage::

        async with semaphore.slot():
            response = await client.embeddings.create(...)
    """

    def __init__(
        self, backend: SemaphoreBackend, acquire_timeout: timedelta
    ) -> None:
        self._backend = backend
        self._acquire_timeout = acquire_timeout.total_seconds()

    async def acquire(self) -> None:
        """Wait for a concurrency slot (with timeout), then claim it.

        Raises:
            AcquireTimeout: if the slot cannot be acquired in time.
        """
        start = time.monotonic()
        try:
            async with asyncio.timeout(self._acquire_timeout):
                await self._backend.acquire()
        except TimeoutError:
            elapsed = time.monotonic() - start
            SEMAPHORE_WAIT_SECONDS.observe(elapsed)
            SEMAPHORE_ACQUIRES_TOTAL.labels(result="timeout").inc()
            logger.debug("Semaphore acquire timed out after %.3fs", elapsed)
            raise AcquireTimeout(
                "Timed out waiting for an embedding concurrency slot. "
                "Try again later."
            ) from None
        elapsed = time.monotonic() - start
        SEMAPHORE_WAIT_SECONDS.observe(elapsed)
        SEMAPHORE_ACQUIRES_TOTAL.labels(result="ok").inc()

    async def release(self) -> None:
        """Free the concurrency slot."""
        await self._backend.release()

    @asynccontextmanager
    async def slot(self) -> AsyncGenerator[None, None]:
        """Acquire a slot, yield, release."""
        with tracer.start_as_current_span(SPAN_SEMAPHORE_SLOT) as span:
            span.set_attribute(ATTR_SEMAPHORE_TIMEOUT, self._acquire_timeout)
            await self.acquire()
            try:
                yield
            finally:
                await self.release()

    async def aclose(self) -> None:
        """Shut down the underlying backend."""
        await self._backend.aclose()


def local_semaphore(
    max_concurrency: int, acquire_timeout: timedelta = timedelta(seconds=30)
) -> ModelSemaphore:
    """Build an in-process ``ModelSemaphore`` (CLI tools and tests)."""
    return ModelSemaphore(
        LocalSemaphoreBackend(max_concurrency), acquire_timeout=acquire_timeout
    )


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_semaphore(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create a ``ModelSemaphore``, attach to ``app.state``; close on shutdown."""
    cc = config.concurrency
    semaphore = local_semaphore(cc.max_concurrency, cc.acquire_timeout)
    logger.info(
        "ModelSemaphore: local backend (max_concurrency=%d)", cc.max_concurrency
    )
    app.state.semaphore = semaphore
    yield
    await semaphore.aclose()
