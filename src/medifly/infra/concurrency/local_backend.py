"""Single-process semaphore backend using ``asyncio`` primitives."""

from __future__ import annotations

import asyncio

from .base import SemaphoreBackend


class LocalSemaphoreBackend(SemaphoreBackend):
    """In-process semaphore backed by ``asyncio.Semaphore``."""

    def __init__(self, max_concurrency: int) -> None:
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def acquire(self) -> None:
        await self._semaphore.acquire()

    async def release(self) -> None:
        self._semaphore.release()

    async def aclose(self) -> None:
        pass
