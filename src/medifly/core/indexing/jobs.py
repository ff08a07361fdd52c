"""Background indexing jobs with progress polling.

At most one ``index_all`` run is active per process.  The admin API
starts it and returns immediately; clients poll ``progress``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request

from medifly.core.errors import IndexingInProgress
from medifly.infra.lifespan import get_app

from .indexer import HospitalIndexer, IndexingOptions, IndexingProgress

logger = logging.getLogger(__name__)


class IndexingJobManager:
    """Owns the single background indexing task."""

    def __init__(self) -> None:
        self._task: asyncio.Task[IndexingProgress] | None = None
        self._lock = asyncio.Lock()
        self.job_id: str | None = None
        self.progress: IndexingProgress | None = None
        self.error: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(
        self, indexer: HospitalIndexer, options: IndexingOptions
    ) -> str:
        """Start ``indexer.index_all(options)`` in the background.

        Raises:
            IndexingInProgress: a run is already active.
        """
        async with self._lock:
            if self.running:
                raise IndexingInProgress(f"Indexing job {self.job_id} is already running")
            self.job_id = uuid.uuid4().hex
            self.progress = IndexingProgress()
            self.error = None
            self._task = asyncio.create_task(
                self._run(indexer, options), name=f"indexing-{self.job_id}"
            )
        logger.info("Started indexing job %s", self.job_id)
        return self.job_id

    async def _run(
        self, indexer: HospitalIndexer, options: IndexingOptions
    ) -> IndexingProgress:
        def update(snapshot: IndexingProgress) -> None:
            self.progress = snapshot

        try:
            result = await indexer.index_all(options, on_progress=update)
        except Exception as exc:
            logger.exception("Indexing job %s failed", self.job_id)
            self.error = str(exc)
            if self.progress is not None:
                self.progress.is_complete = True
            return self.progress
        self.progress = result
        return result

    def status(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "running": self.running,
            "progress": self.progress.as_dict() if self.progress else None,
            "error": self.error,
        }

    async def wait(self) -> IndexingProgress | None:
        """Wait for the current run to finish (tests and shutdown)."""
        if self._task is None:
            return None
        return await self._task

    async def aclose(self) -> None:
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.info("Indexing job %s cancelled on shutdown", self.job_id)


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_indexing(
    app: Annotated[FastAPI, Depends(get_app)],
) -> AsyncGenerator[None, None]:
    """Expose an ``IndexingJobManager`` on ``app.state``."""
    manager = IndexingJobManager()
    app.state.indexing_jobs = manager
    yield
    await manager.aclose()


def get_indexing_jobs(request: Request) -> IndexingJobManager:
    return request.app.state.indexing_jobs
