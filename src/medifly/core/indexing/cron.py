"""Background cron that keeps hospital embeddings up to date.

Each tick:

1. Re-reads the (hot-reloadable) indexing config; a disabled cron
   skips the tick.
2. Skips when an admin indexing job is already running.
3. Reads the embedding status and, when active hospitals lack an
   embedding, runs ``index_all`` with the cron batch size and delay.

``run_cron_indexing`` is shared with the HTTP cron endpoint so an
external scheduler and the in-process loop behave identically.

``build_indexing_cron`` is a lifespan dependency that creates, starts,
and stops the cron automatically via ``yield``.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, FastAPI

from medifly.configs.config import AppConfig, get_app_config, get_indexing_config
from medifly.configs.system import IndexingConfig
from medifly.core.embedding.service import build_embedding_service
from medifly.core.metrics import CRON_RUNS_TOTAL
from medifly.infra.db.hospitals import HospitalRepository
from medifly.infra.db_engine import build_db
from medifly.infra.lifespan import get_app
from medifly.infra.telemetry import SPAN_INDEXING_CRON_TICK, tracer

from .indexer import HospitalIndexer, IndexingOptions
from .jobs import IndexingJobManager, build_indexing

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "complete"
STATUS_PROCESSED = "processed"


def cron_options(config: IndexingConfig) -> IndexingOptions:
    return IndexingOptions(
        batch_size=config.cron_batch_size,
        force_regenerate=False,
        delay_between_batches=config.cron_delay,
    )


async def run_cron_indexing(
    indexer: HospitalIndexer, config: IndexingConfig, source: str
) -> dict[str, Any]:
    """Index hospitals missing an embedding; report what was done."""
    stats = await indexer.status()
    if stats["without_embeddings"] == 0:
        CRON_RUNS_TOTAL.labels(source=source, status=STATUS_COMPLETE).inc()
        return {"status": STATUS_COMPLETE, "stats": stats}

    progress = await indexer.index_all(cron_options(config), trigger="cron")
    CRON_RUNS_TOTAL.labels(source=source, status=STATUS_PROCESSED).inc()
    return {
        "status": STATUS_PROCESSED,
        "progress": progress.as_dict(),
        "stats": await indexer.status(),
    }


# ------------------------------------------------------------------
# HospitalIndexingCron
# ------------------------------------------------------------------


class HospitalIndexingCron:
    """Manages the indexing background loop lifecycle."""

    def __init__(
        self,
        indexer: HospitalIndexer,
        jobs: IndexingJobManager,
        interval: float,
    ) -> None:
        self._indexer = indexer
        self._jobs = jobs
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="indexing-cron")
        logger.info("Indexing cron started (interval=%ds)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Indexing cron stopped.")

    # -- internal ----------------------------------------------------

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._tick()
            except asyncio.CancelledError:
                logger.info("Indexing cron cancelled, shutting down.")
                return
            except Exception:
                CRON_RUNS_TOTAL.labels(source="loop", status="error").inc()
                logger.exception("Indexing cron tick failed")

    async def _tick(self) -> dict[str, Any] | None:
        config = get_indexing_config()
        if not config.cron_enabled:
            logger.debug("Cron: disabled by config, skipping tick")
            return None
        if self._jobs.running:
            logger.info("Cron: indexing job %s running, skipping tick", self._jobs.job_id)
            return None
        with tracer.start_as_current_span(SPAN_INDEXING_CRON_TICK):
            result = await run_cron_indexing(self._indexer, config, source="loop")
        if result["status"] == STATUS_PROCESSED:
            progress = result["progress"]
            logger.info(
                "Cron: indexed %d/%d hospital(s), coverage now %.2f%%",
                progress["successful"],
                progress["total"],
                result["stats"]["coverage_percentage"],
            )
        return result


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_indexing_cron(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    _db: Annotated[None, Depends(build_db)],
    _embedding: Annotated[None, Depends(build_embedding_service)],
    _jobs: Annotated[None, Depends(build_indexing)],
) -> AsyncGenerator[None, None]:
    """Create and start the indexing cron when enabled."""
    if not config.indexing.cron_enabled:
        logger.info("Indexing cron disabled.")
        yield
        return
    indexer = HospitalIndexer(
        HospitalRepository(app.state.session_factory),
        app.state.embedding_service,
    )
    cron = HospitalIndexingCron(
        indexer=indexer,
        jobs=app.state.indexing_jobs,
        interval=config.indexing.cron_interval.total_seconds(),
    )
    app.state.indexing_cron = cron
    await cron.start()
    yield
    await cron.stop()
