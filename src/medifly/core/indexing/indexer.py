"""HospitalIndexer -- embeds hospital text and stores the vectors.

Hospitals are processed in batches with a pause between batches so a
large backfill stays under provider rate limits.  A failing hospital is
recorded and skipped; a budget refusal stops the run since every later
call would be refused too.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from medifly.core.errors import BudgetExceeded
from medifly.core.metrics import (
    EMBEDDING_COVERAGE_RATIO,
    INDEXING_HOSPITALS_TOTAL,
    INDEXING_RUN_DURATION_SECONDS,
    INDEXING_RUNS_TOTAL,
)
from medifly.infra.db.models import Hospital
from medifly.infra.telemetry import (
    ATTR_INDEXING_FAILED,
    ATTR_INDEXING_FORCE,
    ATTR_INDEXING_SUCCESSFUL,
    ATTR_INDEXING_TOTAL,
    SPAN_INDEXING_RUN,
    tracer,
)

from .text import build_hospital_text, included_fields

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> Any: ...


class IndexRepository(Protocol):
    async def list_for_indexing(self, *, force: bool = False) -> list[Hospital]: ...

    async def get_active_by_ids(self, ids: Sequence[uuid.UUID]) -> list[Hospital]: ...

    async def save_embedding(
        self, hospital_id: uuid.UUID, vector: list[float], metadata: dict[str, Any]
    ) -> None: ...

    async def embedding_stats(self) -> dict[str, Any]: ...

    async def reset_embeddings(self) -> int: ...


@dataclass
class IndexingOptions:
    batch_size: int = 10
    force_regenerate: bool = False
    delay_between_batches: timedelta = timedelta(milliseconds=1000)


@dataclass
class IndexingError:
    hospital_id: str
    hospital_name: str
    error: str


@dataclass
class IndexingProgress:
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    current_batch: int = 0
    total_batches: int = 0
    is_complete: bool = False
    errors: list[IndexingError] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stopped_reason: str | None = None

    def snapshot(self) -> IndexingProgress:
        return replace(self, errors=list(self.errors))

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[IndexingProgress], Awaitable[None] | None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HospitalIndexer:
    """Embeds hospitals through an ``EmbeddingService``-like embedder."""

    def __init__(
        self,
        repository: IndexRepository,
        embedder: Embedder,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repo = repository
        self._embedder = embedder
        self._sleep = sleep

    async def index_one(self, hospital: Hospital) -> None:
        """Embed *hospital* and store the vector with its metadata."""
        text = build_hospital_text(hospital)
        result = await self._embedder.embed(text)
        metadata = {
            "provider": result.provider,
            "model": result.model,
            "dimensions": result.dimensions,
            "text_length": len(text),
            "included_fields": included_fields(hospital),
            "generated_at": _now().isoformat(),
        }
        await self._repo.save_embedding(hospital.id, result.vector, metadata)

    async def index_all(
        self,
        options: IndexingOptions | None = None,
        on_progress: ProgressCallback | None = None,
        trigger: str = "admin",
    ) -> IndexingProgress:
        """Embed every active hospital that needs it.

        Args:
            options: Batch size, force flag and inter-batch delay.
            on_progress: Called with a snapshot after each hospital.
            trigger: Metric label for the caller (admin, cron, ...).
        """
        options = options or IndexingOptions()
        hospitals = await self._repo.list_for_indexing(force=options.force_regenerate)
        progress = IndexingProgress(started_at=_now())
        if not hospitals:
            progress.is_complete = True
            progress.completed_at = progress.started_at
            INDEXING_RUNS_TOTAL.labels(trigger=trigger, status="noop").inc()
            return progress
        return await self._run(hospitals, options, progress, on_progress, trigger)

    async def reindex(
        self, hospital_ids: Sequence[uuid.UUID], on_progress: ProgressCallback | None = None
    ) -> IndexingProgress:
        """Re-embed the active hospitals among *hospital_ids*, one by one."""
        hospitals = await self._repo.get_active_by_ids(hospital_ids)
        progress = IndexingProgress(started_at=_now())
        if not hospitals:
            progress.is_complete = True
            progress.completed_at = progress.started_at
            return progress
        options = IndexingOptions(
            batch_size=len(hospitals),
            force_regenerate=True,
            delay_between_batches=timedelta(0),
        )
        return await self._run(hospitals, options, progress, on_progress, "reindex")

    async def _run(
        self,
        hospitals: list[Hospital],
        options: IndexingOptions,
        progress: IndexingProgress,
        on_progress: ProgressCallback | None,
        trigger: str,
    ) -> IndexingProgress:
        size = max(options.batch_size, 1)
        batches = [hospitals[i : i + size] for i in range(0, len(hospitals), size)]
        progress.total = len(hospitals)
        progress.total_batches = len(batches)
        delay = options.delay_between_batches.total_seconds()
        start = time.monotonic()

        with tracer.start_as_current_span(SPAN_INDEXING_RUN) as span:
            span.set_attribute(ATTR_INDEXING_TOTAL, progress.total)
            span.set_attribute(ATTR_INDEXING_FORCE, options.force_regenerate)
            logger.info(
                "Indexing %d hospital(s) in %d batch(es) (trigger=%s, force=%s)",
                progress.total,
                progress.total_batches,
                trigger,
                options.force_regenerate,
            )
            for n, batch in enumerate(batches, start=1):
                progress.current_batch = n
                for hospital in batch:
                    try:
                        await self.index_one(hospital)
                        progress.successful += 1
                        INDEXING_HOSPITALS_TOTAL.labels(result="ok").inc()
                    except BudgetExceeded as exc:
                        self._record_failure(progress, hospital, exc)
                        progress.processed += 1
                        progress.stopped_reason = str(exc)
                        logger.warning("Indexing stopped: %s", exc)
                        break
                    except Exception as exc:
                        self._record_failure(progress, hospital, exc)
                        logger.warning(
                            "Failed to index hospital %s (%s): %s",
                            hospital.id,
                            hospital.name,
                            exc,
                        )
                    progress.processed += 1
                    await _notify(on_progress, progress)
                if progress.stopped_reason is not None:
                    break
                if n < len(batches) and delay > 0:
                    await self._sleep(delay)

            progress.is_complete = True
            progress.completed_at = _now()
            span.set_attribute(ATTR_INDEXING_SUCCESSFUL, progress.successful)
            span.set_attribute(ATTR_INDEXING_FAILED, progress.failed)

        await _notify(on_progress, progress)
        status = "stopped" if progress.stopped_reason else (
            "partial" if progress.failed else "ok"
        )
        INDEXING_RUNS_TOTAL.labels(trigger=trigger, status=status).inc()
        INDEXING_RUN_DURATION_SECONDS.observe(time.monotonic() - start)
        logger.info(
            "Indexing finished: %d/%d successful, %d failed",
            progress.successful,
            progress.total,
            progress.failed,
        )
        return progress

    @staticmethod
    def _record_failure(
        progress: IndexingProgress, hospital: Hospital, exc: Exception
    ) -> None:
        progress.failed += 1
        progress.errors.append(
            IndexingError(
                hospital_id=str(hospital.id),
                hospital_name=hospital.name,
                error=str(exc) or type(exc).__name__,
            )
        )
        INDEXING_HOSPITALS_TOTAL.labels(result="error").inc()

    async def status(self) -> dict[str, Any]:
        stats = await self._repo.embedding_stats()
        total = stats["total"]
        with_embeddings = stats["with_embeddings"]
        coverage = round(with_embeddings / total * 100, 2) if total else 0.0
        EMBEDDING_COVERAGE_RATIO.set(coverage / 100)
        return {
            "total": total,
            "with_embeddings": with_embeddings,
            "without_embeddings": total - with_embeddings,
            "coverage_percentage": coverage,
            "last_updated": stats["last_updated"],
        }

    async def reset(self) -> int:
        count = await self._repo.reset_embeddings()
        logger.info("Cleared embeddings of %d hospital(s)", count)
        return count


async def _notify(callback: ProgressCallback | None, progress: IndexingProgress) -> None:
    if callback is None:
        return
    outcome = callback(progress.snapshot())
    if outcome is not None:
        await outcome
