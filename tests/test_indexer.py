"""Tests for HospitalIndexer, background jobs and the indexing cron."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import FakeEmbedder, FakeIndexRepository, make_hospital, no_sleep

from medifly.configs.system import IndexingConfig
from medifly.core.errors import BudgetExceeded, IndexingInProgress
from medifly.core.indexing.cron import (
    STATUS_COMPLETE,
    STATUS_PROCESSED,
    HospitalIndexingCron,
    cron_options,
    run_cron_indexing,
)
from medifly.core.indexing.indexer import HospitalIndexer, IndexingOptions
from medifly.core.indexing.jobs import IndexingJobManager


def _hospitals(*names: str, **overrides):
    return [make_hospital(name=name, slug=name.lower(), **overrides) for name in names]


# =========================================================================
# HospitalIndexer
# =========================================================================


class TestIndexAll:
    @pytest.mark.asyncio
    async def test_embeds_hospitals_missing_a_vector(self):
        done = make_hospital(name="Done Hospital", embedding=[1.0, 1.0, 1.0])
        todo = _hospitals("Alpha Hospital", "Beta Hospital")
        repo = FakeIndexRepository([done, *todo])
        embedder = FakeEmbedder()
        indexer = HospitalIndexer(repo, embedder, sleep=no_sleep)

        progress = await indexer.index_all()

        assert progress.total == 2
        assert progress.successful == 2
        assert progress.failed == 0
        assert progress.is_complete
        assert progress.completed_at is not None
        assert set(repo.saved) == {h.id for h in todo}
        assert repo.listed_with_force == [False]

    @pytest.mark.asyncio
    async def test_saved_metadata_describes_the_embedding(self):
        hospital = make_hospital(name="Alpha Hospital", bed_count=250)
        repo = FakeIndexRepository([hospital])
        await HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep).index_all()

        vector, metadata = repo.saved[hospital.id]
        assert vector == [0.1, 0.2, 0.3]
        assert metadata["provider"] == "openai"
        assert metadata["model"] == "text-embedding-3-small"
        assert metadata["dimensions"] == 3
        assert "bed_count" in metadata["included_fields"]
        assert metadata["text_length"] > 0
        assert "generated_at" in metadata

    @pytest.mark.asyncio
    async def test_force_regenerates_existing(self):
        hospital = make_hospital(embedding=[1.0, 1.0, 1.0])
        repo = FakeIndexRepository([hospital])
        indexer = HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep)

        progress = await indexer.index_all(IndexingOptions(force_regenerate=True))

        assert progress.successful == 1
        assert repo.listed_with_force == [True]

    @pytest.mark.asyncio
    async def test_nothing_to_do(self):
        indexer = HospitalIndexer(FakeIndexRepository([]), FakeEmbedder(), sleep=no_sleep)
        progress = await indexer.index_all()
        assert progress.is_complete
        assert progress.total == 0
        assert progress.total_batches == 0

    @pytest.mark.asyncio
    async def test_batches_pause_between_batches(self, sleeps, recording_sleep):
        repo = FakeIndexRepository(_hospitals("A1 Hospital", "A2 Hospital", "A3 Hospital"))
        indexer = HospitalIndexer(repo, FakeEmbedder(), sleep=recording_sleep)

        progress = await indexer.index_all(
            IndexingOptions(batch_size=2, delay_between_batches=timedelta(milliseconds=500))
        )

        assert progress.total_batches == 2
        assert progress.current_batch == 2
        assert sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_failures_are_recorded_and_skipped(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital", "Broken Hospital", "Gamma Hospital"))
        indexer = HospitalIndexer(repo, FakeEmbedder(fail_on="Broken"), sleep=no_sleep)

        progress = await indexer.index_all()

        assert progress.successful == 2
        assert progress.failed == 1
        assert progress.processed == 3
        assert progress.errors[0].hospital_name == "Broken Hospital"
        assert progress.errors[0].error == "provider down"
        assert progress.stopped_reason is None

    @pytest.mark.asyncio
    async def test_budget_refusal_stops_the_run(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital", "Beta Hospital", "Gamma Hospital"))
        embedder = FakeEmbedder(fail_on="Beta", error=BudgetExceeded("daily cap reached"))
        indexer = HospitalIndexer(repo, embedder, sleep=no_sleep)

        progress = await indexer.index_all(IndexingOptions(batch_size=1))

        assert progress.successful == 1
        assert progress.failed == 1
        assert progress.processed == 2
        assert progress.stopped_reason == "daily cap reached"
        assert progress.is_complete
        assert len(embedder.texts) == 2

    @pytest.mark.asyncio
    async def test_progress_callback_gets_snapshots(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital", "Beta Hospital"))
        seen = []

        async def on_progress(snapshot):
            seen.append(snapshot)

        await HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep).index_all(
            on_progress=on_progress
        )

        assert [s.processed for s in seen] == [1, 2, 2]
        assert seen[-1].is_complete
        assert not seen[0].is_complete
        assert seen[0] is not seen[1]


class TestReindexStatusReset:
    @pytest.mark.asyncio
    async def test_reindex_only_active_ids(self):
        active = make_hospital(name="Alpha Hospital", embedding=[1.0, 1.0, 1.0])
        inactive = make_hospital(name="Beta Hospital", is_active=False)
        repo = FakeIndexRepository([active, inactive])

        progress = await HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep).reindex(
            [active.id, inactive.id]
        )

        assert progress.total == 1
        assert progress.successful == 1
        assert list(repo.saved) == [active.id]

    @pytest.mark.asyncio
    async def test_reindex_unknown_ids(self):
        progress = await HospitalIndexer(
            FakeIndexRepository([]), FakeEmbedder(), sleep=no_sleep
        ).reindex([make_hospital().id])
        assert progress.is_complete
        assert progress.total == 0

    @pytest.mark.asyncio
    async def test_status_reports_coverage(self):
        hospitals = [
            make_hospital(embedding=[1.0]),
            make_hospital(),
            make_hospital(),
            make_hospital(embedding=[1.0], is_active=False),
        ]
        status = await HospitalIndexer(
            FakeIndexRepository(hospitals), FakeEmbedder(), sleep=no_sleep
        ).status()
        assert status == {
            "total": 3,
            "with_embeddings": 1,
            "without_embeddings": 2,
            "coverage_percentage": 33.33,
            "last_updated": None,
        }

    @pytest.mark.asyncio
    async def test_status_of_empty_catalog(self):
        status = await HospitalIndexer(
            FakeIndexRepository([]), FakeEmbedder(), sleep=no_sleep
        ).status()
        assert status["coverage_percentage"] == 0.0

    @pytest.mark.asyncio
    async def test_reset(self):
        repo = FakeIndexRepository([make_hospital(embedding=[1.0]), make_hospital()])
        assert await HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep).reset() == 1


# =========================================================================
# IndexingJobManager
# =========================================================================


class _BlockingEmbedder(FakeEmbedder):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def embed(self, text):
        await self.release.wait()
        return await super().embed(text)


class TestIndexingJobManager:
    @pytest.mark.asyncio
    async def test_runs_in_background_and_reports(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital"))
        embedder = _BlockingEmbedder()
        jobs = IndexingJobManager()

        job_id = await jobs.start(HospitalIndexer(repo, embedder, sleep=no_sleep), IndexingOptions())
        assert jobs.running
        assert jobs.status()["job_id"] == job_id

        embedder.release.set()
        result = await jobs.wait()

        assert not jobs.running
        assert result.successful == 1
        status = jobs.status()
        assert status["progress"]["successful"] == 1
        assert status["progress"]["is_complete"] is True
        assert status["error"] is None

    @pytest.mark.asyncio
    async def test_second_start_is_refused(self):
        embedder = _BlockingEmbedder()
        indexer = HospitalIndexer(
            FakeIndexRepository(_hospitals("Alpha Hospital")), embedder, sleep=no_sleep
        )
        jobs = IndexingJobManager()
        await jobs.start(indexer, IndexingOptions())

        with pytest.raises(IndexingInProgress):
            await jobs.start(indexer, IndexingOptions())

        embedder.release.set()
        await jobs.wait()

    @pytest.mark.asyncio
    async def test_failed_job_keeps_error(self):
        class _BrokenRepo(FakeIndexRepository):
            async def list_for_indexing(self, *, force=False):
                raise RuntimeError("database unavailable")

        jobs = IndexingJobManager()
        await jobs.start(
            HospitalIndexer(_BrokenRepo([]), FakeEmbedder(), sleep=no_sleep), IndexingOptions()
        )
        progress = await jobs.wait()

        assert jobs.status()["error"] == "database unavailable"
        assert progress.is_complete
        assert jobs._task.exception() is None
        assert not jobs.running

    @pytest.mark.asyncio
    async def test_aclose_cancels_running_job(self):
        embedder = _BlockingEmbedder()
        jobs = IndexingJobManager()
        await jobs.start(
            HospitalIndexer(
                FakeIndexRepository(_hospitals("Alpha Hospital")), embedder, sleep=no_sleep
            ),
            IndexingOptions(),
        )
        await jobs.aclose()
        assert not jobs.running

    def test_idle_status(self):
        assert IndexingJobManager().status() == {
            "job_id": None,
            "running": False,
            "progress": None,
            "error": None,
        }


# =========================================================================
# Cron
# =========================================================================


class TestCron:
    def test_cron_options(self):
        options = cron_options(
            IndexingConfig(cron_batch_size=3, cron_delay=timedelta(seconds=2))
        )
        assert options.batch_size == 3
        assert options.force_regenerate is False
        assert options.delay_between_batches == timedelta(seconds=2)

    @pytest.mark.asyncio
    async def test_complete_when_nothing_missing(self):
        repo = FakeIndexRepository([make_hospital(embedding=[1.0])])
        result = await run_cron_indexing(
            HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep), IndexingConfig(), "endpoint"
        )
        assert result["status"] == STATUS_COMPLETE
        assert result["stats"]["coverage_percentage"] == 100.0
        assert repo.saved == {}

    @pytest.mark.asyncio
    async def test_processes_missing_hospitals(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital", "Beta Hospital"))
        result = await run_cron_indexing(
            HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep),
            IndexingConfig(cron_delay=timedelta(0)),
            "endpoint",
        )
        assert result["status"] == STATUS_PROCESSED
        assert result["progress"]["successful"] == 2
        assert result["stats"]["without_embeddings"] == 0

    @pytest.mark.asyncio
    async def test_tick_skips_while_job_running(self):
        embedder = _BlockingEmbedder()
        indexer = HospitalIndexer(
            FakeIndexRepository(_hospitals("Alpha Hospital")), embedder, sleep=no_sleep
        )
        jobs = IndexingJobManager()
        await jobs.start(indexer, IndexingOptions())
        cron = HospitalIndexingCron(indexer, jobs, interval=60)

        with patch(
            "medifly.core.indexing.cron.get_indexing_config", return_value=IndexingConfig()
        ):
            assert await cron._tick() is None

        embedder.release.set()
        await jobs.wait()

    @pytest.mark.asyncio
    async def test_tick_skips_when_disabled(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital"))
        cron = HospitalIndexingCron(
            HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep), IndexingJobManager(), 60
        )
        with patch(
            "medifly.core.indexing.cron.get_indexing_config",
            return_value=IndexingConfig(cron_enabled=False),
        ):
            assert await cron._tick() is None
        assert repo.saved == {}

    @pytest.mark.asyncio
    async def test_tick_indexes(self):
        repo = FakeIndexRepository(_hospitals("Alpha Hospital"))
        cron = HospitalIndexingCron(
            HospitalIndexer(repo, FakeEmbedder(), sleep=no_sleep), IndexingJobManager(), 60
        )
        with patch(
            "medifly.core.indexing.cron.get_indexing_config",
            return_value=IndexingConfig(cron_delay=timedelta(0)),
        ):
            result = await cron._tick()
        assert result["status"] == STATUS_PROCESSED
        assert len(repo.saved) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        cron = HospitalIndexingCron(
            HospitalIndexer(FakeIndexRepository([]), FakeEmbedder(), sleep=no_sleep),
            IndexingJobManager(),
            interval=3600,
        )
        await cron.start()
        await cron.stop()
        await cron.stop()
