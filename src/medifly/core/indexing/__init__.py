"""Hospital embedding indexing -- text builder, indexer, jobs, cron, webhook."""

from .cron import HospitalIndexingCron, build_indexing_cron, run_cron_indexing
from .indexer import HospitalIndexer, IndexingOptions, IndexingProgress
from .jobs import IndexingJobManager, build_indexing, get_indexing_jobs
from .text import build_hospital_text

__all__ = [
    "build_hospital_text",
    "build_indexing",
    "build_indexing_cron",
    "get_indexing_jobs",
    "HospitalIndexer",
    "HospitalIndexingCron",
    "IndexingJobManager",
    "IndexingOptions",
    "IndexingProgress",
    "run_cron_indexing",
]
