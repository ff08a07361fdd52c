"""Prometheus metrics for the MediFly service.

Business metrics that complement the auto-instrumented HTTP metrics
provided by ``prometheus-fastapi-instrumentator``.

All metrics use the ``medifly_`` prefix.
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from medifly.configs.system import TracingConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Embedding metrics
# ---------------------------------------------------------------------------

EMBEDDING_LATENCY_SECONDS = Histogram(
    "medifly_embedding_latency_seconds",
    "Latency of embedding provider calls",
    ["provider", "operation"],  # operation: "single" | "batch"
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

EMBEDDING_CALLS_IN_FLIGHT = Gauge(
    "medifly_embedding_calls_in_flight",
    "Number of embedding provider calls currently in flight",
    ["provider"],
)

EMBEDDING_RETRIES_TOTAL = Counter(
    "medifly_embedding_retries_total",
    "Embedding call retries, by failure class",
    ["provider", "reason"],  # rate_limit | server_error | network
)

EMBEDDING_FAILURES_TOTAL = Counter(
    "medifly_embedding_failures_total",
    "Embedding calls that failed after all retries",
    ["provider"],
)

EMBEDDING_CACHE_LOOKUPS_TOTAL = Counter(
    "medifly_embedding_cache_lookups_total",
    "Embedding cache lookups by outcome",
    ["result"],  # hit | miss
)

EMBEDDING_COST_USD_TOTAL = Counter(
    "medifly_embedding_cost_usd_total",
    "Estimated embedding spend in USD",
    ["model_name"],
)

EMBEDDING_BUDGET_DENIALS_TOTAL = Counter(
    "medifly_embedding_budget_denials_total",
    "Embedding calls refused by the cost monitor",
    ["period"],  # daily | monthly
)

# ---------------------------------------------------------------------------
# Indexing metrics
# ---------------------------------------------------------------------------

INDEXING_RUNS_TOTAL = Counter(
    "medifly_indexing_runs_total",
    "Indexing runs by trigger and outcome",
    ["trigger", "status"],  # trigger: admin | cron | reindex | webhook
)

INDEXING_HOSPITALS_TOTAL = Counter(
    "medifly_indexing_hospitals_total",
    "Hospitals processed by the indexer",
    ["result"],  # ok | error
)

INDEXING_RUN_DURATION_SECONDS = Histogram(
    "medifly_indexing_run_duration_seconds",
    "Duration of a full indexing run",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)

EMBEDDING_COVERAGE_RATIO = Gauge(
    "medifly_embedding_coverage_ratio",
    "Share of active hospitals that have an embedding (last status read)",
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "medifly_webhook_events_total",
    "Database webhook events by outcome",
    ["outcome"],  # processed | skipped | ignored | error | unauthorized
)

CRON_RUNS_TOTAL = Counter(
    "medifly_cron_runs_total",
    "Indexing cron runs by source and outcome",
    ["source", "status"],  # source: loop | endpoint
)

# ---------------------------------------------------------------------------
# Search metrics
# ---------------------------------------------------------------------------

SEARCH_REQUESTS_TOTAL = Counter(
    "medifly_search_requests_total",
    "Hospital searches by mode",
    ["mode"],  # semantic | text_fallback | similar
)

SEARCH_LATENCY_SECONDS = Histogram(
    "medifly_search_latency_seconds",
    "Latency of hospital search queries",
    ["mode"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

# ---------------------------------------------------------------------------
# Usage metering metrics
# ---------------------------------------------------------------------------

USAGE_TOKENS_TOTAL = Counter(
    "medifly_usage_tokens_total",
    "Tokens recorded by usage tracking",
    ["action_type"],
)

USAGE_COST_USD_TOTAL = Counter(
    "medifly_usage_cost_usd_total",
    "Cost in USD recorded by usage tracking",
    ["action_type"],
)

BUDGET_ALERTS_TOTAL = Counter(
    "medifly_budget_alerts_total",
    "Budget alerts raised after tracking usage",
    ["period", "level"],  # period: daily | monthly; level: warning | danger
)

BUDGET_REJECTIONS_TOTAL = Counter(
    "medifly_budget_rejections_total",
    "Requests refused because a spending cap was reached",
    ["scope"],  # usage | embedding
)

# ---------------------------------------------------------------------------
# Chat concierge metrics
# ---------------------------------------------------------------------------

CHAT_SESSIONS_ACTIVE = Gauge(
    "medifly_chat_sessions_active",
    "Number of streaming concierge sessions in progress",
)

CHAT_SESSIONS_TOTAL = Counter(
    "medifly_chat_sessions_total",
    "Concierge sessions by outcome code",
    ["status"],
)

CHAT_SESSION_DURATION_SECONDS = Histogram(
    "medifly_chat_session_duration_seconds",
    "End-to-end duration of a concierge streaming session",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)

STREAM_EVENTS_TOTAL = Counter(
    "medifly_stream_events_total",
    "Stream events emitted, by event type",
    ["event_type"],  # thinking | content | tool_call | error | done
)

TOOL_CALLS_TOTAL = Counter(
    "medifly_tool_calls_total",
    "Concierge tool invocations, by tool name and status",
    ["tool_name", "status"],
)

# ---------------------------------------------------------------------------
# Concurrency metrics
# ---------------------------------------------------------------------------

SEMAPHORE_ACQUIRES_TOTAL = Counter(
    "medifly_semaphore_acquires_total",
    "Semaphore acquire attempts",
    ["result"],  # ok | timeout
)

SEMAPHORE_WAIT_SECONDS = Histogram(
    "medifly_semaphore_wait_seconds",
    "Time spent waiting for an embedding slot",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30),
)


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


def setup_metrics(app: FastAPI, config: TracingConfig) -> None:
    """Attach HTTP instrumentation and the ``/metrics`` endpoint.

    Must run before the app starts: the instrumentator adds middleware.
    """
    Instrumentator(
        should_instrument_requests_inprogress=True,
        excluded_handlers=config.excluded_urls,
    ).instrument(app).expose(app, endpoint="/metrics")

    logger.info("Prometheus metrics initialised")
