"""OpenTelemetry bootstrap: tracing initialisation and span constants.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing
is enabled via ``TracingConfig``.  When disabled the module is a no-op
and ``tracer`` hands out non-recording spans.

Auto-instrumentations wired here:

- **FastAPI** (inbound HTTP spans)
- **httpx** (outbound HTTP spans, covers the openai SDK)
- **SQLAlchemy** (DB spans)

Usage::

    from medifly.infra.telemetry import SPAN_INDEXING_RUN, tracer

    with tracer.start_as_current_span(SPAN_INDEXING_RUN) as span:
        ...
"""

from __future__ import annotations

import base64
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI
from opentelemetry import trace

from medifly.configs.system import TracingConfig
from medifly.infra.db_engine import build_db
from medifly.infra.lifespan import get_app

logger = logging.getLogger(__name__)

_otel_enabled = False

tracer = trace.get_tracer("medifly")

# ---------------------------------------------------------------------------
# Span names
# ---------------------------------------------------------------------------

SPAN_EMBEDDING_EMBED = "embedding.embed"
SPAN_EMBEDDING_BATCH = "embedding.batch"
SPAN_HOSPITAL_SIMILAR = "search.similar"
SPAN_HOSPITAL_SEARCH = "search.hybrid"
SPAN_INDEXING_RUN = "indexing.run"
SPAN_INDEXING_CRON_TICK = "indexing.cron_tick"
SPAN_WEBHOOK_EVENT = "indexing.webhook"
SPAN_SEMAPHORE_SLOT = "semaphore.slot"
SPAN_USAGE_TRACK = "usage.track"
SPAN_SSE_STREAM = "sse.stream"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_EMBEDDING_PROVIDER = "embedding.provider"
ATTR_EMBEDDING_MODEL = "embedding.model"
ATTR_EMBEDDING_TEXT_LEN = "embedding.text_len"
ATTR_EMBEDDING_BATCH_SIZE = "embedding.batch_size"
ATTR_EMBEDDING_CACHE_HIT = "embedding.cache_hit"

ATTR_SEARCH_THRESHOLD = "search.threshold"
ATTR_SEARCH_LIMIT = "search.limit"
ATTR_SEARCH_RESULT_COUNT = "search.result_count"
ATTR_SEARCH_SEMANTIC = "search.semantic"

ATTR_INDEXING_TOTAL = "indexing.total"
ATTR_INDEXING_SUCCESSFUL = "indexing.successful"
ATTR_INDEXING_FAILED = "indexing.failed"
ATTR_INDEXING_FORCE = "indexing.force"

ATTR_WEBHOOK_TYPE = "webhook.type"
ATTR_WEBHOOK_OUTCOME = "webhook.outcome"

ATTR_SEMAPHORE_TIMEOUT = "semaphore.timeout"

ATTR_USAGE_ACTION = "usage.action"
ATTR_USAGE_TOKENS = "usage.tokens"

ATTR_SSE_ERROR_CODE = "sse.error_code"
ATTR_SSE_EVENT_COUNTS = "sse.event_counts"


def init_telemetry(
    app: object | None = None,
    settings: TracingConfig | None = None,
) -> None:
    """Initialise the OTEL ``TracerProvider`` and auto-instrumentations.

    No-op when *settings* is ``None`` or tracing is disabled.
    """
    global _otel_enabled  # noqa: PLW0603

    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return

    if not settings.endpoint:
        logger.warning(
            "Tracing enabled but no endpoint configured, "
            "skipping OpenTelemetry setup."
        )
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    resource = Resource.create({"service.name": settings.service_name})
    sampler = ParentBased(root=TraceIdRatioBased(settings.sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)

    headers: dict[str, str] = {}
    if settings.username and settings.password:
        credentials = f"{settings.username}:{settings.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        headers["Authorization"] = f"Basic {encoded}"

    exporter = OTLPSpanExporter(endpoint=settings.endpoint, headers=headers)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    if app is not None:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        excluded = ",".join(settings.excluded_urls)
        FastAPIInstrumentor.instrument_app(app, excluded_urls=excluded)

    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()

    _otel_enabled = True
    logger.info(
        "OpenTelemetry tracing initialised (service=%s).", settings.service_name
    )


def instrument_sqlalchemy(engine: object) -> None:
    """Instrument a SQLAlchemy engine for DB span tracing.

    No-op when OTEL is not enabled.
    """
    if not _otel_enabled:
        return

    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    sync_engine = getattr(engine, "sync_engine", engine)
    SQLAlchemyInstrumentor().instrument(engine=sync_engine)
    logger.info("SQLAlchemy engine instrumented for OTEL tracing.")


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_telemetry(
    app: Annotated[FastAPI, Depends(get_app)],
    _db: Annotated[None, Depends(build_db)],
) -> AsyncGenerator[None, None]:
    """Instrument the engine created by ``build_db``.

    ``init_telemetry`` itself runs in the app factory because the
    FastAPI instrumentor adds middleware, which is only allowed before
    startup.
    """
    instrument_sqlalchemy(app.state.engine)
    yield
