"""Reusable SSE streaming infrastructure.

Wraps an async generator of domain ``StreamEvent`` objects into a
formatted SSE stream with timeout enforcement, an error boundary and
metrics/tracing.  Every stream that is not cancelled ends with a
``done`` event.
"""

import asyncio
import json
import logging
import time
from collections import Counter as EventCounter
from collections.abc import AsyncGenerator
from datetime import timedelta

from openai import APIConnectionError

from medifly.core.concierge.events import DoneEvent, ErrorEvent, StreamEvent, ToolCallEvent
from medifly.core.errors import BudgetExceeded
from medifly.core.metrics import (
    CHAT_SESSION_DURATION_SECONDS,
    CHAT_SESSIONS_ACTIVE,
    CHAT_SESSIONS_TOTAL,
    STREAM_EVENTS_TOTAL,
    TOOL_CALLS_TOTAL,
)
from medifly.infra.concurrency import AcquireTimeout
from medifly.infra.telemetry import (
    ATTR_SSE_ERROR_CODE,
    ATTR_SSE_EVENT_COUNTS,
    SPAN_SSE_STREAM,
    tracer,
)

from .models import format_error_sse, format_sse

logger = logging.getLogger(__name__)

STREAMING_MEDIA_TYPE = "text/event-stream"
STREAMING_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def sse_stream(
    events: AsyncGenerator[StreamEvent, None],
    *,
    request_timeout: timedelta,
) -> AsyncGenerator[str, None]:
    """Format domain events as SSE with timeout, error handling and metrics.

    Parameters
    ----------
    events:
        Async generator of ``StreamEvent`` instances (business logic).
    request_timeout:
        Wall-clock timeout for the entire streaming lifecycle.
    """
    with tracer.start_as_current_span(SPAN_SSE_STREAM) as span:
        code = "ok"
        event_counts: EventCounter[str] = EventCounter()
        CHAT_SESSIONS_ACTIVE.inc()
        start = time.monotonic()
        try:
            async with asyncio.timeout(request_timeout.total_seconds()):
                async for event in events:
                    event_counts[event.type] += 1
                    STREAM_EVENTS_TOTAL.labels(event_type=event.type).inc()
                    if isinstance(event, ToolCallEvent):
                        TOOL_CALLS_TOTAL.labels(
                            tool_name=event.name, status=event.status
                        ).inc()
                    yield format_sse(event)

        except AcquireTimeout:
            code = "MODEL_BUSY"
            logger.warning("Semaphore acquire timeout, no slot available.")
            yield format_sse(ErrorEvent(message="Model is busy. Try again later.", code=code))
        except BudgetExceeded as exc:
            code = "BUDGET_EXCEEDED"
            yield format_sse(ErrorEvent(message=str(exc), code=code))
        except APIConnectionError:
            code = "MODEL_UNREACHABLE"
            logger.warning("Chat model unreachable.")
            yield format_sse(
                ErrorEvent(
                    message="AI service temporarily unavailable. Please try again later.",
                    code=code,
                )
            )
        except TimeoutError:
            code = "REQUEST_TIMEOUT"
            logger.warning("Request timed out after %s.", request_timeout)
            yield format_sse(ErrorEvent(message="Request timed out.", code=code))
        except asyncio.CancelledError:
            code = "CANCELLED"
            raise
        except Exception as e:
            code = "PROCESSING_ERROR"
            span.record_exception(e)
            logger.warning("Unexpected error in SSE stream", exc_info=True)
            yield format_error_sse(e, code=code)
        finally:
            span.set_attribute(ATTR_SSE_ERROR_CODE, code)
            span.set_attribute(ATTR_SSE_EVENT_COUNTS, json.dumps(event_counts))
            CHAT_SESSIONS_ACTIVE.dec()
            CHAT_SESSIONS_TOTAL.labels(status=code).inc()
            CHAT_SESSION_DURATION_SECONDS.observe(time.monotonic() - start)

        STREAM_EVENTS_TOTAL.labels(event_type="done").inc()
        yield format_sse(DoneEvent())
