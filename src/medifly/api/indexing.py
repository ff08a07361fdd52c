"""Embedding indexing endpoints: admin control, cron trigger and DB webhook."""

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, Request, status

from medifly.core.errors import IndexingInProgress, InvalidRequest, Unauthorized
from medifly.core.indexing.cron import run_cron_indexing
from medifly.core.indexing.indexer import IndexingOptions
from medifly.core.indexing.webhook import (
    SIGNATURE_HEADER,
    WebhookPayload,
    handle_event,
    verify_signature,
)

from .deps import (
    EmbeddingServiceDep,
    HospitalIndexerDep,
    IndexingConfigDep,
    IndexingJobsDep,
    WebhookConfigDep,
)
from .models import IndexRequest, ReindexRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["indexing"])

BEARER_PREFIX = "Bearer "


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/hospitals/embeddings")
async def embedding_status(
    indexer: HospitalIndexerDep,
    embedder: EmbeddingServiceDep,
    jobs: IndexingJobsDep,
) -> dict[str, Any]:
    return {
        "statistics": await indexer.status(),
        "embedding": embedder.status(),
        "job": jobs.status(),
        "timestamp": _now_iso(),
    }


@router.post("/hospitals/embeddings", status_code=status.HTTP_202_ACCEPTED)
async def start_indexing(
    indexer: HospitalIndexerDep,
    jobs: IndexingJobsDep,
    config: IndexingConfigDep,
    body: Annotated[IndexRequest | None, Body()] = None,
) -> dict[str, Any]:
    """Start a background ``index_all`` run; poll ``/progress`` for its state.

    A second start while a run is active is a 409.
    """
    body = body or IndexRequest()
    options = IndexingOptions(
        batch_size=body.batch_size or config.batch_size,
        force_regenerate=body.force_regenerate,
        delay_between_batches=(
            config.delay_between_batches
            if body.delay_ms is None
            else timedelta(milliseconds=body.delay_ms)
        ),
    )
    job_id = await jobs.start(indexer, options)
    return {
        "message": "Indexing started",
        "job_id": job_id,
        "options": {
            "batch_size": options.batch_size,
            "force_regenerate": options.force_regenerate,
            "delay_ms": int(options.delay_between_batches.total_seconds() * 1000),
        },
    }


@router.get("/hospitals/embeddings/progress")
async def indexing_progress(jobs: IndexingJobsDep) -> dict[str, Any]:
    return jobs.status()


@router.put("/hospitals/embeddings")
async def reindex_hospitals(
    body: ReindexRequest, indexer: HospitalIndexerDep
) -> dict[str, Any]:
    progress = await indexer.reindex(body.hospital_ids)
    return {
        "message": "Reindexing completed",
        "result": progress.as_dict(),
        "completed_at": _now_iso(),
    }


@router.delete("/hospitals/embeddings")
async def reset_embeddings(
    indexer: HospitalIndexerDep, jobs: IndexingJobsDep
) -> dict[str, Any]:
    if jobs.running:
        raise InvalidRequest("Cannot reset embeddings while an indexing job is running")
    count = await indexer.reset()
    return {
        "message": "All embeddings have been reset successfully",
        "reset_count": count,
        "reset_at": _now_iso(),
    }


# ---------------------------------------------------------------------------
# Cron
# ---------------------------------------------------------------------------


def require_cron_secret(
    config: WebhookConfigDep,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Require ``Authorization: Bearer <cron_secret>`` when a secret is set."""
    if not config.cron_secret:
        return
    token = ""
    if authorization and authorization.startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX):]
    if not hmac.compare_digest(token.encode(), config.cron_secret.encode()):
        raise Unauthorized("Invalid or missing cron secret")


CronAuth = Depends(require_cron_secret)


@router.post("/cron/hospital-embeddings", dependencies=[CronAuth])
async def cron_index(
    indexer: HospitalIndexerDep, config: IndexingConfigDep, jobs: IndexingJobsDep
) -> dict[str, Any]:
    if jobs.running:
        raise IndexingInProgress(f"Indexing job {jobs.job_id} is already running")
    result = await run_cron_indexing(indexer, config, source="endpoint")
    return {**result, "timestamp": _now_iso()}


@router.get("/cron/hospital-embeddings", dependencies=[CronAuth])
async def cron_health(indexer: HospitalIndexerDep) -> dict[str, Any]:
    return {"status": "healthy", "stats": await indexer.status(), "timestamp": _now_iso()}


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


@router.post("/webhooks/hospital-embeddings")
async def hospital_webhook(
    request: Request,
    indexer: HospitalIndexerDep,
    config: WebhookConfigDep,
    signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
) -> dict[str, Any]:
    """Re-embed a hospital after an INSERT or a relevant UPDATE.

    The signature is checked over the raw body before it is parsed.
    """
    body = await request.body()
    verify_signature(config.secret, body, signature)
    try:
        payload = WebhookPayload.model_validate_json(body)
    except ValueError as exc:
        raise InvalidRequest(f"Invalid webhook payload: {exc}") from exc
    return await handle_event(payload, indexer)


@router.get("/webhooks/hospital-embeddings")
async def webhook_health() -> dict[str, Any]:
    return {"status": "healthy", "timestamp": _now_iso()}
