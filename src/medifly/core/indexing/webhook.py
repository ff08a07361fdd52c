"""Database-change webhook: decide whether a hospital needs re-embedding.

Payloads follow the Postgres change-feed shape
``{type, table, schema, record, old_record}``.  Embedding failures are
reported with HTTP 200 so the sender does not retry.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from medifly.core.errors import InvalidRequest, Unauthorized
from medifly.core.metrics import WEBHOOK_EVENTS_TOTAL
from medifly.infra.telemetry import (
    ATTR_WEBHOOK_OUTCOME,
    ATTR_WEBHOOK_TYPE,
    SPAN_WEBHOOK_EVENT,
    tracer,
)

from .indexer import HospitalIndexer

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
SIGNATURE_PREFIX = "sha256="

HANDLED_TABLE = "hospitals"
HANDLED_TYPES = frozenset({"INSERT", "UPDATE"})
EMBEDDING_FIELDS = (
    "name",
    "description",
    "type",
    "city",
    "state",
    "trauma_level",
    "emergency_services",
)

OUTCOME_SUCCESS = "success"
OUTCOME_IGNORED = "ignored"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"


class WebhookPayload(BaseModel):
    type: str
    table: str
    schema_name: str | None = Field(default=None, alias="schema")
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> None:
    """Check the hex HMAC-SHA256 of *body*; no-op when *secret* is empty.

    Raises:
        Unauthorized: the signature is missing or wrong.
    """
    if not secret:
        return
    if not signature:
        WEBHOOK_EVENTS_TOTAL.labels(outcome="unauthorized").inc()
        raise Unauthorized("Missing webhook signature")
    received = signature.removeprefix(SIGNATURE_PREFIX).strip().lower()
    if not hmac.compare_digest(received, sign(secret, body)):
        WEBHOOK_EVENTS_TOTAL.labels(outcome="unauthorized").inc()
        raise Unauthorized("Invalid webhook signature")


def needs_embedding(payload: WebhookPayload) -> bool:
    """INSERT always; UPDATE when embedded fields changed or no embedding."""
    if payload.type == "INSERT":
        return True
    record = payload.record or {}
    old = payload.old_record or {}
    changed = any(old.get(f) != record.get(f) for f in EMBEDDING_FIELDS)
    return changed or record.get("embedding") is None


def _result(outcome: str, message: str, **extra: Any) -> dict[str, Any]:
    WEBHOOK_EVENTS_TOTAL.labels(outcome=outcome).inc()
    return {"status": outcome, "message": message, **extra}


async def handle_event(payload: WebhookPayload, indexer: HospitalIndexer) -> dict[str, Any]:
    """Apply one change event; returns the response body.

    Raises:
        InvalidRequest: the record has no usable ``id``.
    """
    with tracer.start_as_current_span(SPAN_WEBHOOK_EVENT) as span:
        span.set_attribute(ATTR_WEBHOOK_TYPE, payload.type)
        result = await _handle(payload, indexer)
        span.set_attribute(ATTR_WEBHOOK_OUTCOME, result["status"])
        return result


async def _handle(payload: WebhookPayload, indexer: HospitalIndexer) -> dict[str, Any]:
    if payload.table != HANDLED_TABLE:
        return _result(OUTCOME_IGNORED, "Event not for hospitals table")
    if payload.type not in HANDLED_TYPES:
        return _result(OUTCOME_IGNORED, "Event type not handled")

    record = payload.record or {}
    if not record.get("id"):
        raise InvalidRequest("Invalid hospital record")
    try:
        hospital_id = uuid.UUID(str(record["id"]))
    except ValueError as exc:
        raise InvalidRequest("Invalid hospital record") from exc

    if not record.get("is_active"):
        return _result(OUTCOME_SKIPPED, "Hospital is inactive")
    if not needs_embedding(payload):
        return _result(OUTCOME_SKIPPED, "No embedding generation needed")

    details = {
        "hospital_id": str(hospital_id),
        "hospital_name": record.get("name"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    progress = await indexer.reindex([hospital_id])
    if progress.successful:
        logger.info("Webhook: embedded hospital %s", hospital_id)
        return _result(OUTCOME_SUCCESS, "Embedding generated successfully", **details)
    error = progress.errors[0].error if progress.errors else "Hospital not found or inactive"
    logger.warning("Webhook: embedding hospital %s failed: %s", hospital_id, error)
    return _result(OUTCOME_ERROR, "Failed to generate embedding", error=error, **details)
