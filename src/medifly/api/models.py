"""Pydantic request models and SSE formatting for the HTTP API."""

from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from medifly.core.concierge.events import ErrorEvent, StreamEvent
from medifly.core.concierge.prompt import SearchContext
from medifly.infra.db.hospitals import SearchFilters

CHAT_MESSAGE_MAX_LENGTH = 8000


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """A single message in the conversation."""

    role: Literal["user", "assistant"] = Field(description="Message sender role")
    content: str = Field(description="Message content", max_length=CHAT_MESSAGE_MAX_LENGTH)


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(
        min_length=1, description="Conversation so far, oldest first"
    )
    search_context: SearchContext | None = None


def format_sse(event: StreamEvent) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


def format_error_sse(exc: Exception, code: str = "PROCESSING_ERROR") -> str:
    return format_sse(
        ErrorEvent(message=f"An error occurred during processing: {exc}", code=code)
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchFiltersModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    city: str | None = None
    state: str | None = None
    type: str | None = None
    emergency_services: bool | None = None
    is_verified: bool | None = True
    trauma_level: str | None = None

    def to_filters(self) -> SearchFilters:
        return SearchFilters(**self.model_dump())


class SearchOptionsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    semantic_weight: float | None = Field(default=None, ge=0, le=1)
    text_weight: float | None = Field(default=None, ge=0, le=1)
    similarity_threshold: float | None = Field(default=None, ge=0, le=1)
    limit: int | None = Field(default=None, ge=1, le=100)


class HybridSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    filters: SearchFiltersModel = Field(default_factory=SearchFiltersModel)
    options: SearchOptionsModel = Field(default_factory=SearchOptionsModel)


class CombinedSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    location: str | None = None
    hospital_limit: int = Field(default=20, ge=1, le=100)
    doctor_limit: int = Field(default=15, ge=1, le=100)


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


class IndexRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    batch_size: int | None = Field(default=None, ge=1, le=100)
    force_regenerate: bool = False
    delay_ms: int | None = Field(default=None, ge=0, le=60_000)


class ReindexRequest(BaseModel):
    hospital_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)
