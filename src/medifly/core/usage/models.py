"""Request / response schemas for usage metering."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ActionType = Literal[
    "query",
    "create",
    "update",
    "delete",
    "search",
    "list",
    "export",
    "import",
    "auth",
    "file_upload",
    "file_process",
    "analysis",
    "generation",
    "other",
]

AlertType = Literal["warning", "danger", "info"]
ExportFormat = Literal["csv", "json"]


class TrackRequest(BaseModel):
    """One metered AI request."""

    model_config = ConfigDict(extra="forbid")

    action_type: ActionType
    endpoint: str | None = None
    model_name: str | None = None
    input_tokens: int | None = Field(default=None, ge=0)
    output_tokens: int | None = Field(default=None, ge=0)
    request_data: dict[str, Any] | None = None
    response_data: dict[str, Any] | None = None
    duration_ms: int | None = Field(default=None, ge=0)
    success: bool = True
    error_message: str | None = None


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    daily_limit_usd: float | None = Field(default=None, gt=0)
    monthly_limit_usd: float | None = Field(default=None, gt=0)
    warning_threshold_percent: int | None = Field(default=None, ge=50, le=95)
    notifications_enabled: bool | None = None


class UsageAlert(BaseModel):
    id: str
    type: AlertType
    title: str
    message: str
    percentage: float
    threshold: int
    dismissible: bool = True


class UsageStats(BaseModel):
    total_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    avg_tokens_per_request: float = 0.0
    most_used_action: str | None = None


class DailyUsage(BaseModel):
    date: date
    tokens: int = 0
    cost: float = 0.0
    requests: int = 0


class ActionUsage(BaseModel):
    action: str
    tokens: int = 0
    cost: float = 0.0
    requests: int = 0
    percentage: float = 0.0


class SessionStart(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_name: str | None = Field(default=None, max_length=200)
    metadata: dict[str, Any] | None = None


class HistoryQuery(BaseModel):
    """Filters for usage history and export."""

    start_date: date | None = None
    end_date: date | None = None
    action_type: ActionType | None = None
    model_name: str | None = None
    session_id: uuid.UUID | None = None
    success: bool | None = None
