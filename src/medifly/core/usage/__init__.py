"""AI usage metering and budgets."""

from .models import ActionType, BudgetUpdate, HistoryQuery, TrackRequest
from .service import UsageService, get_usage_service

__all__ = [
    "ActionType",
    "BudgetUpdate",
    "HistoryQuery",
    "TrackRequest",
    "UsageService",
    "get_usage_service",
]
