"""UsageService -- token metering, budgets and the usage dashboard API.

Budgets are created lazily with the configured defaults.  Reading a
budget rolls the daily spend over when the stored reset date lies in an
earlier day, and the monthly spend when it lies in an earlier month.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import Depends

from medifly.configs.config import get_usage_config
from medifly.configs.system import UsageConfig
from medifly.core.errors import BudgetExceeded
from medifly.core.metrics import (
    BUDGET_ALERTS_TOTAL,
    BUDGET_REJECTIONS_TOTAL,
    USAGE_COST_USD_TOTAL,
    USAGE_TOKENS_TOTAL,
)
from medifly.infra.db.converters import row_to_dict
from medifly.infra.db.deps import get_usage_repository
from medifly.infra.db.models import TokenUsage, UsageBudget, UsageSession
from medifly.infra.db.paging import Page
from medifly.infra.db.usage import UsageFilters, UsageRepository
from medifly.infra.telemetry import (
    ATTR_USAGE_ACTION,
    ATTR_USAGE_TOKENS,
    SPAN_USAGE_TRACK,
    tracer,
)

from .aggregation import (
    budget_alerts,
    budget_summary,
    calculate_cost,
    daily_chart,
    day_end,
    day_start,
    month_start,
    to_csv,
    usage_by_action,
    usage_stats,
)
from .models import (
    ActionUsage,
    BudgetUpdate,
    DailyUsage,
    ExportFormat,
    HistoryQuery,
    TrackRequest,
    UsageAlert,
    UsageStats,
)

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def history_filters(query: HistoryQuery) -> UsageFilters:
    """Map date filters to timestamps; the end date is inclusive."""
    return UsageFilters(
        start=day_start(query.start_date) if query.start_date else None,
        end=day_end(query.end_date) if query.end_date else None,
        action_type=query.action_type,
        model_name=query.model_name,
        session_id=query.session_id,
        success=query.success,
    )


def _rolled_over(budget: UsageBudget, today: date) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if budget.last_daily_reset is None or budget.last_daily_reset < today:
        changes["current_daily_spend"] = 0.0
        changes["last_daily_reset"] = today
    last_month = budget.last_monthly_reset
    if last_month is None or (last_month.year, last_month.month) < (today.year, today.month):
        changes["current_monthly_spend"] = 0.0
        changes["last_monthly_reset"] = today
    return changes


class UsageService:
    def __init__(
        self,
        repository: UsageRepository,
        config: UsageConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._config = config
        self._clock = clock

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    # -- cost ------------------------------------------------------------------

    async def calculate_cost(
        self, model_name: str | None, input_tokens: int | None, output_tokens: int | None
    ) -> float:
        """Cost from the active cost rate of *model_name*; 0 when unknown."""
        if not model_name or not input_tokens or not output_tokens:
            return 0.0
        rate = await self._repo.get_cost_rate(model_name)
        if rate is None:
            return 0.0
        return calculate_cost(
            input_tokens,
            output_tokens,
            rate.input_cost_per_1k_tokens,
            rate.output_cost_per_1k_tokens,
        )

    async def cost_rates(self) -> list[dict[str, Any]]:
        return [row_to_dict(r) for r in await self._repo.list_cost_rates()]

    # -- budget ----------------------------------------------------------------

    async def get_budget(self, user_id: str) -> UsageBudget:
        """The user's budget, created with defaults and rolled over as needed."""
        budget = await self._repo.get_budget(user_id)
        today = self._today()
        if budget is None:
            return await self._repo.create_budget(
                user_id,
                {
                    "daily_limit_usd": self._config.daily_limit_usd,
                    "monthly_limit_usd": self._config.monthly_limit_usd,
                    "warning_threshold_percent": self._config.warning_threshold_percent,
                    "current_daily_spend": 0.0,
                    "current_monthly_spend": 0.0,
                    "last_daily_reset": today,
                    "last_monthly_reset": today,
                },
            )
        changes = _rolled_over(budget, today)
        if changes:
            logger.info("Rolling over usage budget of %s: %s", user_id, sorted(changes))
            budget = await self._repo.update_budget(user_id, changes)
        return budget

    async def update_budget(self, user_id: str, update: BudgetUpdate) -> UsageBudget:
        await self.get_budget(user_id)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return await self.get_budget(user_id)
        return await self._repo.update_budget(user_id, changes)

    async def budget_view(self, user_id: str) -> dict[str, Any]:
        budget = await self.get_budget(user_id)
        return {
            **row_to_dict(budget),
            **budget_summary(budget),
            "alerts": [a.model_dump() for a in budget_alerts(budget)],
        }

    async def enforce_budget(self, user_id: str) -> None:
        """Raise ``BudgetExceeded`` once today's or this month's spend hit its cap."""
        budget = await self.get_budget(user_id)
        if budget.current_daily_spend >= budget.daily_limit_usd:
            BUDGET_REJECTIONS_TOTAL.labels(scope="usage").inc()
            raise BudgetExceeded(
                f"Daily budget of ${budget.daily_limit_usd:.2f} reached",
                scope="usage",
                period="daily",
            )
        if budget.current_monthly_spend >= budget.monthly_limit_usd:
            BUDGET_REJECTIONS_TOTAL.labels(scope="usage").inc()
            raise BudgetExceeded(
                f"Monthly budget of ${budget.monthly_limit_usd:.2f} reached",
                scope="usage",
                period="monthly",
            )

    # -- tracking --------------------------------------------------------------

    async def track(self, user_id: str, request: TrackRequest) -> tuple[TokenUsage, list[UsageAlert]]:
        """Record one metered request and return it with any budget alerts."""
        with tracer.start_as_current_span(SPAN_USAGE_TRACK) as span:
            span.set_attribute(ATTR_USAGE_ACTION, request.action_type)
            budget = await self.get_budget(user_id)
            session = await self._repo.active_session(user_id)
            if session is None:
                session = await self._repo.start_session(user_id)

            input_tokens = request.input_tokens or 0
            output_tokens = request.output_tokens or 0
            total = input_tokens + output_tokens
            cost = await self.calculate_cost(
                request.model_name, request.input_tokens, request.output_tokens
            )
            span.set_attribute(ATTR_USAGE_TOKENS, total)

            row = await self._repo.insert_usage(
                {
                    "user_id": user_id,
                    "session_id": session.id,
                    "action_type": request.action_type,
                    "endpoint": request.endpoint,
                    "model_name": request.model_name or UNKNOWN_MODEL,
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    "total_tokens": total,
                    "cost_usd": cost,
                    "request_data": request.request_data,
                    "response_data": request.response_data,
                    "duration_ms": request.duration_ms,
                    "success": request.success,
                    "error_message": request.error_message,
                }
            )
            await self._repo.bump_session(session.id, total, cost)
            await self._repo.add_spend(user_id, cost)

        USAGE_TOKENS_TOTAL.labels(action_type=request.action_type).inc(total)
        USAGE_COST_USD_TOTAL.labels(action_type=request.action_type).inc(cost)

        budget.current_daily_spend += cost
        budget.current_monthly_spend += cost
        alerts = budget_alerts(budget)
        for alert in alerts:
            BUDGET_ALERTS_TOTAL.labels(
                period=alert.id.split("-")[0], level=alert.type
            ).inc()
        if alerts:
            logger.warning("Usage alerts for %s: %s", user_id, [a.message for a in alerts])
        return row, alerts

    # -- dashboard -------------------------------------------------------------

    async def stats(self, user_id: str, start: date | None = None, end: date | None = None) -> UsageStats:
        today = self._today()
        start = start or today
        end = end or today
        rows = await self._repo.usage_between(user_id, day_start(start), day_end(end))
        return usage_stats(rows)

    async def today_stats(self, user_id: str) -> UsageStats:
        return await self.stats(user_id)

    async def month_stats(self, user_id: str) -> UsageStats:
        today = self._today()
        return await self.stats(user_id, month_start(today), today)

    async def daily_chart(self, user_id: str, days: int = 7) -> list[DailyUsage]:
        today = self._today()
        first = today - timedelta(days=days - 1)
        rows = await self._repo.usage_between(user_id, day_start(first), day_end(today))
        return daily_chart(rows, days, today)

    async def by_action(self, user_id: str, days: int = 30) -> list[ActionUsage]:
        today = self._today()
        rows = await self._repo.usage_between(
            user_id, day_start(today - timedelta(days=days)), day_end(today)
        )
        return usage_by_action(rows)

    async def history(
        self, user_id: str, query: HistoryQuery, page: int = 1, per_page: int | None = None
    ) -> Page[TokenUsage]:
        return await self._repo.history(
            user_id,
            history_filters(query),
            page,
            per_page or self._config.history_page_size,
        )

    async def export(
        self, user_id: str, query: HistoryQuery, fmt: ExportFormat
    ) -> tuple[str, str, str]:
        """Return ``(body, media_type, filename)`` for a usage export.

        Only the date range and action filters apply to exports.
        """
        filters = history_filters(
            HistoryQuery(
                start_date=query.start_date,
                end_date=query.end_date,
                action_type=query.action_type,
            )
        )
        rows = await self._repo.export_rows(user_id, filters)
        stamp = self._today().isoformat()
        if fmt == "csv":
            return to_csv(rows), "text/csv", f"usage-export-{stamp}.csv"
        body = json.dumps([row_to_dict(r) for r in rows], indent=2, default=str)
        return body, "application/json", f"usage-export-{stamp}.json"

    # -- sessions --------------------------------------------------------------

    async def sessions(self, user_id: str, limit: int = 10) -> list[UsageSession]:
        return await self._repo.recent_sessions(user_id, limit)

    async def start_session(
        self, user_id: str, name: str | None = None, metadata: dict | None = None
    ) -> UsageSession:
        name = name or f"Session {self._clock().strftime('%Y-%m-%d %H:%M:%S')}"
        return await self._repo.start_session(user_id, name, metadata)

    async def end_session(self, user_id: str, session_id: uuid.UUID) -> UsageSession:
        return await self._repo.end_session(user_id, session_id)

    async def delete_session(self, user_id: str, session_id: uuid.UUID) -> None:
        await self._repo.delete_session(user_id, session_id)


def session_to_dict(session: UsageSession) -> dict[str, Any]:
    data = row_to_dict(session)
    data["metadata"] = data.pop("extra_metadata")
    return data


def get_usage_service(
    repository: Annotated[UsageRepository, Depends(get_usage_repository)],
    config: Annotated[UsageConfig, Depends(get_usage_config)],
) -> UsageService:
    return UsageService(repository, config)
