"""Pure aggregation over token-usage rows: stats, charts, alerts, export.

Functions take any objects with the ``TokenUsage`` attributes so they
can be exercised without a database.
"""

from __future__ import annotations

import csv
import io
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Protocol

from .models import ActionUsage, DailyUsage, UsageAlert, UsageStats

CSV_HEADER = (
    "Date",
    "Action Type",
    "Endpoint",
    "Model",
    "Input Tokens",
    "Output Tokens",
    "Total Tokens",
    "Cost (USD)",
    "Duration (ms)",
    "Success",
    "Session ID",
)

STATUS_OVER = "Over Budget"
STATUS_WARNING = "Warning"
STATUS_NORMAL = "Normal"


class UsageRow(Protocol):
    created_at: datetime
    action_type: str
    total_tokens: int
    cost_usd: float


class BudgetLike(Protocol):
    daily_limit_usd: float
    monthly_limit_usd: float
    current_daily_spend: float
    current_monthly_spend: float
    notifications_enabled: bool
    warning_threshold_percent: int


# ---------------------------------------------------------------------------
# Cost and dates
# ---------------------------------------------------------------------------


def calculate_cost(
    input_tokens: int | None,
    output_tokens: int | None,
    input_rate_per_1k: float,
    output_rate_per_1k: float,
) -> float:
    """Cost in USD; 0 when either token count is missing or zero."""
    if not input_tokens or not output_tokens:
        return 0.0
    return input_tokens / 1000 * input_rate_per_1k + output_tokens / 1000 * output_rate_per_1k


def day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def day_end(d: date) -> datetime:
    """Last millisecond of *d* (UTC), the inclusive end of a date filter."""
    return datetime.combine(d, time(23, 59, 59, 999000), tzinfo=timezone.utc)


def month_start(d: date) -> date:
    return d.replace(day=1)


def _row_date(row: UsageRow) -> date:
    created = row.created_at
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return created.date()


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def usage_stats(rows: Iterable[UsageRow]) -> UsageStats:
    rows = list(rows)
    if not rows:
        return UsageStats()
    total_tokens = sum(r.total_tokens or 0 for r in rows)
    actions = Counter(r.action_type for r in rows)
    return UsageStats(
        total_tokens=total_tokens,
        total_cost=sum(r.cost_usd or 0.0 for r in rows),
        request_count=len(rows),
        avg_tokens_per_request=round(total_tokens / len(rows), 2),
        most_used_action=actions.most_common(1)[0][0],
    )


def daily_chart(rows: Iterable[UsageRow], days: int, today: date) -> list[DailyUsage]:
    """One entry per day of the *days*-long window ending *today*.

    Days without usage are zero-filled.
    """
    buckets: dict[date, DailyUsage] = {}
    for row in rows:
        d = _row_date(row)
        entry = buckets.setdefault(d, DailyUsage(date=d))
        entry.tokens += row.total_tokens or 0
        entry.cost += row.cost_usd or 0.0
        entry.requests += 1
    first = today - timedelta(days=days - 1)
    return [
        buckets.get(first + timedelta(days=i), DailyUsage(date=first + timedelta(days=i)))
        for i in range(days)
    ]


def usage_by_action(rows: Iterable[UsageRow]) -> list[ActionUsage]:
    """Per-action totals with share of tokens, most tokens first."""
    totals: dict[str, ActionUsage] = defaultdict(lambda: ActionUsage(action=""))
    all_tokens = 0
    for row in rows:
        entry = totals[row.action_type]
        entry.action = row.action_type
        entry.tokens += row.total_tokens or 0
        entry.cost += row.cost_usd or 0.0
        entry.requests += 1
        all_tokens += row.total_tokens or 0
    result = list(totals.values())
    for entry in result:
        entry.percentage = entry.tokens / all_tokens * 100 if all_tokens else 0.0
    return sorted(result, key=lambda e: e.tokens, reverse=True)


# ---------------------------------------------------------------------------
# Budget status
# ---------------------------------------------------------------------------


def percentage(spend: float, limit: float) -> float:
    return spend / limit * 100 if limit > 0 else 0.0


def budget_status(pct: float, threshold: int) -> str:
    if pct >= 100:
        return STATUS_OVER
    if pct >= threshold:
        return STATUS_WARNING
    return STATUS_NORMAL


def budget_alerts(budget: BudgetLike) -> list[UsageAlert]:
    """Daily / monthly alerts for a budget at or past its warning threshold."""
    if not budget.notifications_enabled:
        return []
    alerts = []
    for period, spend, limit in (
        ("daily", budget.current_daily_spend, budget.daily_limit_usd),
        ("monthly", budget.current_monthly_spend, budget.monthly_limit_usd),
    ):
        pct = percentage(spend, limit)
        if pct < budget.warning_threshold_percent:
            continue
        alerts.append(
            UsageAlert(
                id=f"{period}-warning",
                type="danger" if pct >= 100 else "warning",
                title=f"{period.capitalize()} Budget Alert",
                message=(
                    f"You've used {pct:.1f}% of your {period} budget "
                    f"(${spend:.2f} / ${limit:.2f})"
                ),
                percentage=pct,
                threshold=budget.warning_threshold_percent,
            )
        )
    return alerts


def budget_summary(budget: BudgetLike) -> dict[str, Any]:
    daily = percentage(budget.current_daily_spend, budget.daily_limit_usd)
    monthly = percentage(budget.current_monthly_spend, budget.monthly_limit_usd)
    threshold = budget.warning_threshold_percent
    return {
        "daily_percentage": round(daily, 2),
        "monthly_percentage": round(monthly, 2),
        "daily_status": budget_status(daily, threshold),
        "monthly_status": budget_status(monthly, threshold),
        "daily_remaining": max(budget.daily_limit_usd - budget.current_daily_spend, 0.0),
        "monthly_remaining": max(
            budget.monthly_limit_usd - budget.current_monthly_spend, 0.0
        ),
    }


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def to_csv(rows: Sequence[Any]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow(
            [
                _csv_value(row.created_at.isoformat()),
                _csv_value(row.action_type),
                _csv_value(row.endpoint),
                _csv_value(row.model_name),
                _csv_value(row.input_tokens),
                _csv_value(row.output_tokens),
                _csv_value(row.total_tokens),
                _csv_value(row.cost_usd),
                _csv_value(row.duration_ms),
                _csv_value(row.success),
                _csv_value(row.session_id),
            ]
        )
    return buf.getvalue().rstrip("\n")
