"""Tests for usage aggregation and UsageService budgets / metering."""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from medifly.configs.system import UsageConfig
from medifly.core.errors import BudgetExceeded
from medifly.core.usage.aggregation import (
    CSV_HEADER,
    STATUS_NORMAL,
    STATUS_OVER,
    STATUS_WARNING,
    budget_alerts,
    budget_summary,
    calculate_cost,
    daily_chart,
    day_end,
    usage_by_action,
    usage_stats,
    to_csv,
)
from medifly.core.usage.models import BudgetUpdate, HistoryQuery, TrackRequest
from medifly.core.usage.service import UsageService, history_filters
from medifly.infra.db.models import CostRate, TokenUsage, UsageBudget, UsageSession

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _row(day: date, action: str = "query", tokens: int = 100, cost: float = 0.01, **extra):
    return SimpleNamespace(
        created_at=datetime(day.year, day.month, day.day, 9, 30, tzinfo=timezone.utc),
        action_type=action,
        total_tokens=tokens,
        cost_usd=cost,
        **extra,
    )


def _budget(**overrides) -> SimpleNamespace:
    values = dict(
        daily_limit_usd=10.0,
        monthly_limit_usd=300.0,
        current_daily_spend=0.0,
        current_monthly_spend=0.0,
        notifications_enabled=True,
        warning_threshold_percent=80,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


# =========================================================================
# Aggregation
# =========================================================================


class TestCalculateCost:
    def test_cost_from_rates(self):
        assert calculate_cost(1000, 500, 0.03, 0.06) == pytest.approx(0.06)

    def test_missing_counts_cost_nothing(self):
        assert calculate_cost(None, 500, 0.03, 0.06) == 0.0
        assert calculate_cost(1000, 0, 0.03, 0.06) == 0.0

    def test_day_end_is_inclusive(self):
        end = day_end(date(2024, 5, 10))
        assert end == datetime(2024, 5, 10, 23, 59, 59, 999000, tzinfo=timezone.utc)


class TestUsageStats:
    def test_empty(self):
        stats = usage_stats([])
        assert stats.request_count == 0
        assert stats.most_used_action is None

    def test_totals(self):
        stats = usage_stats(
            [
                _row(TODAY, "query", 100, 0.01),
                _row(TODAY, "query", 200, 0.02),
                _row(TODAY, "search", 50, 0.005),
            ]
        )
        assert stats.total_tokens == 350
        assert stats.total_cost == pytest.approx(0.035)
        assert stats.request_count == 3
        assert stats.avg_tokens_per_request == 116.67
        assert stats.most_used_action == "query"


class TestDailyChart:
    def test_zero_filled_window(self):
        chart = daily_chart(
            [_row(date(2024, 5, 9)), _row(date(2024, 5, 9), tokens=50, cost=0.5)],
            days=3,
            today=TODAY,
        )
        assert [d.date for d in chart] == [date(2024, 5, 8), date(2024, 5, 9), TODAY]
        assert [d.requests for d in chart] == [0, 2, 0]
        assert chart[1].tokens == 150
        assert chart[1].cost == pytest.approx(0.51)


class TestUsageByAction:
    def test_sorted_with_percentages(self):
        result = usage_by_action(
            [_row(TODAY, "search", 100), _row(TODAY, "query", 300), _row(TODAY, "query", 0)]
        )
        assert [a.action for a in result] == ["query", "search"]
        assert result[0].requests == 2
        assert result[0].percentage == 75.0
        assert result[1].percentage == 25.0

    def test_no_tokens(self):
        assert usage_by_action([_row(TODAY, tokens=0)])[0].percentage == 0.0


class TestBudgetAlerts:
    def test_below_threshold(self):
        assert budget_alerts(_budget(current_daily_spend=7.9)) == []

    def test_warning_and_danger(self):
        alerts = budget_alerts(_budget(current_daily_spend=8.5, current_monthly_spend=300.0))
        assert [(a.id, a.type) for a in alerts] == [
            ("daily-warning", "warning"),
            ("monthly-warning", "danger"),
        ]
        assert alerts[0].title == "Daily Budget Alert"
        assert alerts[0].message == "You've used 85.0% of your daily budget ($8.50 / $10.00)"
        assert alerts[0].threshold == 80

    def test_notifications_disabled(self):
        assert budget_alerts(_budget(current_daily_spend=20.0, notifications_enabled=False)) == []

    def test_summary(self):
        summary = budget_summary(_budget(current_daily_spend=12.0, current_monthly_spend=240.0))
        assert summary["daily_status"] == STATUS_OVER
        assert summary["monthly_status"] == STATUS_WARNING
        assert summary["daily_remaining"] == 0.0
        assert summary["monthly_remaining"] == 60.0
        assert summary["daily_percentage"] == 120.0
        assert budget_summary(_budget())["daily_status"] == STATUS_NORMAL


class TestToCsv:
    def test_header_and_values(self):
        row = _row(
            TODAY,
            endpoint="/api/v1/ai/chat",
            model_name="gpt-4o",
            input_tokens=60,
            output_tokens=40,
            duration_ms=None,
            success=True,
            session_id=None,
        )
        lines = to_csv([row]).split("\n")
        assert lines[0] == ",".join(CSV_HEADER)
        assert lines[1] == (
            "2024-05-10T09:30:00+00:00,query,/api/v1/ai/chat,gpt-4o,60,40,100,0.01,,true,"
        )

    def test_empty_export_is_header_only(self):
        assert to_csv([]) == ",".join(CSV_HEADER)


# =========================================================================
# UsageService
# =========================================================================


class FakeUsageRepository:
    def __init__(self) -> None:
        self.budgets: dict[str, UsageBudget] = {}
        self.rates = {
            "gpt-4o": CostRate(
                model_name="gpt-4o",
                input_cost_per_1k_tokens=0.005,
                output_cost_per_1k_tokens=0.015,
                is_active=True,
            )
        }
        self.rows: list[TokenUsage] = []
        self.sessions: list[UsageSession] = []
        self.spend: list[tuple[str, float]] = []
        self.bumps: list[tuple[uuid.UUID, int, float]] = []
        self.export_filters = None

    async def get_cost_rate(self, model_name):
        return self.rates.get(model_name)

    async def list_cost_rates(self):
        return list(self.rates.values())

    async def get_budget(self, user_id):
        return self.budgets.get(user_id)

    async def create_budget(self, user_id, defaults):
        budget = UsageBudget(
            id=uuid.uuid4(), user_id=user_id, notifications_enabled=True, **defaults
        )
        self.budgets[user_id] = budget
        return budget

    async def update_budget(self, user_id, values):
        budget = self.budgets[user_id]
        for key, value in values.items():
            setattr(budget, key, value)
        return budget

    async def add_spend(self, user_id, cost):
        self.spend.append((user_id, cost))

    async def active_session(self, user_id):
        return next(
            (s for s in self.sessions if s.user_id == user_id and s.ended_at is None), None
        )

    async def start_session(self, user_id, name=None, metadata=None):
        session = UsageSession(
            id=uuid.uuid4(), user_id=user_id, session_name=name, extra_metadata=metadata
        )
        self.sessions.append(session)
        return session

    async def insert_usage(self, values):
        row = TokenUsage(id=uuid.uuid4(), created_at=NOW, **values)
        self.rows.append(row)
        return row

    async def bump_session(self, session_id, tokens, cost):
        self.bumps.append((session_id, tokens, cost))

    async def usage_between(self, user_id, start, end):
        return [r for r in self.rows if r.user_id == user_id and start <= r.created_at <= end]

    async def export_rows(self, user_id, filters):
        self.export_filters = filters
        return [r for r in self.rows if r.user_id == user_id]


@pytest.fixture
def repo() -> FakeUsageRepository:
    return FakeUsageRepository()


@pytest.fixture
def service(repo) -> UsageService:
    return UsageService(repo, UsageConfig(), clock=lambda: NOW)


def _stored_budget(repo, **overrides) -> UsageBudget:
    values = dict(
        id=uuid.uuid4(),
        user_id="alice",
        daily_limit_usd=10.0,
        monthly_limit_usd=300.0,
        current_daily_spend=0.0,
        current_monthly_spend=0.0,
        last_daily_reset=TODAY,
        last_monthly_reset=TODAY,
        notifications_enabled=True,
        warning_threshold_percent=80,
    )
    values.update(overrides)
    budget = UsageBudget(**values)
    repo.budgets[budget.user_id] = budget
    return budget


class TestBudgets:
    @pytest.mark.asyncio
    async def test_created_with_defaults(self, service, repo):
        budget = await service.get_budget("alice")
        assert budget.daily_limit_usd == 10.0
        assert budget.monthly_limit_usd == 300.0
        assert budget.last_daily_reset == TODAY
        assert "alice" in repo.budgets

    @pytest.mark.asyncio
    async def test_daily_rollover_keeps_monthly(self, service, repo):
        _stored_budget(
            repo,
            current_daily_spend=4.0,
            current_monthly_spend=40.0,
            last_daily_reset=date(2024, 5, 9),
            last_monthly_reset=date(2024, 5, 1),
        )
        budget = await service.get_budget("alice")
        assert budget.current_daily_spend == 0.0
        assert budget.last_daily_reset == TODAY
        assert budget.current_monthly_spend == 40.0

    @pytest.mark.asyncio
    async def test_monthly_rollover(self, service, repo):
        _stored_budget(
            repo,
            current_daily_spend=4.0,
            current_monthly_spend=40.0,
            last_daily_reset=date(2024, 4, 30),
            last_monthly_reset=date(2024, 4, 1),
        )
        budget = await service.get_budget("alice")
        assert budget.current_daily_spend == 0.0
        assert budget.current_monthly_spend == 0.0
        assert budget.last_monthly_reset == TODAY

    @pytest.mark.asyncio
    async def test_update_only_sent_fields(self, service, repo):
        _stored_budget(repo)
        budget = await service.update_budget("alice", BudgetUpdate(daily_limit_usd=25.0))
        assert budget.daily_limit_usd == 25.0
        assert budget.monthly_limit_usd == 300.0

    @pytest.mark.asyncio
    async def test_budget_view(self, service, repo):
        _stored_budget(repo, current_daily_spend=9.0)
        view = await service.budget_view("alice")
        assert view["daily_status"] == STATUS_WARNING
        assert view["alerts"][0]["id"] == "daily-warning"
        assert view["user_id"] == "alice"

    @pytest.mark.asyncio
    async def test_enforce_budget(self, service, repo):
        _stored_budget(repo, current_daily_spend=9.99)
        await service.enforce_budget("alice")

        repo.budgets["alice"].current_daily_spend = 10.0
        with pytest.raises(BudgetExceeded) as exc_info:
            await service.enforce_budget("alice")
        assert exc_info.value.period == "daily"

        repo.budgets["alice"].current_daily_spend = 0.0
        repo.budgets["alice"].current_monthly_spend = 300.0
        with pytest.raises(BudgetExceeded) as exc_info:
            await service.enforce_budget("alice")
        assert exc_info.value.period == "monthly"


class TestTrack:
    @pytest.mark.asyncio
    async def test_cost_from_rate_and_session(self, service, repo):
        row, alerts = await service.track(
            "alice",
            TrackRequest(
                action_type="query", model_name="gpt-4o", input_tokens=1000, output_tokens=2000
            ),
        )
        assert row.total_tokens == 3000
        assert row.cost_usd == pytest.approx(0.035)
        assert row.session_id == repo.sessions[0].id
        assert repo.spend == [("alice", pytest.approx(0.035))]
        assert repo.bumps == [(repo.sessions[0].id, 3000, pytest.approx(0.035))]
        assert alerts == []

    @pytest.mark.asyncio
    async def test_reuses_active_session(self, service, repo):
        request = TrackRequest(action_type="search")
        await service.track("alice", request)
        await service.track("alice", request)
        assert len(repo.sessions) == 1

    @pytest.mark.asyncio
    async def test_unknown_model_costs_nothing(self, service, repo):
        row, _ = await service.track(
            "alice", TrackRequest(action_type="query", input_tokens=10, output_tokens=10)
        )
        assert row.model_name == "unknown"
        assert row.cost_usd == 0.0

    @pytest.mark.asyncio
    async def test_alert_when_threshold_crossed(self, service, repo):
        _stored_budget(repo, current_daily_spend=7.99)
        _, alerts = await service.track(
            "alice",
            TrackRequest(
                action_type="query", model_name="gpt-4o", input_tokens=1000, output_tokens=2000
            ),
        )
        assert [a.id for a in alerts] == ["daily-warning"]


class TestDashboard:
    @pytest.mark.asyncio
    async def test_today_and_chart(self, service, repo):
        await service.track("alice", TrackRequest(action_type="query", model_name="gpt-4o", input_tokens=100, output_tokens=100))
        await service.track("bob", TrackRequest(action_type="query"))

        stats = await service.today_stats("alice")
        assert stats.request_count == 1
        assert stats.total_tokens == 200

        chart = await service.daily_chart("alice", days=7)
        assert len(chart) == 7
        assert chart[-1].date == TODAY
        assert chart[-1].requests == 1

        by_action = await service.by_action("alice")
        assert by_action[0].action == "query"

    @pytest.mark.asyncio
    async def test_export_csv_and_json(self, service, repo):
        await service.track("alice", TrackRequest(action_type="export"))
        query = HistoryQuery(start_date=date(2024, 5, 1), model_name="gpt-4o", success=False)

        body, media_type, filename = await service.export("alice", query, "csv")
        assert media_type == "text/csv"
        assert filename == "usage-export-2024-05-10.csv"
        assert body.splitlines()[0].startswith("Date,Action Type")
        # only the date range and action type filter exports
        assert repo.export_filters.model_name is None
        assert repo.export_filters.success is None
        assert repo.export_filters.start == datetime(2024, 5, 1, tzinfo=timezone.utc)

        body, media_type, filename = await service.export("alice", query, "json")
        assert media_type == "application/json"
        assert filename.endswith(".json")
        assert json.loads(body)[0]["action_type"] == "export"

    @pytest.mark.asyncio
    async def test_session_default_name(self, service):
        session = await service.start_session("alice")
        assert session.session_name == "Session 2024-05-10 12:00:00"

    def test_history_filters(self):
        filters = history_filters(
            HistoryQuery(start_date=date(2024, 5, 1), end_date=date(2024, 5, 2), action_type="query")
        )
        assert filters.start == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert filters.end == day_end(date(2024, 5, 2))
        assert filters.action_type == "query"
