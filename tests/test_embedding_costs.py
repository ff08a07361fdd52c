"""Tests for embedding cost estimation and the spend monitor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from medifly.core.embedding.costs import (
    MODEL_COSTS,
    EmbeddingCostMonitor,
    estimate_cost,
    estimate_text_cost,
)
from medifly.core.errors import BudgetExceeded


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestEstimateCost:
    def test_known_model(self):
        assert estimate_cost("text-embedding-3-small", 1_000_000) == pytest.approx(0.02)
        assert estimate_cost("text-embedding-3-large", 500_000) == pytest.approx(0.065)

    def test_unknown_model_is_free(self):
        assert estimate_cost("made-up-model", 1_000_000) == 0.0

    def test_gemini_model_is_listed(self):
        assert MODEL_COSTS["text-embedding-004"].dimensions == 1536

    def test_text_cost_uses_four_chars_per_token(self):
        tokens, cost = estimate_text_cost("text-embedding-3-small", "a" * 40)
        assert tokens == 10
        assert cost == pytest.approx(10 / 1_000_000 * 0.02)


class TestEmbeddingCostMonitor:
    @pytest.fixture
    def clock(self) -> _Clock:
        return _Clock(datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc))

    def test_allows_spend_up_to_the_cap(self, clock):
        monitor = EmbeddingCostMonitor(1.0, 10.0, clock=clock)
        monitor.record(0.5)
        monitor.check_budget(0.5)

    def test_refuses_daily_overrun(self, clock):
        monitor = EmbeddingCostMonitor(1.0, 10.0, clock=clock)
        monitor.record(0.9)
        with pytest.raises(BudgetExceeded) as exc_info:
            monitor.check_budget(0.2)
        assert exc_info.value.period == "daily"
        assert exc_info.value.scope == "embedding"

    def test_refuses_monthly_overrun(self, clock):
        monitor = EmbeddingCostMonitor(100.0, 1.0, clock=clock)
        monitor.record(0.95)
        with pytest.raises(BudgetExceeded) as exc_info:
            monitor.check_budget(0.1)
        assert exc_info.value.period == "monthly"

    def test_daily_spend_rolls_over(self, clock):
        monitor = EmbeddingCostMonitor(1.0, 10.0, clock=clock)
        monitor.record(1.0)
        clock.now += timedelta(hours=13)  # 2024-04-01, a new day and month
        monitor.check_budget(0.5)
        assert monitor.daily_spend == 0.0
        assert monitor.monthly_spend == 0.0

    def test_monthly_spend_survives_a_new_day(self):
        clock = _Clock(datetime(2024, 3, 10, 23, 0, tzinfo=timezone.utc))
        monitor = EmbeddingCostMonitor(1.0, 10.0, clock=clock)
        monitor.record(0.75)
        clock.now += timedelta(hours=2)
        status = monitor.status()
        assert status["daily"]["spend"] == 0.0
        assert status["monthly"]["spend"] == 0.75
        assert status["monthly"]["percentage"] == 7.5

    def test_warning_logged_once(self, clock, caplog):
        monitor = EmbeddingCostMonitor(1.0, 100.0, warning_threshold=0.8, clock=clock)
        with caplog.at_level("WARNING"):
            monitor.check_budget(0.85)
            monitor.check_budget(0.9)
        warnings = [r for r in caplog.records if "daily spend" in r.getMessage()]
        assert len(warnings) == 1
