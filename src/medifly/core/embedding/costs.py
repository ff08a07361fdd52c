"""Embedding spend tracking against daily and monthly caps.

The monitor is in-process: counters live for the lifetime of the
service and roll over on a new UTC day or month.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from medifly.configs.system import EmbeddingConfig
from medifly.core.errors import BudgetExceeded
from medifly.core.metrics import (
    BUDGET_REJECTIONS_TOTAL,
    EMBEDDING_BUDGET_DENIALS_TOTAL,
    EMBEDDING_COST_USD_TOTAL,
)
from medifly.infra.tokens import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelCost:
    cost_per_1m_tokens: float
    dimensions: int


MODEL_COSTS: dict[str, ModelCost] = {
    "text-embedding-3-small": ModelCost(0.02, 1536),
    "text-embedding-3-large": ModelCost(0.13, 3072),
    "text-embedding-ada-002": ModelCost(0.10, 1536),
    "text-embedding-004": ModelCost(0.0, 1536),
}


def estimate_cost(model_name: str, tokens: int) -> float:
    """USD for *tokens* on *model_name*; unknown models cost nothing."""
    rate = MODEL_COSTS.get(model_name)
    if rate is None:
        return 0.0
    return tokens / 1_000_000 * rate.cost_per_1m_tokens


def estimate_text_cost(model_name: str, text: str) -> tuple[int, float]:
    tokens = estimate_tokens(text)
    return tokens, estimate_cost(model_name, tokens)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingCostMonitor:
    """Tracks embedding spend and refuses calls past the caps."""

    def __init__(
        self,
        daily_limit: float,
        monthly_limit: float,
        warning_threshold: float = 0.8,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.daily_limit = daily_limit
        self.monthly_limit = monthly_limit
        self.warning_threshold = warning_threshold
        self._clock = clock
        now = clock()
        self._day = now.date()
        self._month = (now.year, now.month)
        self.daily_spend = 0.0
        self.monthly_spend = 0.0
        self._warned: set[str] = set()

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> EmbeddingCostMonitor:
        return cls(
            daily_limit=config.daily_budget_usd,
            monthly_limit=config.monthly_budget_usd,
            warning_threshold=config.budget_warning_threshold,
        )

    def _roll_over(self) -> None:
        now = self._clock()
        if now.date() != self._day:
            self._day = now.date()
            self.daily_spend = 0.0
            self._warned.discard("daily")
        if (now.year, now.month) != self._month:
            self._month = (now.year, now.month)
            self.monthly_spend = 0.0
            self._warned.discard("monthly")

    def check_budget(self, estimated_cost: float) -> None:
        """Raise ``BudgetExceeded`` if *estimated_cost* would break a cap."""
        self._roll_over()
        for period, spend, limit in (
            ("daily", self.daily_spend, self.daily_limit),
            ("monthly", self.monthly_spend, self.monthly_limit),
        ):
            projected = spend + estimated_cost
            if projected > limit:
                EMBEDDING_BUDGET_DENIALS_TOTAL.labels(period=period).inc()
                BUDGET_REJECTIONS_TOTAL.labels(scope="embedding").inc()
                raise BudgetExceeded(
                    f"Embedding {period} budget exceeded: "
                    f"${projected:.4f} > ${limit:.2f}",
                    scope="embedding",
                    period=period,
                )
            if limit and projected >= limit * self.warning_threshold and period not in self._warned:
                self._warned.add(period)
                logger.warning(
                    "Embedding %s spend at %.1f%% of budget ($%.4f / $%.2f)",
                    period,
                    projected / limit * 100,
                    projected,
                    limit,
                )

    def record(self, cost: float, model_name: str | None = None) -> None:
        self._roll_over()
        self.daily_spend += cost
        self.monthly_spend += cost
        if model_name is not None:
            EMBEDDING_COST_USD_TOTAL.labels(model_name=model_name).inc(cost)

    def status(self) -> dict[str, Any]:
        self._roll_over()
        return {
            "daily": {
                "spend": round(self.daily_spend, 6),
                "limit": self.daily_limit,
                "percentage": _percentage(self.daily_spend, self.daily_limit),
            },
            "monthly": {
                "spend": round(self.monthly_spend, 6),
                "limit": self.monthly_limit,
                "percentage": _percentage(self.monthly_spend, self.monthly_limit),
            },
            "warning_threshold": self.warning_threshold,
        }


def _percentage(spend: float, limit: float) -> float:
    if not limit:
        return 0.0
    return round(spend / limit * 100, 2)
