"""Usage metering DB access: token usage, budgets, sessions, cost rates."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medifly.core.errors import NotFound

from .models import CostRate, TokenUsage, UsageBudget, UsageSession
from .paging import Page, paginate

logger = logging.getLogger(__name__)


@dataclass
class UsageFilters:
    """Filters shared by history and export."""

    start: datetime | None = None
    end: datetime | None = None
    action_type: str | None = None
    model_name: str | None = None
    session_id: uuid.UUID | None = None
    success: bool | None = None


def _filtered(user_id: str, filters: UsageFilters) -> Select:
    stmt = select(TokenUsage).where(TokenUsage.user_id == user_id)
    if filters.start is not None:
        stmt = stmt.where(TokenUsage.created_at >= filters.start)
    if filters.end is not None:
        stmt = stmt.where(TokenUsage.created_at <= filters.end)
    if filters.action_type:
        stmt = stmt.where(TokenUsage.action_type == filters.action_type)
    if filters.model_name:
        stmt = stmt.where(TokenUsage.model_name == filters.model_name)
    if filters.session_id is not None:
        stmt = stmt.where(TokenUsage.session_id == filters.session_id)
    if filters.success is not None:
        stmt = stmt.where(TokenUsage.success.is_(filters.success))
    return stmt.order_by(TokenUsage.created_at.desc())


class UsageRepository:
    """Async wrapper around the usage metering tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- Cost rates ---------------------------------------------------------

    async def list_cost_rates(self) -> list[CostRate]:
        stmt = (
            select(CostRate)
            .where(CostRate.is_active.is_(True))
            .order_by(CostRate.model_name)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_cost_rate(self, model_name: str) -> CostRate | None:
        stmt = select(CostRate).where(
            CostRate.model_name == model_name, CostRate.is_active.is_(True)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    # -- Budgets ------------------------------------------------------------

    async def get_budget(self, user_id: str) -> UsageBudget | None:
        stmt = select(UsageBudget).where(UsageBudget.user_id == user_id)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def create_budget(self, user_id: str, defaults: dict[str, Any]) -> UsageBudget:
        budget = UsageBudget(user_id=user_id, **defaults)
        async with self._session_factory() as session:
            session.add(budget)
            await session.commit()
            await session.refresh(budget)
        logger.info("Created usage budget for user %s", user_id)
        return budget

    async def update_budget(self, user_id: str, values: dict[str, Any]) -> UsageBudget:
        async with self._session_factory() as session:
            budget = (
                await session.execute(
                    select(UsageBudget).where(UsageBudget.user_id == user_id)
                )
            ).scalar_one_or_none()
            if budget is None:
                raise NotFound("Usage budget", user_id)
            for key, value in values.items():
                setattr(budget, key, value)
            await session.commit()
            await session.refresh(budget)
        return budget

    async def add_spend(self, user_id: str, cost: float) -> None:
        stmt = (
            update(UsageBudget)
            .where(UsageBudget.user_id == user_id)
            .values(
                current_daily_spend=UsageBudget.current_daily_spend + cost,
                current_monthly_spend=UsageBudget.current_monthly_spend + cost,
            )
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    # -- Token usage --------------------------------------------------------

    async def insert_usage(self, values: dict[str, Any]) -> TokenUsage:
        row = TokenUsage(**values)
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row

    async def usage_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[TokenUsage]:
        """Rows of *user_id* with ``start <= created_at <= end``, oldest first."""
        stmt = (
            select(TokenUsage)
            .where(
                TokenUsage.user_id == user_id,
                TokenUsage.created_at >= start,
                TokenUsage.created_at <= end,
            )
            .order_by(TokenUsage.created_at)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def history(
        self, user_id: str, filters: UsageFilters, page: int, per_page: int
    ) -> Page[TokenUsage]:
        async with self._session_factory() as session:
            return await paginate(session, _filtered(user_id, filters), page, per_page)

    async def export_rows(self, user_id: str, filters: UsageFilters) -> list[TokenUsage]:
        async with self._session_factory() as session:
            return list((await session.execute(_filtered(user_id, filters))).scalars().all())

    # -- Sessions -----------------------------------------------------------

    async def active_session(self, user_id: str) -> UsageSession | None:
        stmt = (
            select(UsageSession)
            .where(UsageSession.user_id == user_id, UsageSession.ended_at.is_(None))
            .order_by(UsageSession.started_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def start_session(
        self, user_id: str, name: str | None = None, metadata: dict | None = None
    ) -> UsageSession:
        row = UsageSession(user_id=user_id, session_name=name, extra_metadata=metadata)
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row

    async def end_session(self, user_id: str, session_id: uuid.UUID) -> UsageSession:
        async with self._session_factory() as session:
            row = await session.get(UsageSession, session_id)
            if row is None or row.user_id != user_id:
                raise NotFound("Usage session", session_id)
            if row.ended_at is None:
                row.ended_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(row)
        return row

    async def delete_session(self, user_id: str, session_id: uuid.UUID) -> None:
        stmt = delete(UsageSession).where(
            UsageSession.id == session_id, UsageSession.user_id == user_id
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:
            raise NotFound("Usage session", session_id)

    async def bump_session(self, session_id: uuid.UUID, tokens: int, cost: float) -> None:
        stmt = (
            update(UsageSession)
            .where(UsageSession.id == session_id)
            .values(
                total_tokens=UsageSession.total_tokens + tokens,
                total_cost_usd=UsageSession.total_cost_usd + cost,
                request_count=UsageSession.request_count + 1,
            )
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def recent_sessions(self, user_id: str, limit: int) -> list[UsageSession]:
        stmt = (
            select(UsageSession)
            .where(UsageSession.user_id == user_id)
            .order_by(UsageSession.started_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
