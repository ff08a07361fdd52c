"""Token usage metering, budgets and the usage dashboard."""

import uuid
from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response, status

from medifly.core.usage.models import (
    BudgetUpdate,
    ExportFormat,
    HistoryQuery,
    SessionStart,
    TrackRequest,
)
from medifly.core.usage.service import session_to_dict
from medifly.infra.db.converters import row_to_dict

from .deps import UsageServiceDep, UserIdDep

router = APIRouter(prefix="/api/v1/usage", tags=["usage"])

HistoryQueryDep = Annotated[HistoryQuery, Depends()]


@router.get("/budget")
async def get_budget(user_id: UserIdDep, service: UsageServiceDep) -> dict[str, Any]:
    """Budget with current spend, percentages, status and active alerts."""
    return await service.budget_view(user_id)


@router.put("/budget")
async def update_budget(
    body: BudgetUpdate, user_id: UserIdDep, service: UsageServiceDep
) -> dict[str, Any]:
    await service.update_budget(user_id, body)
    return await service.budget_view(user_id)


@router.post("/track", status_code=status.HTTP_201_CREATED)
async def track_usage(
    body: TrackRequest, user_id: UserIdDep, service: UsageServiceDep
) -> dict[str, Any]:
    row, alerts = await service.track(user_id, body)
    return {"usage": row_to_dict(row), "alerts": [a.model_dump() for a in alerts]}


@router.get("/cost-rates")
async def cost_rates(service: UsageServiceDep) -> list[dict[str, Any]]:
    return await service.cost_rates()


# -- dashboard ------------------------------------------------------------------


@router.get("/stats")
async def usage_stats(
    user_id: UserIdDep,
    service: UsageServiceDep,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    """Totals over ``start_date..end_date`` (both default to today)."""
    return (await service.stats(user_id, start_date, end_date)).model_dump()


@router.get("/stats/today")
async def today_stats(user_id: UserIdDep, service: UsageServiceDep) -> dict[str, Any]:
    return (await service.today_stats(user_id)).model_dump()


@router.get("/stats/month")
async def month_stats(user_id: UserIdDep, service: UsageServiceDep) -> dict[str, Any]:
    return (await service.month_stats(user_id)).model_dump()


@router.get("/daily")
async def daily_chart(
    user_id: UserIdDep,
    service: UsageServiceDep,
    days: Annotated[int, Query(ge=1, le=366)] = 7,
) -> list[dict[str, Any]]:
    return [d.model_dump() for d in await service.daily_chart(user_id, days)]


@router.get("/by-action")
async def usage_by_action(
    user_id: UserIdDep,
    service: UsageServiceDep,
    days: Annotated[int, Query(ge=1, le=366)] = 30,
) -> list[dict[str, Any]]:
    return [a.model_dump() for a in await service.by_action(user_id, days)]


@router.get("/history")
async def usage_history(
    user_id: UserIdDep,
    service: UsageServiceDep,
    query: HistoryQueryDep,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> dict[str, Any]:
    result = await service.history(user_id, query, page, per_page)
    return result.as_dict([row_to_dict(r) for r in result.items])


@router.get("/export")
async def export_usage(
    user_id: UserIdDep,
    service: UsageServiceDep,
    query: HistoryQueryDep,
    format: ExportFormat = "csv",
) -> Response:
    body, media_type, filename = await service.export(user_id, query, format)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -- sessions -------------------------------------------------------------------


@router.get("/sessions")
async def list_sessions(
    user_id: UserIdDep,
    service: UsageServiceDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> list[dict[str, Any]]:
    return [session_to_dict(s) for s in await service.sessions(user_id, limit)]


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def start_session(
    user_id: UserIdDep,
    service: UsageServiceDep,
    body: SessionStart | None = None,
) -> dict[str, Any]:
    body = body or SessionStart()
    session = await service.start_session(user_id, body.session_name, body.metadata)
    return session_to_dict(session)


@router.post("/sessions/{session_id}/end")
async def end_session(
    session_id: uuid.UUID, user_id: UserIdDep, service: UsageServiceDep
) -> dict[str, Any]:
    return session_to_dict(await service.end_session(user_id, session_id))


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: uuid.UUID, user_id: UserIdDep, service: UsageServiceDep
) -> Response:
    await service.delete_session(user_id, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
