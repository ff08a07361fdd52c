"""Tools the concierge agent may call.

Both tools return compact JSON text; a tool failure is surfaced to the
model as an error message rather than aborting the run.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from langchain_core.tools import BaseTool, StructuredTool, ToolException
from pydantic import BaseModel, Field

from medifly.core.errors import InvalidRequest, NotFound
from medifly.core.search.service import HospitalSearchService
from medifly.infra.db.hospitals import HospitalRepository, SearchFilters

logger = logging.getLogger(__name__)

TOOL_SEARCH_HOSPITALS = "search_hospitals"
TOOL_HOSPITAL_DETAILS = "get_hospital_details"

MAX_TOOL_RESULTS = 10


class SearchHospitalsArgs(BaseModel):
    query: str = Field(description="What the patient needs, e.g. 'stroke rehabilitation'")
    city: str | None = Field(default=None, description="Optional city to search in")
    limit: int | None = Field(
        default=None, ge=1, le=MAX_TOOL_RESULTS, description="Maximum hospitals to return"
    )


class HospitalDetailsArgs(BaseModel):
    hospital_id: str = Field(description="Hospital id as returned by search_hospitals")


def _dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


def build_tools(
    search: HospitalSearchService,
    hospitals: HospitalRepository,
    default_limit: int = 5,
) -> list[BaseTool]:
    """Bind the concierge tools to this request's services."""

    async def search_hospitals(
        query: str, city: str | None = None, limit: int | None = None
    ) -> str:
        options = search.default_options()
        options.limit = limit or default_limit
        try:
            outcome = await search.search(query, SearchFilters(city=city), options)
        except InvalidRequest as exc:
            raise ToolException(str(exc)) from exc
        results = [
            {
                "id": str(m.hospital.id),
                "name": m.hospital.name,
                "city": m.hospital.city,
                "state": m.hospital.state,
                "type": m.hospital.type,
                "rating": m.hospital.rating,
                "emergency_services": m.hospital.emergency_services,
                "score": round(m.combined_score, 3),
            }
            for m in outcome.matches
        ]
        logger.debug("Tool %s(%r, city=%r): %d result(s)", TOOL_SEARCH_HOSPITALS, query, city, len(results))
        return _dumps({"hospitals": results, "semantic": outcome.has_semantic_search})

    async def get_hospital_details(hospital_id: str) -> str:
        try:
            hid = uuid.UUID(hospital_id)
        except ValueError as exc:
            raise ToolException(f"'{hospital_id}' is not a valid hospital id") from exc
        try:
            hospital, facilities, doctors = await hospitals.get_detail(hid)
        except NotFound as exc:
            raise ToolException(str(exc)) from exc
        return _dumps(
            {
                "id": str(hospital.id),
                "name": hospital.name,
                "description": hospital.description,
                "type": hospital.type,
                "address": hospital.address,
                "city": hospital.city,
                "state": hospital.state,
                "country": hospital.country,
                "phone": hospital.phone,
                "website": hospital.website,
                "bed_count": hospital.bed_count,
                "established": hospital.established,
                "emergency_services": hospital.emergency_services,
                "trauma_level": hospital.trauma_level,
                "rating": hospital.rating,
                "review_count": hospital.review_count,
                "facilities": [f.name for _, f in facilities],
                "doctors": [
                    {
                        "name": f"{d.title or ''} {d.first_name} {d.last_name}".strip(),
                        "department": link.department,
                        "position": link.position_title,
                    }
                    for link, d in doctors
                ],
            }
        )

    return [
        StructuredTool.from_function(
            coroutine=search_hospitals,
            name=TOOL_SEARCH_HOSPITALS,
            description=(
                "Search MediFly's hospital directory by medical need, "
                "optionally within one city."
            ),
            args_schema=SearchHospitalsArgs,
            handle_tool_error=True,
        ),
        StructuredTool.from_function(
            coroutine=get_hospital_details,
            name=TOOL_HOSPITAL_DETAILS,
            description="Read one hospital's profile, facilities and doctors.",
            args_schema=HospitalDetailsArgs,
            handle_tool_error=True,
        ),
    ]
