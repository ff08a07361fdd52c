"""Hospital CRUD, similar-hospital and hybrid search endpoints."""

import dataclasses
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Query, Response, status

from medifly.core.catalog.schemas import HospitalCreate, HospitalUpdate, hospital_columns
from medifly.core.search.service import HospitalSearchService
from medifly.infra.db.converters import hospital_to_dict, row_to_dict
from medifly.infra.db.paging import DEFAULT_PER_PAGE, MAX_PER_PAGE

from .deps import HospitalRepositoryDep, SearchServiceDep
from .models import HybridSearchRequest, SearchFiltersModel, SearchOptionsModel

router = APIRouter(prefix="/api/v1/hospitals", tags=["hospitals"])

PageQuery = Annotated[int, Query(ge=1)]
PerPageQuery = Annotated[int, Query(ge=1, le=MAX_PER_PAGE)]


async def _run_search(
    service: HospitalSearchService,
    query: str,
    filters: SearchFiltersModel,
    options: SearchOptionsModel,
) -> dict[str, Any]:
    overrides = options.model_dump(exclude_none=True)
    merged = dataclasses.replace(service.default_options(), **overrides)
    return await service.search_response(query, filters.to_filters(), merged)


# -- search (declared before /{hospital_id}) ------------------------------------


@router.post("/search")
async def search_hospitals(
    body: HybridSearchRequest, service: SearchServiceDep
) -> dict[str, Any]:
    """Hybrid semantic + text search; text only when the query cannot be embedded."""
    return await _run_search(service, body.query, body.filters, body.options)


@router.get("/search")
async def search_hospitals_get(
    service: SearchServiceDep,
    q: str | None = None,
    query: str | None = None,
    city: str | None = None,
    state: str | None = None,
    type: str | None = None,
    emergency_services: bool | None = None,
    is_verified: bool | None = True,
    trauma_level: str | None = None,
    semantic_weight: Annotated[float | None, Query(ge=0, le=1)] = None,
    text_weight: Annotated[float | None, Query(ge=0, le=1)] = None,
    similarity_threshold: Annotated[float | None, Query(ge=0, le=1)] = None,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> dict[str, Any]:
    filters = SearchFiltersModel(
        city=city,
        state=state,
        type=type,
        emergency_services=emergency_services,
        is_verified=is_verified,
        trauma_level=trauma_level,
    )
    options = SearchOptionsModel(
        semantic_weight=semantic_weight,
        text_weight=text_weight,
        similarity_threshold=similarity_threshold,
        limit=limit,
    )
    return await _run_search(service, q or query or "", filters, options)


# -- CRUD -----------------------------------------------------------------------


@router.get("")
async def list_hospitals(
    repository: HospitalRepositoryDep,
    search: str | None = None,
    city: str | None = None,
    type: str | None = None,
    is_active: bool | None = None,
    page: PageQuery = 1,
    per_page: PerPageQuery = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    result = await repository.list_page(
        search=search,
        city=city,
        type=type,
        is_active=is_active,
        page=page,
        per_page=per_page,
    )
    return result.as_dict([hospital_to_dict(h) for h in result.items])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_hospital(
    body: HospitalCreate, repository: HospitalRepositoryDep
) -> dict[str, Any]:
    hospital = await repository.create(hospital_columns(body.model_dump()))
    return hospital_to_dict(hospital)


@router.get("/{hospital_id}")
async def get_hospital(
    hospital_id: uuid.UUID, repository: HospitalRepositoryDep
) -> dict[str, Any]:
    """Hospital with its facility links (primary first) and active doctors."""
    hospital, facilities, doctors = await repository.get_detail(hospital_id)
    return {
        **hospital_to_dict(hospital),
        "facilities": [
            {**row_to_dict(link), "facility": row_to_dict(facility)}
            for link, facility in facilities
        ],
        "doctors": [
            {**row_to_dict(link), "doctor": row_to_dict(doctor)}
            for link, doctor in doctors
        ],
    }


@router.patch("/{hospital_id}")
async def update_hospital(
    hospital_id: uuid.UUID, body: HospitalUpdate, repository: HospitalRepositoryDep
) -> dict[str, Any]:
    changes = hospital_columns(body.model_dump(exclude_unset=True))
    hospital = await repository.update(hospital_id, changes)
    return hospital_to_dict(hospital)


@router.delete("/{hospital_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_hospital(
    hospital_id: uuid.UUID, repository: HospitalRepositoryDep
) -> Response:
    await repository.delete(hospital_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -- similar --------------------------------------------------------------------


@router.get("/{hospital_id}/similar")
async def similar_hospitals(
    hospital_id: uuid.UUID,
    service: SearchServiceDep,
    threshold: float | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Nearest hospitals by embedding; out-of-range parameters are a 400."""
    return await service.similar(hospital_id, threshold, limit)
