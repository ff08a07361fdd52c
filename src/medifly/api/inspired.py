"""Inspired content (curated guides) and their categories."""

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Query, Response, status

from medifly.core.catalog.schemas import (
    ContentHospitalList,
    InspiredCategoryCreate,
    InspiredContentCreate,
    InspiredContentUpdate,
    publication_stamp,
)
from medifly.infra.db.converters import hospital_to_dict, row_to_dict
from medifly.infra.db.paging import DEFAULT_PER_PAGE, MAX_PER_PAGE

from .deps import InspiredCategoryRepositoryDep, InspiredContentRepositoryDep

router = APIRouter(prefix="/api/v1/inspired", tags=["inspired"])


@router.get("/categories")
async def list_categories(repository: InspiredCategoryRepositoryDep) -> list[dict[str, Any]]:
    return [row_to_dict(c) for c in await repository.list_active()]


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    body: InspiredCategoryCreate, repository: InspiredCategoryRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.create(body.model_dump()))


@router.get("/content")
async def list_content(
    repository: InspiredContentRepositoryDep,
    search: str | None = None,
    category_id: uuid.UUID | None = None,
    content_type: str | None = None,
    target_country: str | None = None,
    target_city: str | None = None,
    is_published: bool | None = None,
    is_featured: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=MAX_PER_PAGE)] = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    result = await repository.list_page(
        search=search,
        page=page,
        per_page=per_page,
        category_id=category_id,
        content_type=content_type,
        target_country=target_country,
        target_city=target_city,
        is_published=is_published,
        is_featured=is_featured,
    )
    return result.as_dict([row_to_dict(c) for c in result.items])


@router.post("/content", status_code=status.HTTP_201_CREATED)
async def create_content(
    body: InspiredContentCreate, repository: InspiredContentRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.create(body.model_dump()))


@router.get("/content/slug/{slug}")
async def get_content_by_slug(
    slug: str, repository: InspiredContentRepositoryDep
) -> dict[str, Any]:
    """Published content only; every read counts as a view."""
    return row_to_dict(await repository.get_published_by_slug(slug))


@router.get("/content/{content_id}")
async def get_content(
    content_id: uuid.UUID, repository: InspiredContentRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.get(content_id))


@router.patch("/content/{content_id}")
async def update_content(
    content_id: uuid.UUID,
    body: InspiredContentUpdate,
    repository: InspiredContentRepositoryDep,
) -> dict[str, Any]:
    current = await repository.get(content_id)
    changes = publication_stamp(body.model_dump(exclude_unset=True), current.published_at)
    return row_to_dict(await repository.update(content_id, changes))


@router.delete("/content/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_content(
    content_id: uuid.UUID, repository: InspiredContentRepositoryDep
) -> Response:
    await repository.delete(content_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/content/{content_id}/hospitals")
async def list_content_hospitals(
    content_id: uuid.UUID, repository: InspiredContentRepositoryDep
) -> list[dict[str, Any]]:
    rows = await repository.list_hospitals(content_id)
    return [
        {**row_to_dict(entry), "hospital": hospital_to_dict(hospital)}
        for entry, hospital in rows
    ]


@router.put("/content/{content_id}/hospitals")
async def replace_content_hospitals(
    content_id: uuid.UUID,
    body: ContentHospitalList,
    repository: InspiredContentRepositoryDep,
) -> list[dict[str, Any]]:
    await repository.replace_hospitals(content_id, [h.model_dump() for h in body.hospitals])
    return await list_content_hospitals(content_id, repository)
