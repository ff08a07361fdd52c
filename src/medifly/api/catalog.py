"""Catalog CRUD: doctors, treatments, specialties and facilities."""

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Query, Response, status

from medifly.core.catalog.schemas import (
    DoctorCreate,
    DoctorUpdate,
    FacilityCreate,
    FacilityUpdate,
    SpecialtyCreate,
    SpecialtyUpdate,
    TreatmentCreate,
    TreatmentUpdate,
)
from medifly.infra.db.converters import row_to_dict
from medifly.infra.db.paging import DEFAULT_PER_PAGE, MAX_PER_PAGE, Page

from .deps import (
    DoctorRepositoryDep,
    FacilityRepositoryDep,
    SpecialtyRepositoryDep,
    TreatmentRepositoryDep,
)

router = APIRouter(prefix="/api/v1", tags=["catalog"])

PageQuery = Annotated[int, Query(ge=1)]
PerPageQuery = Annotated[int, Query(ge=1, le=MAX_PER_PAGE)]

_DOCTOR_LINK_FIELDS = {"hospitals", "specialties"}
_FACILITY_LINK_FIELDS = {"hospitals"}


def _page(result: Page[Any]) -> dict[str, Any]:
    return result.as_dict([row_to_dict(row) for row in result.items])


def _no_content() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Doctors
# ---------------------------------------------------------------------------


async def _doctor_detail(repository: DoctorRepositoryDep, doctor_id: uuid.UUID) -> dict[str, Any]:
    doctor = await repository.get(doctor_id)
    hospitals, specialties = await repository.get_links(doctor_id)
    return {
        **row_to_dict(doctor),
        "hospitals": [row_to_dict(link) for link in hospitals],
        "specialties": [
            {**row_to_dict(link), "specialty_name": specialty.name}
            for link, specialty in specialties
        ],
    }


@router.get("/doctors")
async def list_doctors(
    repository: DoctorRepositoryDep,
    search: str | None = None,
    hospital_id: uuid.UUID | None = None,
    is_active: bool | None = None,
    page: PageQuery = 1,
    per_page: PerPageQuery = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    result = await repository.list_page(
        search=search,
        page=page,
        per_page=per_page,
        hospital_id=hospital_id,
        is_active=is_active,
    )
    return _page(result)


@router.post("/doctors", status_code=status.HTTP_201_CREATED)
async def create_doctor(body: DoctorCreate, repository: DoctorRepositoryDep) -> dict[str, Any]:
    """Create a doctor together with hospital affiliations and specialties."""
    hospitals, specialties = body.links()
    doctor = await repository.create_with_links(
        body.model_dump(exclude=_DOCTOR_LINK_FIELDS), hospitals or [], specialties or []
    )
    return await _doctor_detail(repository, doctor.id)


@router.get("/doctors/{doctor_id}")
async def get_doctor(doctor_id: uuid.UUID, repository: DoctorRepositoryDep) -> dict[str, Any]:
    return await _doctor_detail(repository, doctor_id)


@router.patch("/doctors/{doctor_id}")
async def update_doctor(
    doctor_id: uuid.UUID, body: DoctorUpdate, repository: DoctorRepositoryDep
) -> dict[str, Any]:
    """Partial update; a sent ``hospitals`` or ``specialties`` list replaces the stored one."""
    hospitals, specialties = body.links()
    changes = body.model_dump(exclude_unset=True, exclude=_DOCTOR_LINK_FIELDS)
    await repository.update_with_links(doctor_id, changes, hospitals, specialties)
    return await _doctor_detail(repository, doctor_id)


@router.delete("/doctors/{doctor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_doctor(doctor_id: uuid.UUID, repository: DoctorRepositoryDep) -> Response:
    await repository.delete(doctor_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Treatments
# ---------------------------------------------------------------------------


@router.get("/treatments")
async def list_treatments(
    repository: TreatmentRepositoryDep,
    search: str | None = None,
    hospital_id: uuid.UUID | None = None,
    category: str | None = None,
    is_available: bool | None = None,
    page: PageQuery = 1,
    per_page: PerPageQuery = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    result = await repository.list_page(
        search=search,
        page=page,
        per_page=per_page,
        hospital_id=hospital_id,
        category=category,
        is_available=is_available,
    )
    return _page(result)


@router.post("/treatments", status_code=status.HTTP_201_CREATED)
async def create_treatment(
    body: TreatmentCreate, repository: TreatmentRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.create(body.model_dump()))


@router.get("/treatments/{treatment_id}")
async def get_treatment(
    treatment_id: uuid.UUID, repository: TreatmentRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.get(treatment_id))


@router.patch("/treatments/{treatment_id}")
async def update_treatment(
    treatment_id: uuid.UUID, body: TreatmentUpdate, repository: TreatmentRepositoryDep
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    return row_to_dict(await repository.update(treatment_id, changes))


@router.delete("/treatments/{treatment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_treatment(
    treatment_id: uuid.UUID, repository: TreatmentRepositoryDep
) -> Response:
    await repository.delete(treatment_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Specialties
# ---------------------------------------------------------------------------


@router.get("/specialties")
async def list_specialties(
    repository: SpecialtyRepositoryDep,
    search: str | None = None,
    category: str | None = None,
    is_active: bool | None = None,
    page: PageQuery = 1,
    per_page: PerPageQuery = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    result = await repository.list_page(
        search=search,
        page=page,
        per_page=per_page,
        category=category,
        is_active=is_active,
    )
    return _page(result)


@router.post("/specialties", status_code=status.HTTP_201_CREATED)
async def create_specialty(
    body: SpecialtyCreate, repository: SpecialtyRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.create(body.model_dump()))


@router.get("/specialties/{specialty_id}")
async def get_specialty(
    specialty_id: uuid.UUID, repository: SpecialtyRepositoryDep
) -> dict[str, Any]:
    return row_to_dict(await repository.get(specialty_id))


@router.patch("/specialties/{specialty_id}")
async def update_specialty(
    specialty_id: uuid.UUID, body: SpecialtyUpdate, repository: SpecialtyRepositoryDep
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    return row_to_dict(await repository.update(specialty_id, changes))


@router.delete("/specialties/{specialty_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_specialty(
    specialty_id: uuid.UUID, repository: SpecialtyRepositoryDep
) -> Response:
    await repository.delete(specialty_id)
    return _no_content()


# ---------------------------------------------------------------------------
# Facilities
# ---------------------------------------------------------------------------


async def _facility_detail(
    repository: FacilityRepositoryDep, facility_id: uuid.UUID
) -> dict[str, Any]:
    facility = await repository.get(facility_id)
    links = await repository.get_links(facility_id)
    return {
        **row_to_dict(facility),
        "hospitals": [
            {**row_to_dict(link), "hospital_name": name} for link, name in links
        ],
    }


@router.get("/facilities")
async def list_facilities(
    repository: FacilityRepositoryDep,
    search: str | None = None,
    hospital_id: uuid.UUID | None = None,
    category: str | None = None,
    is_available: bool | None = None,
    page: PageQuery = 1,
    per_page: PerPageQuery = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    result = await repository.list_page(
        search=search,
        page=page,
        per_page=per_page,
        hospital_id=hospital_id,
        category=category,
        is_available=is_available,
    )
    return _page(result)


@router.post("/facilities", status_code=status.HTTP_201_CREATED)
async def create_facility(
    body: FacilityCreate, repository: FacilityRepositoryDep
) -> dict[str, Any]:
    facility = await repository.create_with_links(
        body.model_dump(exclude=_FACILITY_LINK_FIELDS), body.links() or []
    )
    return await _facility_detail(repository, facility.id)


@router.get("/facilities/{facility_id}")
async def get_facility(
    facility_id: uuid.UUID, repository: FacilityRepositoryDep
) -> dict[str, Any]:
    return await _facility_detail(repository, facility_id)


@router.patch("/facilities/{facility_id}")
async def update_facility(
    facility_id: uuid.UUID, body: FacilityUpdate, repository: FacilityRepositoryDep
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True, exclude=_FACILITY_LINK_FIELDS)
    await repository.update_with_links(facility_id, changes, body.links())
    return await _facility_detail(repository, facility_id)


@router.delete("/facilities/{facility_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_facility(
    facility_id: uuid.UUID, repository: FacilityRepositoryDep
) -> Response:
    await repository.delete(facility_id)
    return _no_content()
