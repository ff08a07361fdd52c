"""Per-request repository dependencies for the db package.

The low-level engine + session plumbing lives in the sibling leaf
module ``medifly.infra.db_engine`` to avoid circular imports with
``telemetry``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medifly.infra.db_engine import get_session_factory

from .catalog import (
    DoctorRepository,
    FacilityRepository,
    InspiredCategoryRepository,
    InspiredContentRepository,
    SpecialtyRepository,
    TreatmentRepository,
)
from .hospitals import HospitalRepository
from .usage import UsageRepository

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


def get_hospital_repository(sf: SessionFactory) -> HospitalRepository:
    return HospitalRepository(sf)


def get_doctor_repository(sf: SessionFactory) -> DoctorRepository:
    return DoctorRepository(sf)


def get_treatment_repository(sf: SessionFactory) -> TreatmentRepository:
    return TreatmentRepository(sf)


def get_specialty_repository(sf: SessionFactory) -> SpecialtyRepository:
    return SpecialtyRepository(sf)


def get_facility_repository(sf: SessionFactory) -> FacilityRepository:
    return FacilityRepository(sf)


def get_inspired_content_repository(sf: SessionFactory) -> InspiredContentRepository:
    return InspiredContentRepository(sf)


def get_inspired_category_repository(sf: SessionFactory) -> InspiredCategoryRepository:
    return InspiredCategoryRepository(sf)


def get_usage_repository(sf: SessionFactory) -> UsageRepository:
    """Return the usage metering repository for this app."""
    return UsageRepository(sf)
