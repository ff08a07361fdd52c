"""Async PostgreSQL infrastructure (ORM models and repositories)."""

from .catalog import (CrudRepository, DoctorRepository, FacilityRepository,
                      InspiredCategoryRepository, InspiredContentRepository,
                      SpecialtyRepository, TreatmentRepository)
from .converters import hospital_to_dict, row_to_dict
from .deps import (get_doctor_repository, get_facility_repository,
                   get_hospital_repository, get_inspired_category_repository,
                   get_inspired_content_repository, get_specialty_repository,
                   get_treatment_repository, get_usage_repository)
from .hospitals import HospitalMatch, HospitalRepository, SearchFilters
from .models import EMBEDDING_DIMENSIONS, Base, Hospital
from .paging import Page
from .usage import UsageFilters, UsageRepository

from medifly.infra.db_engine import build_db, get_session_factory

__all__ = [
    "build_db",
    "Base",
    "CrudRepository",
    "DoctorRepository",
    "EMBEDDING_DIMENSIONS",
    "FacilityRepository",
    "get_doctor_repository",
    "get_facility_repository",
    "get_hospital_repository",
    "get_inspired_category_repository",
    "get_inspired_content_repository",
    "get_session_factory",
    "get_specialty_repository",
    "get_treatment_repository",
    "get_usage_repository",
    "Hospital",
    "hospital_to_dict",
    "HospitalMatch",
    "HospitalRepository",
    "InspiredCategoryRepository",
    "InspiredContentRepository",
    "Page",
    "row_to_dict",
    "SearchFilters",
    "SpecialtyRepository",
    "TreatmentRepository",
    "UsageFilters",
    "UsageRepository",
]
