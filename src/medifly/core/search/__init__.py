"""Hospital search."""

from .concerns import HEALTH_CONCERN_SPECIALTIES, relevant_specialties
from .service import HospitalSearchService, SearchOptions, get_search_service

__all__ = [
    "HEALTH_CONCERN_SPECIALTIES",
    "HospitalSearchService",
    "SearchOptions",
    "get_search_service",
    "relevant_specialties",
]
