"""Combined hospital + doctor search for the public site."""

from typing import Any

from fastapi import APIRouter

from .deps import SearchServiceDep
from .models import CombinedSearchRequest

router = APIRouter(prefix="/api/v1", tags=["search"])


@router.post("/search")
async def combined_search(
    body: CombinedSearchRequest, service: SearchServiceDep
) -> dict[str, Any]:
    """Hospitals near ``location`` plus doctors for the specialties the query implies."""
    return await service.combined(
        body.query,
        location=body.location,
        hospital_limit=body.hospital_limit,
        doctor_limit=body.doctor_limit,
    )
