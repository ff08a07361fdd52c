"""Centralized FastAPI dependency type aliases.

Import these ``*Dep`` aliases in route modules instead of manually
writing ``Annotated[T, Depends(get_xxx)]`` everywhere.  Each alias
corresponds to a single ``get_*`` factory and can be overridden in
tests via ``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends, Header

from medifly.configs.config import (
    get_api_config,
    get_chat_config,
    get_indexing_config,
    get_webhook_config,
)
from medifly.configs.system import APIConfig, ChatConfig, IndexingConfig, WebhookConfig
from medifly.core.concierge.service import ConciergeService, get_concierge_service
from medifly.core.embedding.service import EmbeddingService, get_embedding_service
from medifly.core.indexing.indexer import HospitalIndexer
from medifly.core.indexing.jobs import IndexingJobManager, get_indexing_jobs
from medifly.core.search.service import HospitalSearchService, get_search_service
from medifly.core.usage.service import UsageService, get_usage_service
from medifly.infra.db.catalog import (
    DoctorRepository,
    FacilityRepository,
    InspiredCategoryRepository,
    InspiredContentRepository,
    SpecialtyRepository,
    TreatmentRepository,
)
from medifly.infra.db.deps import (
    get_doctor_repository,
    get_facility_repository,
    get_hospital_repository,
    get_inspired_category_repository,
    get_inspired_content_repository,
    get_specialty_repository,
    get_treatment_repository,
)
from medifly.infra.db.hospitals import HospitalRepository

USER_HEADER = "X-Medifly-User"


def get_user_id(
    config: Annotated[APIConfig, Depends(get_api_config)],
    x_medifly_user: Annotated[str | None, Header(alias=USER_HEADER)] = None,
) -> str:
    """Caller identity for usage metering; falls back to the configured default."""
    return (x_medifly_user or "").strip() or config.default_user_id


HospitalRepositoryDep = Annotated[HospitalRepository, Depends(get_hospital_repository)]


def get_hospital_indexer(
    repository: HospitalRepositoryDep,
    embedder: Annotated[EmbeddingService, Depends(get_embedding_service)],
) -> HospitalIndexer:
    return HospitalIndexer(repository, embedder)


UserIdDep = Annotated[str, Depends(get_user_id)]
APIConfigDep = Annotated[APIConfig, Depends(get_api_config)]
ChatConfigDep = Annotated[ChatConfig, Depends(get_chat_config)]
IndexingConfigDep = Annotated[IndexingConfig, Depends(get_indexing_config)]
WebhookConfigDep = Annotated[WebhookConfig, Depends(get_webhook_config)]

DoctorRepositoryDep = Annotated[DoctorRepository, Depends(get_doctor_repository)]
TreatmentRepositoryDep = Annotated[TreatmentRepository, Depends(get_treatment_repository)]
SpecialtyRepositoryDep = Annotated[SpecialtyRepository, Depends(get_specialty_repository)]
FacilityRepositoryDep = Annotated[FacilityRepository, Depends(get_facility_repository)]
InspiredContentRepositoryDep = Annotated[
    InspiredContentRepository, Depends(get_inspired_content_repository)
]
InspiredCategoryRepositoryDep = Annotated[
    InspiredCategoryRepository, Depends(get_inspired_category_repository)
]

EmbeddingServiceDep = Annotated[EmbeddingService, Depends(get_embedding_service)]
HospitalIndexerDep = Annotated[HospitalIndexer, Depends(get_hospital_indexer)]
IndexingJobsDep = Annotated[IndexingJobManager, Depends(get_indexing_jobs)]
SearchServiceDep = Annotated[HospitalSearchService, Depends(get_search_service)]
UsageServiceDep = Annotated[UsageService, Depends(get_usage_service)]
ConciergeServiceDep = Annotated[ConciergeService, Depends(get_concierge_service)]
