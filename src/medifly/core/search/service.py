"""Hospital search: similar hospitals, hybrid search and combined search.

Hybrid search embeds the query and blends vector similarity with a
text rank in SQL.  Any failure to embed the query (provider down,
budget reached, no free slot) degrades to a plain text search rather
than failing the request.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import Depends

from medifly.configs.config import get_search_config
from medifly.configs.system import SearchConfig
from medifly.core.embedding.service import EmbeddingService, get_embedding_service
from medifly.core.errors import BudgetExceeded, EmbeddingUnavailable, InvalidRequest
from medifly.core.metrics import SEARCH_LATENCY_SECONDS, SEARCH_REQUESTS_TOTAL
from medifly.infra.concurrency.base import AcquireTimeout
from medifly.infra.db.catalog import DoctorRepository
from medifly.infra.db.deps import get_doctor_repository, get_hospital_repository
from medifly.infra.db.hospitals import HospitalMatch, HospitalRepository, SearchFilters
from medifly.infra.db.models import Doctor, Hospital
from medifly.infra.telemetry import (
    ATTR_SEARCH_LIMIT,
    ATTR_SEARCH_RESULT_COUNT,
    ATTR_SEARCH_SEMANTIC,
    ATTR_SEARCH_THRESHOLD,
    SPAN_HOSPITAL_SEARCH,
    SPAN_HOSPITAL_SIMILAR,
    tracer,
)

from .concerns import relevant_specialties, wants_doctors

logger = logging.getLogger(__name__)

MODE_SEMANTIC = "semantic"
MODE_TEXT = "text_fallback"
MODE_SIMILAR = "similar"

MAX_SIMILAR_LIMIT = 50
MAX_SEARCH_LIMIT = 100

# Failures that make the query embedding unavailable but leave text search usable.
_EMBED_FAILURES = (EmbeddingUnavailable, BudgetExceeded, AcquireTimeout)

_RESULT_FIELDS = (
    "name",
    "slug",
    "description",
    "city",
    "state",
    "type",
    "emergency_services",
    "trauma_level",
    "rating",
    "review_count",
    "is_active",
    "is_verified",
    "is_featured",
    "address",
    "phone",
    "website",
)


@dataclass
class SearchOptions:
    semantic_weight: float = 0.7
    text_weight: float = 0.3
    similarity_threshold: float = 0.6
    limit: int = 50

    @classmethod
    def from_config(cls, config: SearchConfig) -> SearchOptions:
        return cls(
            semantic_weight=config.semantic_weight,
            text_weight=config.text_weight,
            similarity_threshold=config.similarity_threshold,
            limit=config.result_limit,
        )


@dataclass
class SearchOutcome:
    matches: list[HospitalMatch] = field(default_factory=list)
    has_semantic_search: bool = False


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def match_to_dict(match: HospitalMatch) -> dict[str, Any]:
    h = match.hospital
    data: dict[str, Any] = {"id": str(h.id)}
    data.update({name: getattr(h, name) for name in _RESULT_FIELDS})
    data["similarity_score"] = round(match.similarity_score, 4)
    data["text_score"] = match.text_score
    data["combined_score"] = round(match.combined_score, 4)
    return data


def _combined_hospital(match: HospitalMatch) -> dict[str, Any]:
    h: Hospital = match.hospital
    return {
        "id": str(h.id),
        "name": h.name,
        "type": h.type,
        "city": h.city,
        "state": h.state,
        "rating": h.rating,
        "review_count": h.review_count,
        "emergency_services": h.emergency_services,
        "trauma_level": h.trauma_level,
        "address": h.address,
        "phone": h.phone,
        "website": h.website,
        "specialties": (h.extra_metadata or {}).get("specialties", []),
        "similarity": round(match.similarity_score, 4),
    }


def _combined_doctor(doctor: Doctor, specialties: list[str]) -> dict[str, Any]:
    return {
        "id": str(doctor.id),
        "first_name": doctor.first_name,
        "last_name": doctor.last_name,
        "title": doctor.title,
        "profile_image": doctor.profile_image,
        "years_of_experience": doctor.years_of_experience,
        "consultation_fee": doctor.consultation_fee,
        "accepting_new_patients": doctor.is_accepting_new_patients,
        "telehealth": doctor.is_telehealth_available,
        "specialties": specialties,
    }


def similarity_statistics(scores: list[float]) -> dict[str, float | None]:
    if not scores:
        return {"average_similarity": None, "max_similarity": None, "min_similarity": None}
    return {
        "average_similarity": round(sum(scores) / len(scores), 3),
        "max_similarity": round(max(scores), 3),
        "min_similarity": round(min(scores), 3),
    }


class HospitalSearchService:
    def __init__(
        self,
        hospitals: HospitalRepository,
        doctors: DoctorRepository,
        embedder: EmbeddingService,
        config: SearchConfig,
    ) -> None:
        self._hospitals = hospitals
        self._doctors = doctors
        self._embedder = embedder
        self._config = config

    def default_options(self) -> SearchOptions:
        return SearchOptions.from_config(self._config)

    # -- similar ---------------------------------------------------------------

    async def similar(
        self,
        hospital_id: uuid.UUID,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """Nearest active hospitals to *hospital_id* by embedding.

        Raises:
            InvalidRequest: threshold outside [0, 1] or limit outside 1..50.
            NotFound: the hospital does not exist.
        """
        threshold = self._config.similar_threshold if threshold is None else threshold
        limit = self._config.similar_limit if limit is None else limit
        if not 0 <= threshold <= 1:
            raise InvalidRequest("Threshold must be between 0 and 1")
        if not 1 <= limit <= MAX_SIMILAR_LIMIT:
            raise InvalidRequest(f"Limit must be between 1 and {MAX_SIMILAR_LIMIT}")

        start = time.monotonic()
        with tracer.start_as_current_span(SPAN_HOSPITAL_SIMILAR) as span:
            span.set_attribute(ATTR_SEARCH_THRESHOLD, threshold)
            span.set_attribute(ATTR_SEARCH_LIMIT, limit)
            target, rows = await self._hospitals.find_similar(hospital_id, threshold, limit)
            span.set_attribute(ATTR_SEARCH_RESULT_COUNT, len(rows))
        SEARCH_REQUESTS_TOTAL.labels(mode=MODE_SIMILAR).inc()
        SEARCH_LATENCY_SECONDS.labels(mode=MODE_SIMILAR).observe(time.monotonic() - start)

        similar = [
            {
                "id": str(row["id"]),
                "name": row["name"],
                "city": row["city"],
                "state": row["state"],
                "type": row["type"],
                "similarity_score": row["similarity_score"],
            }
            for row in rows
        ]
        return {
            "target_hospital": {
                "id": str(target.id),
                "name": target.name,
                "city": target.city,
                "state": target.state,
                "type": target.type,
            },
            "has_embedding": target.embedding is not None,
            "similar_hospitals": similar,
            "search_params": {"threshold": threshold, "limit": limit},
            "statistics": {
                "count": len(similar),
                **similarity_statistics([s["similarity_score"] for s in similar]),
            },
        }

    # -- hybrid ----------------------------------------------------------------

    async def search(
        self, query: str, filters: SearchFilters, options: SearchOptions
    ) -> SearchOutcome:
        """Hybrid search with text fallback when the query cannot be embedded."""
        if not query or not query.strip():
            raise InvalidRequest("Query is required")
        if not 1 <= options.limit <= MAX_SEARCH_LIMIT:
            raise InvalidRequest(f"Limit must be between 1 and {MAX_SEARCH_LIMIT}")

        start = time.monotonic()
        with tracer.start_as_current_span(SPAN_HOSPITAL_SEARCH) as span:
            span.set_attribute(ATTR_SEARCH_THRESHOLD, options.similarity_threshold)
            span.set_attribute(ATTR_SEARCH_LIMIT, options.limit)
            vector = await self._embed_query(query)
            if vector is None:
                mode = MODE_TEXT
                matches = await self._hospitals.text_search(query, filters, limit=options.limit)
            else:
                mode = MODE_SEMANTIC
                matches = await self._hospitals.hybrid_search(
                    query,
                    vector,
                    filters,
                    semantic_weight=options.semantic_weight,
                    text_weight=options.text_weight,
                    threshold=options.similarity_threshold,
                    limit=options.limit,
                )
            span.set_attribute(ATTR_SEARCH_SEMANTIC, vector is not None)
            span.set_attribute(ATTR_SEARCH_RESULT_COUNT, len(matches))
        SEARCH_REQUESTS_TOTAL.labels(mode=mode).inc()
        SEARCH_LATENCY_SECONDS.labels(mode=mode).observe(time.monotonic() - start)
        logger.info("Search %r: %d result(s) (%s)", query, len(matches), mode)
        return SearchOutcome(matches=matches, has_semantic_search=vector is not None)

    async def search_response(
        self, query: str, filters: SearchFilters, options: SearchOptions
    ) -> dict[str, Any]:
        outcome = await self.search(query, filters, options)
        return {
            "results": [match_to_dict(m) for m in outcome.matches],
            "metadata": {
                "query": query,
                "total_results": len(outcome.matches),
                "has_semantic_search": outcome.has_semantic_search,
                "search_type": MODE_SEMANTIC if outcome.has_semantic_search else MODE_TEXT,
                "search_options": asdict(options),
                "filters": {k: v for k, v in asdict(filters).items() if v is not None},
                "timestamp": _now_iso(),
            },
        }

    async def _embed_query(self, query: str) -> list[float] | None:
        try:
            result = await self._embedder.embed(query)
        except _EMBED_FAILURES as exc:
            logger.warning("Query embedding failed, falling back to text search: %s", exc)
            return None
        return result.vector

    # -- combined --------------------------------------------------------------

    async def combined(
        self,
        query: str,
        location: str | None = None,
        hospital_limit: int = 20,
        doctor_limit: int = 15,
    ) -> dict[str, Any]:
        """Hospitals near *location* plus doctors for the matched specialties."""
        if not query or not query.strip():
            raise InvalidRequest("Query parameter is required")
        specialties = relevant_specialties(query)

        options = self.default_options()
        options.limit = min(max(hospital_limit, 1), MAX_SEARCH_LIMIT)
        outcome = await self.search(query, SearchFilters(city=location or None), options)

        doctors: list[dict[str, Any]] = []
        if wants_doctors(query, specialties):
            rows = await self._doctors.find_for_concierge(specialties, max(doctor_limit, 1))
            doctors = [_combined_doctor(d, names) for d, names in rows]

        return {
            "query": query,
            "location": location,
            "hospitals": [_combined_hospital(m) for m in outcome.matches],
            "doctors": doctors,
            "metadata": {
                "hospital_count": len(outcome.matches),
                "doctor_count": len(doctors),
                "relevant_specialties": specialties,
                "has_semantic_search": outcome.has_semantic_search,
                "timestamp": _now_iso(),
            },
        }


def get_search_service(
    hospitals: Annotated[HospitalRepository, Depends(get_hospital_repository)],
    doctors: Annotated[DoctorRepository, Depends(get_doctor_repository)],
    embedder: Annotated[EmbeddingService, Depends(get_embedding_service)],
    config: Annotated[SearchConfig, Depends(get_search_config)],
) -> HospitalSearchService:
    return HospitalSearchService(hospitals, doctors, embedder, config)
