"""Hospital DB access: CRUD, embedding bookkeeping and vector search.

``HospitalRepository`` wraps session lifecycle.  Vector similarity is
pgvector cosine distance; similarity is reported as ``1 - distance``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, case, func, literal, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medifly.core.errors import Conflict, NotFound

from .models import Doctor, DoctorHospital, Facility, Hospital, HospitalFacility
from .paging import LIKE_ESCAPE, Page, contains_pattern, paginate

logger = logging.getLogger(__name__)

ENTITY = "Hospital"

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

PARAM_TARGET_ID = "target_hospital_id"
PARAM_THRESHOLD = "similarity_threshold"
PARAM_LIMIT = "result_limit"

# Defined by migration 0001.
SQL_FIND_SIMILAR = text(
    f"""
    SELECT id, name, city, state, type, similarity_score
    FROM find_similar_hospitals(
        :{PARAM_TARGET_ID}, :{PARAM_THRESHOLD}, :{PARAM_LIMIT}
    )
    """
)


@dataclass
class SearchFilters:
    city: str | None = None
    state: str | None = None
    type: str | None = None
    emergency_services: bool | None = None
    is_verified: bool | None = True
    trauma_level: str | None = None


@dataclass
class HospitalMatch:
    """One row of a hybrid or text search."""

    hospital: Hospital
    similarity_score: float
    text_score: float
    combined_score: float


def _apply_search_filters(stmt: Select, filters: SearchFilters) -> Select:
    stmt = stmt.where(Hospital.is_active.is_(True))
    if filters.is_verified is not None:
        stmt = stmt.where(Hospital.is_verified.is_(filters.is_verified))
    if filters.city:
        stmt = stmt.where(
            Hospital.city.ilike(contains_pattern(filters.city), escape=LIKE_ESCAPE)
        )
    if filters.state:
        stmt = stmt.where(
            Hospital.state.ilike(contains_pattern(filters.state), escape=LIKE_ESCAPE)
        )
    if filters.type:
        stmt = stmt.where(Hospital.type == filters.type)
    if filters.emergency_services is not None:
        stmt = stmt.where(Hospital.emergency_services.is_(filters.emergency_services))
    if filters.trauma_level:
        stmt = stmt.where(Hospital.trauma_level == filters.trauma_level)
    return stmt


def _text_rank(query: str):
    pattern = contains_pattern(query)
    return case(
        (Hospital.name.ilike(pattern, escape=LIKE_ESCAPE), literal(1.0)),
        (Hospital.description.ilike(pattern, escape=LIKE_ESCAPE), literal(0.5)),
        else_=literal(0.0),
    )


async def _get_or_raise(session: AsyncSession, hospital_id: uuid.UUID) -> Hospital:
    hospital = await session.get(Hospital, hospital_id)
    if hospital is None:
        raise NotFound(ENTITY, hospital_id)
    return hospital


class HospitalRepository:
    """Async wrapper around ``hospitals`` and its link tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- CRUD ---------------------------------------------------------------

    async def list_page(
        self,
        *,
        search: str | None = None,
        city: str | None = None,
        type: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page[Hospital]:
        stmt = select(Hospital)
        if search:
            pattern = contains_pattern(search)
            stmt = stmt.where(
                or_(
                    Hospital.name.ilike(pattern, escape=LIKE_ESCAPE),
                    Hospital.city.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        if city:
            stmt = stmt.where(
                Hospital.city.ilike(contains_pattern(city), escape=LIKE_ESCAPE)
            )
        if type:
            stmt = stmt.where(Hospital.type == type)
        if is_active is not None:
            stmt = stmt.where(Hospital.is_active.is_(is_active))
        stmt = stmt.order_by(Hospital.created_at.desc())
        async with self._session_factory() as session:
            return await paginate(session, stmt, page, per_page)

    async def get(self, hospital_id: uuid.UUID) -> Hospital:
        async with self._session_factory() as session:
            return await _get_or_raise(session, hospital_id)

    async def get_detail(
        self, hospital_id: uuid.UUID
    ) -> tuple[Hospital, list[tuple[HospitalFacility, Facility]], list[tuple[DoctorHospital, Doctor]]]:
        """Return the hospital, its facility links (primary first) and active doctors."""
        async with self._session_factory() as session:
            hospital = await _get_or_raise(session, hospital_id)
            facilities = (
                await session.execute(
                    select(HospitalFacility, Facility)
                    .join(Facility, Facility.id == HospitalFacility.facility_id)
                    .where(HospitalFacility.hospital_id == hospital_id)
                    .order_by(HospitalFacility.primary_hospital.desc(), Facility.name)
                )
            ).tuples().all()
            doctors = (
                await session.execute(
                    select(DoctorHospital, Doctor)
                    .join(Doctor, Doctor.id == DoctorHospital.doctor_id)
                    .where(
                        DoctorHospital.hospital_id == hospital_id,
                        DoctorHospital.is_active.is_(True),
                    )
                    .order_by(DoctorHospital.is_primary.desc(), Doctor.last_name)
                )
            ).tuples().all()
        return hospital, list(facilities), list(doctors)

    async def create(self, data: dict[str, Any]) -> Hospital:
        hospital = Hospital(**data)
        async with self._session_factory() as session:
            session.add(hospital)
            try:
                await session.commit()
            except IntegrityError as exc:
                raise Conflict(f"Hospital slug '{data.get('slug')}' already exists") from exc
            await session.refresh(hospital)
        logger.info("Created hospital %s (%s)", hospital.id, hospital.name)
        return hospital

    async def update(self, hospital_id: uuid.UUID, data: dict[str, Any]) -> Hospital:
        async with self._session_factory() as session:
            hospital = await _get_or_raise(session, hospital_id)
            for key, value in data.items():
                setattr(hospital, key, value)
            try:
                await session.commit()
            except IntegrityError as exc:
                raise Conflict(f"Hospital slug '{data.get('slug')}' already exists") from exc
            await session.refresh(hospital)
        return hospital

    async def delete(self, hospital_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            hospital = await _get_or_raise(session, hospital_id)
            await session.delete(hospital)
            await session.commit()
        logger.info("Deleted hospital %s", hospital_id)

    # -- Embedding bookkeeping ------------------------------------------------

    async def list_for_indexing(self, *, force: bool = False) -> list[Hospital]:
        """Active hospitals, only those lacking an embedding unless *force*."""
        stmt = select(Hospital).where(Hospital.is_active.is_(True))
        if not force:
            stmt = stmt.where(Hospital.embedding.is_(None))
        stmt = stmt.order_by(Hospital.created_at)
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_active_by_ids(self, ids: Sequence[uuid.UUID]) -> list[Hospital]:
        if not ids:
            return []
        stmt = select(Hospital).where(
            Hospital.id.in_(list(ids)), Hospital.is_active.is_(True)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def save_embedding(
        self,
        hospital_id: uuid.UUID,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        stmt = (
            update(Hospital)
            .where(Hospital.id == hospital_id)
            .values(
                embedding=vector,
                embedding_metadata=metadata,
                embedding_updated_at=datetime.now(timezone.utc),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:
            raise NotFound(ENTITY, hospital_id)

    async def embedding_stats(self) -> dict[str, Any]:
        """Counts over active hospitals plus the latest embedding timestamp."""
        stmt = select(
            func.count(Hospital.id),
            func.count(Hospital.embedding),
            func.max(Hospital.embedding_updated_at),
        ).where(Hospital.is_active.is_(True))
        async with self._session_factory() as session:
            total, with_embeddings, last_updated = (await session.execute(stmt)).one()
        return {
            "total": int(total or 0),
            "with_embeddings": int(with_embeddings or 0),
            "last_updated": last_updated,
        }

    async def reset_embeddings(self) -> int:
        stmt = (
            update(Hospital)
            .where(Hospital.is_active.is_(True), Hospital.embedding.is_not(None))
            .values(embedding=None, embedding_metadata=None, embedding_updated_at=None)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return int(result.rowcount or 0)

    # -- Search -----------------------------------------------------------------

    async def find_similar(
        self, hospital_id: uuid.UUID, threshold: float, limit: int
    ) -> tuple[Hospital, list[dict[str, Any]]]:
        """Return the target hospital and its nearest active neighbours.

        The neighbour list is empty when the target has no embedding.
        """
        async with self._session_factory() as session:
            target = await _get_or_raise(session, hospital_id)
            if target.embedding is None:
                return target, []
            rows = (
                await session.execute(
                    SQL_FIND_SIMILAR,
                    {
                        PARAM_TARGET_ID: hospital_id,
                        PARAM_THRESHOLD: threshold,
                        PARAM_LIMIT: limit,
                    },
                )
            ).mappings().all()
        return target, [
            {**row, "similarity_score": float(row["similarity_score"])} for row in rows
        ]

    async def hybrid_search(
        self,
        query: str,
        query_vector: list[float],
        filters: SearchFilters,
        *,
        semantic_weight: float,
        text_weight: float,
        threshold: float,
        limit: int,
    ) -> list[HospitalMatch]:
        """Blend vector similarity with a name/description text rank.

        A row qualifies when its similarity reaches *threshold* or the
        text matches at all.
        """
        similarity = func.coalesce(
            1 - Hospital.embedding.cosine_distance(query_vector), literal(0.0)
        ).label("similarity")
        text_rank = _text_rank(query).label("text_rank")
        combined = (semantic_weight * similarity + text_weight * text_rank).label("combined")
        stmt = _apply_search_filters(select(Hospital, similarity, text_rank, combined), filters)
        stmt = (
            stmt.where(or_(similarity >= threshold, text_rank > 0))
            .order_by(combined.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            HospitalMatch(
                hospital=row[0],
                similarity_score=float(row.similarity),
                text_score=float(row.text_rank),
                combined_score=float(row.combined),
            )
            for row in rows
        ]

    async def text_search(
        self, query: str, filters: SearchFilters, *, limit: int
    ) -> list[HospitalMatch]:
        """ILIKE on name or description, best rated first."""
        pattern = contains_pattern(query)
        stmt = _apply_search_filters(select(Hospital), filters)
        if query.strip():
            stmt = stmt.where(
                or_(
                    Hospital.name.ilike(pattern, escape=LIKE_ESCAPE),
                    Hospital.description.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        stmt = stmt.order_by(Hospital.rating.desc().nulls_last()).limit(limit)
        async with self._session_factory() as session:
            hospitals = (await session.execute(stmt)).scalars().all()
        return [
            HospitalMatch(
                hospital=h, similarity_score=0.0, text_score=0.5, combined_score=0.5
            )
            for h in hospitals
        ]

