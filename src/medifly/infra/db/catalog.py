"""Catalog DB access: doctors, treatments, specialties, facilities and
inspired content.

``CrudRepository`` implements list/get/create/update/delete for one ORM
model; subclasses add the link-table writes each entity needs.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import Select, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import InstrumentedAttribute

from medifly.core.errors import Conflict, NotFound

from .models import (
    Base,
    Doctor,
    DoctorHospital,
    DoctorSpecialty,
    Facility,
    Hospital,
    HospitalFacility,
    InspiredCategory,
    InspiredContent,
    InspiredContentHospital,
    Specialty,
    Treatment,
)
from .paging import LIKE_ESCAPE, Page, contains_pattern, paginate

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class CrudRepository(Generic[ModelT]):
    """Generic CRUD over one table.

    Subclasses set ``model``, ``entity``, the ``search_columns`` matched
    by the free-text ``search`` filter and the default ``order_by``.
    Any other keyword passed to ``list_page`` is an equality filter on
    the column of that name; ``None`` values are ignored.
    """

    model: ClassVar[type[Base]]
    entity: ClassVar[str]
    search_columns: ClassVar[tuple[str, ...]] = ("name",)
    substring_filters: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def order_by(self) -> tuple[Any, ...]:
        return (self.model.created_at.desc(),)  # type: ignore[attr-defined]

    def _column(self, name: str) -> InstrumentedAttribute:
        return getattr(self.model, name)

    def filtered(self, search: str | None = None, **filters: Any) -> Select:
        stmt = select(self.model)
        if search:
            pattern = contains_pattern(search)
            stmt = stmt.where(
                or_(
                    *(
                        self._column(c).ilike(pattern, escape=LIKE_ESCAPE)
                        for c in self.search_columns
                    )
                )
            )
        for name, value in filters.items():
            if value is None:
                continue
            if name in self.substring_filters:
                stmt = stmt.where(
                    self._column(name).ilike(contains_pattern(str(value)), escape=LIKE_ESCAPE)
                )
            else:
                stmt = stmt.where(self._column(name) == value)
        return stmt

    async def list_page(
        self,
        *,
        search: str | None = None,
        page: int = 1,
        per_page: int = 20,
        **filters: Any,
    ) -> Page[ModelT]:
        stmt = self.filtered(search, **filters).order_by(*self.order_by())
        async with self._session_factory() as session:
            return await paginate(session, stmt, page, per_page)

    async def get(self, row_id: uuid.UUID) -> ModelT:
        async with self._session_factory() as session:
            return await self._get_or_raise(session, row_id)

    async def _get_or_raise(self, session: AsyncSession, row_id: uuid.UUID) -> ModelT:
        row = await session.get(self.model, row_id)
        if row is None:
            raise NotFound(self.entity, row_id)
        return row  # type: ignore[return-value]

    @asynccontextmanager
    async def _conflicts(
        self, session: AsyncSession, data: dict[str, Any]
    ) -> AsyncIterator[None]:
        """Turn a unique-constraint violation inside the block into ``Conflict``.

        Covers explicit flushes and autoflush as well as the commit.
        """
        try:
            yield
        except IntegrityError as exc:
            await session.rollback()
            key = data.get("slug") or data.get("name")
            raise Conflict(f"{self.entity} '{key}' conflicts with an existing row") from exc

    async def _commit(self, session: AsyncSession, data: dict[str, Any]) -> None:
        async with self._conflicts(session, data):
            await session.commit()

    async def create(self, data: dict[str, Any]) -> ModelT:
        row = self.model(**data)
        async with self._session_factory() as session:
            session.add(row)
            await self._commit(session, data)
            await session.refresh(row)
        logger.info("Created %s %s", self.entity.lower(), row.id)  # type: ignore[attr-defined]
        return row  # type: ignore[return-value]

    async def update(self, row_id: uuid.UUID, data: dict[str, Any]) -> ModelT:
        async with self._session_factory() as session:
            row = await self._get_or_raise(session, row_id)
            for key, value in data.items():
                setattr(row, key, value)
            await self._commit(session, data)
            await session.refresh(row)
        return row

    async def delete(self, row_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            row = await self._get_or_raise(session, row_id)
            await session.delete(row)
            await session.commit()
        logger.info("Deleted %s %s", self.entity.lower(), row_id)


# ---------------------------------------------------------------------------
# Doctors
# ---------------------------------------------------------------------------


class DoctorRepository(CrudRepository[Doctor]):
    model = Doctor
    entity = "Doctor"
    search_columns = ("first_name", "last_name")

    def filtered(
        self, search: str | None = None, *, hospital_id: uuid.UUID | None = None, **filters: Any
    ) -> Select:
        stmt = super().filtered(search, **filters)
        if hospital_id is not None:
            stmt = stmt.where(
                Doctor.id.in_(
                    select(DoctorHospital.doctor_id).where(
                        DoctorHospital.hospital_id == hospital_id
                    )
                )
            )
        return stmt

    async def get_links(
        self, doctor_id: uuid.UUID
    ) -> tuple[list[DoctorHospital], list[tuple[DoctorSpecialty, Specialty]]]:
        async with self._session_factory() as session:
            await self._get_or_raise(session, doctor_id)
            hospitals = (
                await session.execute(
                    select(DoctorHospital)
                    .where(DoctorHospital.doctor_id == doctor_id)
                    .order_by(DoctorHospital.is_primary.desc())
                )
            ).scalars().all()
            specialties = (
                await session.execute(
                    select(DoctorSpecialty, Specialty)
                    .join(Specialty, Specialty.id == DoctorSpecialty.specialty_id)
                    .where(DoctorSpecialty.doctor_id == doctor_id)
                    .order_by(DoctorSpecialty.is_primary.desc(), Specialty.name)
                )
            ).tuples().all()
        return list(hospitals), list(specialties)

    async def create_with_links(
        self,
        data: dict[str, Any],
        hospitals: Sequence[dict[str, Any]],
        specialties: Sequence[dict[str, Any]],
    ) -> Doctor:
        doctor = Doctor(**data)
        async with self._session_factory() as session:
            async with self._conflicts(session, data):
                session.add(doctor)
                await session.flush()
                self._add_links(session, doctor.id, hospitals, specialties)
                await session.commit()
            await session.refresh(doctor)
        logger.info("Created doctor %s", doctor.id)
        return doctor

    async def update_with_links(
        self,
        doctor_id: uuid.UUID,
        data: dict[str, Any],
        hospitals: Sequence[dict[str, Any]] | None,
        specialties: Sequence[dict[str, Any]] | None,
    ) -> Doctor:
        """Apply *data*; a non-``None`` link list replaces the stored one."""
        async with self._session_factory() as session:
            doctor = await self._get_or_raise(session, doctor_id)
            async with self._conflicts(session, data):
                for key, value in data.items():
                    setattr(doctor, key, value)
                if hospitals is not None:
                    await session.execute(
                        delete(DoctorHospital).where(DoctorHospital.doctor_id == doctor_id)
                    )
                if specialties is not None:
                    await session.execute(
                        delete(DoctorSpecialty).where(DoctorSpecialty.doctor_id == doctor_id)
                    )
                self._add_links(session, doctor_id, hospitals or (), specialties or ())
                await session.commit()
            await session.refresh(doctor)
        return doctor

    @staticmethod
    def _add_links(
        session: AsyncSession,
        doctor_id: uuid.UUID,
        hospitals: Sequence[dict[str, Any]],
        specialties: Sequence[dict[str, Any]],
    ) -> None:
        session.add_all(DoctorHospital(doctor_id=doctor_id, **h) for h in hospitals)
        session.add_all(DoctorSpecialty(doctor_id=doctor_id, **s) for s in specialties)

    async def find_for_concierge(
        self, specialty_names: Sequence[str], limit: int
    ) -> list[tuple[Doctor, list[str]]]:
        """Active, verified doctors accepting patients, most experienced first.

        When *specialty_names* is non-empty only doctors holding one of
        them are returned.  Each doctor comes with its specialty names.
        """
        stmt = select(Doctor).where(
            Doctor.is_active.is_(True),
            Doctor.is_verified.is_(True),
            Doctor.is_accepting_new_patients.is_(True),
        )
        if specialty_names:
            stmt = stmt.where(
                Doctor.id.in_(
                    select(DoctorSpecialty.doctor_id)
                    .join(Specialty, Specialty.id == DoctorSpecialty.specialty_id)
                    .where(Specialty.name.in_(list(specialty_names)))
                )
            )
        stmt = stmt.order_by(Doctor.years_of_experience.desc()).limit(limit)
        async with self._session_factory() as session:
            doctors = list((await session.execute(stmt)).scalars().all())
            if not doctors:
                return []
            names = (
                await session.execute(
                    select(DoctorSpecialty.doctor_id, Specialty.name)
                    .join(Specialty, Specialty.id == DoctorSpecialty.specialty_id)
                    .where(DoctorSpecialty.doctor_id.in_([d.id for d in doctors]))
                )
            ).all()
        by_doctor: dict[uuid.UUID, list[str]] = {}
        for doctor_id, name in names:
            by_doctor.setdefault(doctor_id, []).append(name)
        return [(d, by_doctor.get(d.id, [])) for d in doctors]


# ---------------------------------------------------------------------------
# Treatments, specialties
# ---------------------------------------------------------------------------


class TreatmentRepository(CrudRepository[Treatment]):
    model = Treatment
    entity = "Treatment"
    search_columns = ("name", "description")


class SpecialtyRepository(CrudRepository[Specialty]):
    model = Specialty
    entity = "Specialty"
    search_columns = ("name", "description", "code")

    def order_by(self) -> tuple[Any, ...]:
        return (Specialty.sort_order, Specialty.name)


# ---------------------------------------------------------------------------
# Facilities
# ---------------------------------------------------------------------------


class FacilityRepository(CrudRepository[Facility]):
    model = Facility
    entity = "Facility"
    search_columns = ("name", "description")

    def filtered(
        self, search: str | None = None, *, hospital_id: uuid.UUID | None = None, **filters: Any
    ) -> Select:
        stmt = super().filtered(search, **filters)
        if hospital_id is not None:
            stmt = stmt.where(
                Facility.id.in_(
                    select(HospitalFacility.facility_id).where(
                        HospitalFacility.hospital_id == hospital_id
                    )
                )
            )
        return stmt

    async def get_links(self, facility_id: uuid.UUID) -> list[tuple[HospitalFacility, str]]:
        """Hospital links of a facility with the hospital name, primary first."""
        async with self._session_factory() as session:
            await self._get_or_raise(session, facility_id)
            rows = (
                await session.execute(
                    select(HospitalFacility, Hospital.name)
                    .join(Hospital, Hospital.id == HospitalFacility.hospital_id)
                    .where(HospitalFacility.facility_id == facility_id)
                    .order_by(HospitalFacility.primary_hospital.desc(), Hospital.name)
                )
            ).tuples().all()
        return list(rows)

    async def create_with_links(
        self, data: dict[str, Any], hospitals: Sequence[dict[str, Any]]
    ) -> Facility:
        facility = Facility(**data)
        async with self._session_factory() as session:
            async with self._conflicts(session, data):
                session.add(facility)
                await session.flush()
                session.add_all(
                    HospitalFacility(facility_id=facility.id, **link) for link in hospitals
                )
                await session.commit()
            await session.refresh(facility)
        logger.info("Created facility %s with %d hospital links", facility.id, len(hospitals))
        return facility

    async def update_with_links(
        self,
        facility_id: uuid.UUID,
        data: dict[str, Any],
        hospitals: Sequence[dict[str, Any]] | None,
    ) -> Facility:
        async with self._session_factory() as session:
            facility = await self._get_or_raise(session, facility_id)
            async with self._conflicts(session, data):
                for key, value in data.items():
                    setattr(facility, key, value)
                if hospitals is not None:
                    await session.execute(
                        delete(HospitalFacility).where(
                            HospitalFacility.facility_id == facility_id
                        )
                    )
                    session.add_all(
                        HospitalFacility(facility_id=facility_id, **link) for link in hospitals
                    )
                await session.commit()
            await session.refresh(facility)
        return facility


# ---------------------------------------------------------------------------
# Inspired content
# ---------------------------------------------------------------------------


class InspiredCategoryRepository(CrudRepository[InspiredCategory]):
    model = InspiredCategory
    entity = "Inspired category"

    def order_by(self) -> tuple[Any, ...]:
        return (InspiredCategory.sort_order, InspiredCategory.name)

    async def list_active(self) -> list[InspiredCategory]:
        stmt = self.filtered(is_active=True).order_by(*self.order_by())
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())


class InspiredContentRepository(CrudRepository[InspiredContent]):
    model = InspiredContent
    entity = "Inspired content"
    search_columns = ("title", "subtitle", "excerpt")
    substring_filters = frozenset({"target_city"})

    def order_by(self) -> tuple[Any, ...]:
        return (InspiredContent.sort_order, InspiredContent.created_at.desc())

    async def get_published_by_slug(self, slug: str) -> InspiredContent:
        """Return published content by slug and count the view."""
        async with self._session_factory() as session:
            content = (
                await session.execute(
                    select(InspiredContent).where(
                        InspiredContent.slug == slug,
                        InspiredContent.is_published.is_(True),
                    )
                )
            ).scalar_one_or_none()
            if content is None:
                raise NotFound(self.entity, slug)
            await session.execute(
                update(InspiredContent)
                .where(InspiredContent.id == content.id)
                .values(view_count=InspiredContent.view_count + 1)
            )
            await session.commit()
            await session.refresh(content)
        return content

    async def list_hospitals(
        self, content_id: uuid.UUID
    ) -> list[tuple[InspiredContentHospital, Hospital]]:
        async with self._session_factory() as session:
            await self._get_or_raise(session, content_id)
            rows = (
                await session.execute(
                    select(InspiredContentHospital, Hospital)
                    .join(Hospital, Hospital.id == InspiredContentHospital.hospital_id)
                    .where(InspiredContentHospital.content_id == content_id)
                    .order_by(InspiredContentHospital.position)
                )
            ).tuples().all()
        return list(rows)

    async def replace_hospitals(
        self, content_id: uuid.UUID, entries: Sequence[dict[str, Any]]
    ) -> None:
        async with self._session_factory() as session:
            content = await self._get_or_raise(session, content_id)
            async with self._conflicts(session, {"slug": content.slug}):
                await session.execute(
                    delete(InspiredContentHospital).where(
                        InspiredContentHospital.content_id == content_id
                    )
                )
                session.add_all(
                    InspiredContentHospital(content_id=content_id, **entry) for entry in entries
                )
                content.updated_at = datetime.now(timezone.utc)
                await session.commit()
        logger.info("Replaced %d hospitals on content %s", len(entries), content_id)
