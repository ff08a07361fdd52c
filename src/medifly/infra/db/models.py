"""SQLAlchemy ORM models for the MediFly platform.

All tables are managed by Alembic migrations.  The ``Base.metadata``
naming convention keeps constraint names deterministic for
``--autogenerate`` diffs.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ---------------------------------------------------------------------------
# Declarative base with naming convention
# ---------------------------------------------------------------------------

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Shared declarative base with an explicit naming convention."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


EMBEDDING_DIMENSIONS = 1536
"""Must match ``EmbeddingConfig.dimensions``.  Changing it requires a
migration that ALTERs ``hospitals.embedding``."""


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


def _fk(target: str, *, nullable: bool = False, ondelete: str = "CASCADE") -> Mapped[Any]:
    return mapped_column(
        Uuid, ForeignKey(target, ondelete=ondelete), nullable=nullable
    )


# ---------------------------------------------------------------------------
# Hospitals and facilities
# ---------------------------------------------------------------------------


class Hospital(Base):
    """A hospital listing, plus its search embedding.

    ``embedding`` is NULL until the indexer (or the webhook) embeds the
    hospital's descriptive text; coverage is measured over active rows.
    """

    __tablename__ = "hospitals"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))
    website: Mapped[str | None] = mapped_column(String(500))
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="US")
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="GENERAL")
    bed_count: Mapped[int | None] = mapped_column(Integer)
    established: Mapped[int | None] = mapped_column(Integer)
    emergency_services: Mapped[bool] = mapped_column(Boolean, default=False)
    trauma_level: Mapped[str | None] = mapped_column(String(10))
    logo: Mapped[str | None] = mapped_column(String(500))
    images: Mapped[list | None] = mapped_column(JSONB)
    virtual_tour: Mapped[str | None] = mapped_column(String(500))
    rating: Mapped[float | None] = mapped_column(Float)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    operating_hours: Mapped[dict | None] = mapped_column(JSONB)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    # ``metadata`` is reserved on declarative classes.
    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSONB)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=True
    )
    embedding_metadata: Mapped[dict | None] = mapped_column(JSONB)
    embedding_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        Index("ix_hospitals_city", "city"),
        Index("ix_hospitals_is_active_created_at", "is_active", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Hospital(id={self.id}, name={self.name!r}, city={self.city!r})>"


class Facility(Base):
    """A facility (lab, pharmacy, ICU, ...) shared by one or more hospitals."""

    __tablename__ = "facilities"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    icon: Mapped[str | None] = mapped_column(String(50))
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="OTHER")
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    capacity: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    def __repr__(self) -> str:
        return f"<Facility(id={self.id}, name={self.name!r})>"


class HospitalFacility(Base):
    """Link between a hospital and a facility it can use."""

    __tablename__ = "hospital_facilities"

    id: Mapped[uuid.UUID] = _uuid_pk()
    hospital_id: Mapped[uuid.UUID] = _fk("hospitals.id")
    facility_id: Mapped[uuid.UUID] = _fk("facilities.id")
    primary_hospital: Mapped[bool] = mapped_column(Boolean, default=False)
    access_level: Mapped[str] = mapped_column(String(20), default="FULL")
    cost_sharing_percentage: Mapped[float] = mapped_column(Float, default=100.0)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index(
            "uq_hospital_facilities_hospital_facility",
            "hospital_id",
            "facility_id",
            unique=True,
        ),
    )


# ---------------------------------------------------------------------------
# Specialties and doctors
# ---------------------------------------------------------------------------


class Specialty(Base):
    __tablename__ = "specialties"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    code: Mapped[str | None] = mapped_column(String(20))
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="MEDICAL")
    color_code: Mapped[str | None] = mapped_column(String(7))
    icon: Mapped[str | None] = mapped_column(String(50))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    requires_certification: Mapped[bool] = mapped_column(Boolean, default=False)
    avg_consultation_duration_minutes: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    def __repr__(self) -> str:
        return f"<Specialty(id={self.id}, name={self.name!r})>"


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[uuid.UUID] = _uuid_pk()
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[str | None] = mapped_column(String(50))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))
    license_number: Mapped[str] = mapped_column(String(50), nullable=False)
    gender: Mapped[str | None] = mapped_column(String(20))
    years_of_experience: Mapped[int] = mapped_column(Integer, default=0)
    biography: Mapped[str | None] = mapped_column(Text)
    education: Mapped[list | None] = mapped_column(JSONB)
    languages: Mapped[list] = mapped_column(JSONB, default=lambda: ["English"])
    consultation_fee: Mapped[float | None] = mapped_column(Float)
    consultation_duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    profile_image: Mapped[str | None] = mapped_column(String(500))
    is_accepting_new_patients: Mapped[bool] = mapped_column(Boolean, default=True)
    is_telehealth_available: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    def __repr__(self) -> str:
        return (
            f"<Doctor(id={self.id}, name={self.first_name!r} {self.last_name!r})>"
        )


class DoctorHospital(Base):
    """A doctor's affiliation with a hospital."""

    __tablename__ = "doctor_hospitals"

    id: Mapped[uuid.UUID] = _uuid_pk()
    doctor_id: Mapped[uuid.UUID] = _fk("doctors.id")
    hospital_id: Mapped[uuid.UUID] = _fk("hospitals.id")
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    position_title: Mapped[str | None] = mapped_column(String(100))
    department: Mapped[str | None] = mapped_column(String(100))
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (Index("ix_doctor_hospitals_hospital_id", "hospital_id"),)


class DoctorSpecialty(Base):
    __tablename__ = "doctor_specialties"

    id: Mapped[uuid.UUID] = _uuid_pk()
    doctor_id: Mapped[uuid.UUID] = _fk("doctors.id")
    specialty_id: Mapped[uuid.UUID] = _fk("specialties.id")
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    years_in_specialty: Mapped[int | None] = mapped_column(Integer)
    board_certified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index(
            "uq_doctor_specialties_doctor_specialty",
            "doctor_id",
            "specialty_id",
            unique=True,
        ),
    )


# ---------------------------------------------------------------------------
# Treatments
# ---------------------------------------------------------------------------


class Treatment(Base):
    """A treatment offered at a hospital.

    Priced either with a fixed ``price`` or a ``price_range_min`` /
    ``price_range_max`` pair, never both.
    """

    __tablename__ = "treatments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    hospital_id: Mapped[uuid.UUID] = _fk("hospitals.id")
    doctor_id: Mapped[uuid.UUID | None] = _fk(
        "doctors.id", nullable=True, ondelete="SET NULL"
    )
    specialty_id: Mapped[uuid.UUID | None] = _fk(
        "specialties.id", nullable=True, ondelete="SET NULL"
    )
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="OTHER")
    duration_minutes: Mapped[int | None] = mapped_column(Integer)
    sessions_required: Mapped[int] = mapped_column(Integer, default=1)
    price: Mapped[float | None] = mapped_column(Float)
    price_range_min: Mapped[float | None] = mapped_column(Float)
    price_range_max: Mapped[float | None] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    success_rate: Mapped[float | None] = mapped_column(Float)
    waiting_time_days: Mapped[int | None] = mapped_column(Integer)
    requirements: Mapped[list | None] = mapped_column(JSONB)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (Index("ix_treatments_hospital_id", "hospital_id"),)

    def __repr__(self) -> str:
        return f"<Treatment(id={self.id}, name={self.name!r})>"


# ---------------------------------------------------------------------------
# Inspired content
# ---------------------------------------------------------------------------


class InspiredCategory(Base):
    __tablename__ = "inspired_categories"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    icon: Mapped[str | None] = mapped_column(String(50))
    color_code: Mapped[str | None] = mapped_column(String(7))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = _created_at()


class InspiredContent(Base):
    """Editorial content: guides and curated hospital lists."""

    __tablename__ = "inspired_content"

    id: Mapped[uuid.UUID] = _uuid_pk()
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(300))
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    content_type: Mapped[str] = mapped_column(String(30), nullable=False)
    category_id: Mapped[uuid.UUID | None] = _fk(
        "inspired_categories.id", nullable=True, ondelete="SET NULL"
    )
    target_country: Mapped[str | None] = mapped_column(String(30))
    target_city: Mapped[str | None] = mapped_column(String(100))
    excerpt: Mapped[str | None] = mapped_column(String(500))
    content: Mapped[str | None] = mapped_column(Text)
    featured_image: Mapped[str | None] = mapped_column(String(500))
    meta_title: Mapped[str | None] = mapped_column(String(200))
    meta_description: Mapped[str | None] = mapped_column(String(160))
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    def __repr__(self) -> str:
        return f"<InspiredContent(id={self.id}, slug={self.slug!r})>"


class InspiredContentHospital(Base):
    """A hospital entry inside a curated content list."""

    __tablename__ = "inspired_content_hospitals"

    id: Mapped[uuid.UUID] = _uuid_pk()
    content_id: Mapped[uuid.UUID] = _fk("inspired_content.id")
    hospital_id: Mapped[uuid.UUID] = _fk("hospitals.id")
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    custom_title: Mapped[str | None] = mapped_column(String(200))
    custom_description: Mapped[str | None] = mapped_column(String(1000))
    highlight_text: Mapped[str | None] = mapped_column(String(100))
    rating_score: Mapped[float | None] = mapped_column(Float)
    patient_count: Mapped[int | None] = mapped_column(Integer)
    price_range_min: Mapped[float | None] = mapped_column(Float)
    price_range_max: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index(
            "uq_inspired_content_hospitals_content_position",
            "content_id",
            "position",
            unique=True,
        ),
    )


# ---------------------------------------------------------------------------
# Usage metering
# ---------------------------------------------------------------------------


class CostRate(Base):
    """Per-model token prices used to cost tracked usage."""

    __tablename__ = "cost_rates"

    id: Mapped[uuid.UUID] = _uuid_pk()
    model_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    input_cost_per_1k_tokens: Mapped[float] = mapped_column(Float, nullable=False)
    output_cost_per_1k_tokens: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = _created_at()


class TokenUsage(Base):
    """One metered AI request."""

    __tablename__ = "token_usage"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    session_id: Mapped[uuid.UUID | None] = _fk(
        "usage_sessions.id", nullable=True, ondelete="SET NULL"
    )
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    endpoint: Mapped[str | None] = mapped_column(String(300))
    model_name: Mapped[str | None] = mapped_column(String(100))
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    request_data: Mapped[dict | None] = mapped_column(JSONB)
    response_data: Mapped[dict | None] = mapped_column(JSONB)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("ix_token_usage_user_id_created_at", "user_id", "created_at"),
    )


class UsageBudget(Base):
    """Spending caps and running totals for one user."""

    __tablename__ = "usage_budgets"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    daily_limit_usd: Mapped[float] = mapped_column(Float, default=10.0)
    monthly_limit_usd: Mapped[float] = mapped_column(Float, default=300.0)
    current_daily_spend: Mapped[float] = mapped_column(Float, default=0.0)
    current_monthly_spend: Mapped[float] = mapped_column(Float, default=0.0)
    last_daily_reset: Mapped[date | None] = mapped_column(Date)
    last_monthly_reset: Mapped[date | None] = mapped_column(Date)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    warning_threshold_percent: Mapped[int] = mapped_column(Integer, default=80)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class UsageSession(Base):
    """A group of metered requests (one admin working session)."""

    __tablename__ = "usage_sessions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    session_name: Mapped[str | None] = mapped_column(String(200))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    request_count: Mapped[int] = mapped_column(Integer, default=0)
    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSONB)

    __table_args__ = (
        Index("ix_usage_sessions_user_id_started_at", "user_id", "started_at"),
    )
