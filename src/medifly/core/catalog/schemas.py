"""Validation schemas for catalog writes.

Create schemas carry every required field and derive a missing slug
from the name or title.  Update schemas make every field optional;
``model_dump(exclude_unset=True)`` yields only what the caller sent,
and cross-field rules only look at the fields present.
"""

from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    EmailStr,
    Field,
    HttpUrl,
    TypeAdapter,
    field_validator,
    model_validator,
)

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

HospitalType = Literal[
    "GENERAL",
    "SPECIALTY",
    "TEACHING",
    "CLINIC",
    "URGENT_CARE",
    "REHABILITATION",
    "PSYCHIATRIC",
    "CHILDRENS",
    "MATERNITY",
    "MILITARY",
    "VETERANS",
]

Gender = Literal["MALE", "FEMALE", "NON_BINARY", "OTHER", "PREFER_NOT_TO_SAY"]

TreatmentCategory = Literal[
    "SURGERY",
    "THERAPY",
    "DIAGNOSTIC",
    "WELLNESS",
    "EMERGENCY",
    "PREVENTIVE",
    "REHABILITATION",
    "COSMETIC",
    "DENTAL",
    "OTHER",
]

SpecialtyCategory = Literal[
    "MEDICAL",
    "SURGICAL",
    "DIAGNOSTIC",
    "THERAPEUTIC",
    "EMERGENCY",
    "PREVENTIVE",
    "REHABILITATION",
    "MENTAL_HEALTH",
    "PEDIATRIC",
    "GERIATRIC",
    "OTHER",
]

FacilityCategory = Literal[
    "DIAGNOSTIC",
    "LABORATORY",
    "PHARMACY",
    "EMERGENCY",
    "INTENSIVE_CARE",
    "OPERATING_ROOM",
    "PATIENT_ROOM",
    "CAFETERIA",
    "PARKING",
    "ACCESSIBILITY",
    "OTHER",
]

AccessLevel = Literal["FULL", "LIMITED", "EMERGENCY_ONLY"]

ContentType = Literal[
    "hospital_list",
    "treatment_guide",
    "specialty_guide",
    "location_guide",
    "comparison_guide",
]

TargetCountry = Literal[
    "thailand",
    "malaysia",
    "singapore",
    "indonesia",
    "philippines",
    "vietnam",
    "myanmar",
    "cambodia",
    "laos",
    "brunei",
]

SLUG_PATTERN = r"^[a-z0-9-]+$"
SPECIALTY_CODE_PATTERN = r"^[A-Z0-9_-]+$"
COLOR_CODE_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")

_URL_ADAPTER = TypeAdapter(HttpUrl)


def generate_slug(text: str) -> str:
    """Lowercase *text* and reduce it to ``[a-z0-9-]``.

    >>> generate_slug("  St. Mary's Hospital -- Bangkok ")
    'st-marys-hospital-bangkok'
    """
    slug = _NON_SLUG_CHARS.sub("", text.lower().strip())
    slug = _WHITESPACE.sub("-", slug)
    slug = _DASHES.sub("-", slug)
    return slug.strip("-")


def _check_url(value: str) -> str:
    _URL_ADAPTER.validate_python(value)
    return value


Url = Annotated[str, AfterValidator(_check_url)]
Slug = Annotated[str, Field(min_length=2, max_length=200, pattern=SLUG_PATTERN)]
ColorCode = Annotated[str, Field(pattern=COLOR_CODE_PATTERN)]


def _derive_slug(data: Any, *sources: str) -> Any:
    if isinstance(data, dict) and not data.get("slug"):
        parts = [str(data[s]) for s in sources if data.get(s)]
        if parts:
            data = {**data, "slug": generate_slug(" ".join(parts))}
    return data


def _at_most_one_primary(items: list[Any] | None, flag: str, what: str) -> None:
    if items and sum(1 for item in items if getattr(item, flag)) > 1:
        raise ValueError(f"Only one {what} can be marked as primary")


def _check_price_range(low: float | None, high: float | None) -> None:
    if low is not None and high is not None and low >= high:
        raise ValueError("Minimum price must be less than maximum price")


class _Schema(BaseModel):
    model_config = {"extra": "forbid"}


# ---------------------------------------------------------------------------
# Hospitals
# ---------------------------------------------------------------------------


class HospitalCreate(_Schema):
    name: str = Field(min_length=2, max_length=200)
    slug: Slug
    description: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    website: Url | None = None
    address: str = Field(min_length=5, max_length=500)
    city: str = Field(min_length=2, max_length=100)
    state: str = Field(min_length=2, max_length=100)
    zip_code: str = Field(min_length=5, max_length=20)
    country: str = "US"
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    type: HospitalType = "GENERAL"
    bed_count: int | None = Field(default=None, gt=0)
    established: int | None = Field(default=None, ge=1700, le=2100)
    emergency_services: bool = False
    trauma_level: str | None = None
    logo: Url | None = None
    images: list[str] | None = None
    virtual_tour: Url | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    operating_hours: dict[str, Any] | None = None
    is_active: bool = True
    is_verified: bool = False
    is_featured: bool = False
    metadata: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _slug_from_name(cls, data: Any) -> Any:
        return _derive_slug(data, "name")


class HospitalUpdate(_Schema):
    name: str | None = Field(default=None, min_length=2, max_length=200)
    slug: Slug | None = None
    description: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    website: Url | None = None
    address: str | None = Field(default=None, min_length=5, max_length=500)
    city: str | None = Field(default=None, min_length=2, max_length=100)
    state: str | None = Field(default=None, min_length=2, max_length=100)
    zip_code: str | None = Field(default=None, min_length=5, max_length=20)
    country: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    type: HospitalType | None = None
    bed_count: int | None = Field(default=None, gt=0)
    established: int | None = Field(default=None, ge=1700, le=2100)
    emergency_services: bool | None = None
    trauma_level: str | None = None
    logo: Url | None = None
    images: list[str] | None = None
    virtual_tour: Url | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    operating_hours: dict[str, Any] | None = None
    is_active: bool | None = None
    is_verified: bool | None = None
    is_featured: bool | None = None
    metadata: dict[str, Any] | None = None


def hospital_columns(data: dict[str, Any]) -> dict[str, Any]:
    """Map schema field names onto ``Hospital`` attribute names."""
    if "metadata" in data:
        data = {**data}
        data["extra_metadata"] = data.pop("metadata")
    return data


# ---------------------------------------------------------------------------
# Doctors
# ---------------------------------------------------------------------------


class DoctorHospitalLink(_Schema):
    hospital_id: uuid.UUID
    is_primary: bool = False
    position_title: str | None = Field(default=None, max_length=100)
    department: str | None = Field(default=None, max_length=100)
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool = True


class DoctorSpecialtyLink(_Schema):
    specialty_id: uuid.UUID
    is_primary: bool = False
    years_in_specialty: int | None = Field(default=None, ge=0, le=70)
    board_certified: bool = False


class _DoctorLinks(_Schema):
    hospitals: list[DoctorHospitalLink] | None = None
    specialties: list[DoctorSpecialtyLink] | None = None

    @model_validator(mode="after")
    def _single_primaries(self) -> "_DoctorLinks":
        _at_most_one_primary(self.hospitals, "is_primary", "hospital")
        _at_most_one_primary(self.specialties, "is_primary", "specialty")
        return self

    def links(self) -> tuple[list[dict] | None, list[dict] | None]:
        hospitals = (
            None if self.hospitals is None else [h.model_dump() for h in self.hospitals]
        )
        specialties = (
            None
            if self.specialties is None
            else [s.model_dump() for s in self.specialties]
        )
        return hospitals, specialties


class DoctorCreate(_DoctorLinks):
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    slug: str = Field(min_length=2, max_length=100, pattern=SLUG_PATTERN)
    title: str | None = Field(default=None, max_length=50)
    email: EmailStr | None = None
    phone: str | None = None
    license_number: str = Field(min_length=5, max_length=50)
    gender: Gender | None = None
    years_of_experience: int = Field(default=0, ge=0, le=70)
    biography: str | None = Field(default=None, max_length=2000)
    education: list[dict[str, Any]] | None = None
    languages: list[str] = Field(default_factory=lambda: ["English"], min_length=1)
    consultation_fee: float | None = Field(default=None, gt=0, le=10000)
    consultation_duration_minutes: int = Field(default=30, ge=15, le=240)
    profile_image: Url | None = None
    is_accepting_new_patients: bool = True
    is_telehealth_available: bool = False
    is_active: bool = True
    is_verified: bool = False

    @model_validator(mode="before")
    @classmethod
    def _slug_from_name(cls, data: Any) -> Any:
        return _derive_slug(data, "first_name", "last_name")


class DoctorUpdate(_DoctorLinks):
    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    slug: str | None = Field(default=None, min_length=2, max_length=100, pattern=SLUG_PATTERN)
    title: str | None = Field(default=None, max_length=50)
    email: EmailStr | None = None
    phone: str | None = None
    license_number: str | None = Field(default=None, min_length=5, max_length=50)
    gender: Gender | None = None
    years_of_experience: int | None = Field(default=None, ge=0, le=70)
    biography: str | None = Field(default=None, max_length=2000)
    education: list[dict[str, Any]] | None = None
    languages: list[str] | None = Field(default=None, min_length=1)
    consultation_fee: float | None = Field(default=None, gt=0, le=10000)
    consultation_duration_minutes: int | None = Field(default=None, ge=15, le=240)
    profile_image: Url | None = None
    is_accepting_new_patients: bool | None = None
    is_telehealth_available: bool | None = None
    is_active: bool | None = None
    is_verified: bool | None = None


# ---------------------------------------------------------------------------
# Treatments
# ---------------------------------------------------------------------------


class _TreatmentPricing(_Schema):
    @model_validator(mode="after")
    def _one_pricing_mode(self) -> "_TreatmentPricing":
        price = getattr(self, "price", None)
        low = getattr(self, "price_range_min", None)
        high = getattr(self, "price_range_max", None)
        has_range = low is not None or high is not None
        if price is not None and has_range:
            raise ValueError("Provide either a fixed price or a price range, not both")
        if has_range and (low is None) != (high is None):
            raise ValueError("A price range needs both minimum and maximum")
        _check_price_range(low, high)
        return self


class TreatmentCreate(_TreatmentPricing):
    name: str = Field(min_length=2, max_length=200)
    slug: Slug
    description: str | None = None
    hospital_id: uuid.UUID
    doctor_id: uuid.UUID | None = None
    specialty_id: uuid.UUID | None = None
    category: TreatmentCategory = "OTHER"
    duration_minutes: int | None = Field(default=None, gt=0)
    sessions_required: int = Field(default=1, ge=1)
    price: float | None = Field(default=None, ge=0)
    price_range_min: float | None = Field(default=None, ge=0)
    price_range_max: float | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    success_rate: float | None = Field(default=None, ge=0, le=100)
    waiting_time_days: int | None = Field(default=None, ge=0)
    requirements: list[str] | None = None
    is_available: bool = True

    @model_validator(mode="before")
    @classmethod
    def _slug_from_name(cls, data: Any) -> Any:
        return _derive_slug(data, "name")

    @model_validator(mode="after")
    def _priced(self) -> "TreatmentCreate":
        if self.price is None and self.price_range_min is None:
            raise ValueError("Provide either a fixed price or a price range")
        return self


class TreatmentUpdate(_TreatmentPricing):
    name: str | None = Field(default=None, min_length=2, max_length=200)
    slug: Slug | None = None
    description: str | None = None
    hospital_id: uuid.UUID | None = None
    doctor_id: uuid.UUID | None = None
    specialty_id: uuid.UUID | None = None
    category: TreatmentCategory | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    sessions_required: int | None = Field(default=None, ge=1)
    price: float | None = Field(default=None, ge=0)
    price_range_min: float | None = Field(default=None, ge=0)
    price_range_max: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    success_rate: float | None = Field(default=None, ge=0, le=100)
    waiting_time_days: int | None = Field(default=None, ge=0)
    requirements: list[str] | None = None
    is_available: bool | None = None


# ---------------------------------------------------------------------------
# Specialties
# ---------------------------------------------------------------------------


class SpecialtyCreate(_Schema):
    name: str = Field(min_length=2, max_length=100)
    code: str | None = Field(
        default=None, min_length=2, max_length=20, pattern=SPECIALTY_CODE_PATTERN
    )
    description: str | None = None
    category: SpecialtyCategory = "MEDICAL"
    color_code: ColorCode | None = None
    icon: str | None = Field(default=None, max_length=50)
    sort_order: int = Field(default=0, ge=0)
    requires_certification: bool = False
    avg_consultation_duration_minutes: int | None = Field(default=None, gt=0)
    is_active: bool = True


class SpecialtyUpdate(_Schema):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    code: str | None = Field(
        default=None, min_length=2, max_length=20, pattern=SPECIALTY_CODE_PATTERN
    )
    description: str | None = None
    category: SpecialtyCategory | None = None
    color_code: ColorCode | None = None
    icon: str | None = Field(default=None, max_length=50)
    sort_order: int | None = Field(default=None, ge=0)
    requires_certification: bool | None = None
    avg_consultation_duration_minutes: int | None = Field(default=None, gt=0)
    is_active: bool | None = None


# ---------------------------------------------------------------------------
# Facilities
# ---------------------------------------------------------------------------


class FacilityHospitalLink(_Schema):
    hospital_id: uuid.UUID
    primary_hospital: bool = False
    access_level: AccessLevel = "FULL"
    cost_sharing_percentage: float = Field(default=100.0, ge=0, le=100)
    notes: str | None = None


class _FacilityLinks(_Schema):
    hospitals: list[FacilityHospitalLink] | None = None

    @model_validator(mode="after")
    def _single_primary(self) -> "_FacilityLinks":
        _at_most_one_primary(self.hospitals, "primary_hospital", "hospital")
        return self

    def links(self) -> list[dict] | None:
        if self.hospitals is None:
            return None
        return [h.model_dump() for h in self.hospitals]


class FacilityCreate(_FacilityLinks):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=50)
    category: FacilityCategory = "OTHER"
    is_available: bool = True
    capacity: int | None = Field(default=None, ge=0)
    hospitals: list[FacilityHospitalLink] = Field(min_length=1)


class FacilityUpdate(_FacilityLinks):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=50)
    category: FacilityCategory | None = None
    is_available: bool | None = None
    capacity: int | None = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Inspired content
# ---------------------------------------------------------------------------


class InspiredCategoryCreate(_Schema):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=50)
    color_code: ColorCode | None = None
    sort_order: int = Field(default=0, ge=0)
    is_active: bool = True


class InspiredContentCreate(_Schema):
    title: str = Field(min_length=5, max_length=200)
    subtitle: str | None = Field(default=None, max_length=300)
    slug: str = Field(min_length=3, max_length=200, pattern=SLUG_PATTERN)
    content_type: ContentType
    category_id: uuid.UUID | None = None
    target_country: TargetCountry | None = None
    target_city: str | None = Field(default=None, max_length=100)
    excerpt: str | None = Field(default=None, max_length=500)
    content: str | None = None
    featured_image: Url | None = None
    meta_title: str | None = Field(default=None, max_length=200)
    meta_description: str | None = Field(default=None, max_length=160)
    is_published: bool = False
    is_featured: bool = False
    published_at: datetime | None = None
    sort_order: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _slug_from_title(cls, data: Any) -> Any:
        return _derive_slug(data, "title")

    @model_validator(mode="after")
    def _stamp_publication(self) -> "InspiredContentCreate":
        if self.is_published and self.published_at is None:
            self.published_at = datetime.now(timezone.utc)
        return self


class InspiredContentUpdate(_Schema):
    title: str | None = Field(default=None, min_length=5, max_length=200)
    subtitle: str | None = Field(default=None, max_length=300)
    slug: str | None = Field(default=None, min_length=3, max_length=200, pattern=SLUG_PATTERN)
    content_type: ContentType | None = None
    category_id: uuid.UUID | None = None
    target_country: TargetCountry | None = None
    target_city: str | None = Field(default=None, max_length=100)
    excerpt: str | None = Field(default=None, max_length=500)
    content: str | None = None
    featured_image: Url | None = None
    meta_title: str | None = Field(default=None, max_length=200)
    meta_description: str | None = Field(default=None, max_length=160)
    is_published: bool | None = None
    is_featured: bool | None = None
    published_at: datetime | None = None
    sort_order: int | None = Field(default=None, ge=0)


class ContentHospitalEntry(_Schema):
    hospital_id: uuid.UUID
    position: int = Field(ge=1, le=50)
    custom_title: str | None = Field(default=None, max_length=200)
    custom_description: str | None = Field(default=None, max_length=1000)
    highlight_text: str | None = Field(default=None, max_length=100)
    rating_score: float | None = Field(default=None, ge=0, le=5)
    patient_count: int | None = Field(default=None, ge=0)
    price_range_min: float | None = Field(default=None, ge=0)
    price_range_max: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _price_order(self) -> "ContentHospitalEntry":
        _check_price_range(self.price_range_min, self.price_range_max)
        return self


class ContentHospitalList(_Schema):
    hospitals: list[ContentHospitalEntry]

    @field_validator("hospitals")
    @classmethod
    def _unique_positions(cls, entries: list[ContentHospitalEntry]) -> list[ContentHospitalEntry]:
        positions = [e.position for e in entries]
        if len(positions) != len(set(positions)):
            raise ValueError("Each hospital must have a unique position")
        return entries


def publication_stamp(
    changes: dict[str, Any], current_published_at: datetime | None
) -> dict[str, Any]:
    """Stamp ``published_at`` when an update publishes unstamped content."""
    if (
        changes.get("is_published")
        and "published_at" not in changes
        and current_published_at is None
    ):
        return {**changes, "published_at": datetime.now(timezone.utc)}
    return changes
