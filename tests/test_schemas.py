"""Tests for catalog write schemas."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from medifly.core.catalog.schemas import (
    ContentHospitalList,
    DoctorCreate,
    FacilityCreate,
    HospitalCreate,
    HospitalUpdate,
    InspiredContentCreate,
    TreatmentCreate,
    TreatmentUpdate,
    generate_slug,
    hospital_columns,
    publication_stamp,
)

HOSPITAL = dict(
    name="Bangkok Heart Hospital",
    address="2 Soi Soonvijai 7",
    city="Bangkok",
    state="Bangkok",
    zip_code="10310",
)


class TestGenerateSlug:
    def test_punctuation_and_spaces(self):
        assert generate_slug("  St. Mary's Hospital -- Bangkok ") == "st-marys-hospital-bangkok"

    def test_non_ascii_dropped(self):
        assert generate_slug("Clínica Único") == "clnica-nico"


class TestHospitalSchemas:
    def test_slug_derived_from_name(self):
        hospital = HospitalCreate(**HOSPITAL)
        assert hospital.slug == "bangkok-heart-hospital"
        assert hospital.type == "GENERAL"
        assert hospital.country == "US"

    def test_explicit_slug_kept(self):
        assert HospitalCreate(**HOSPITAL, slug="bhh").slug == "bhh"

    def test_invalid_fields(self):
        with pytest.raises(ValidationError):
            HospitalCreate(**{**HOSPITAL, "zip_code": "123"})
        with pytest.raises(ValidationError):
            HospitalCreate(**HOSPITAL, website="not a url")
        with pytest.raises(ValidationError):
            HospitalCreate(**HOSPITAL, email="nobody")
        with pytest.raises(ValidationError):
            HospitalCreate(**HOSPITAL, rating=5.5)
        with pytest.raises(ValidationError):
            HospitalCreate(**HOSPITAL, unknown_field=1)

    def test_update_only_sent_fields(self):
        update = HospitalUpdate(city="Phuket", metadata={"languages": ["Thai"]})
        changes = hospital_columns(update.model_dump(exclude_unset=True))
        assert changes == {"city": "Phuket", "extra_metadata": {"languages": ["Thai"]}}


class TestDoctorCreate:
    def test_slug_from_full_name(self):
        doctor = DoctorCreate(first_name="Anan", last_name="Chai", license_number="MD-12345")
        assert doctor.slug == "anan-chai"
        assert doctor.languages == ["English"]

    def test_single_primary_hospital(self):
        with pytest.raises(ValidationError, match="Only one hospital"):
            DoctorCreate(
                first_name="Anan",
                last_name="Chai",
                license_number="MD-12345",
                hospitals=[
                    {"hospital_id": str(uuid.uuid4()), "is_primary": True},
                    {"hospital_id": str(uuid.uuid4()), "is_primary": True},
                ],
            )

    def test_links(self):
        hospital_id = uuid.uuid4()
        doctor = DoctorCreate(
            first_name="Anan",
            last_name="Chai",
            license_number="MD-12345",
            hospitals=[{"hospital_id": str(hospital_id), "is_primary": True}],
        )
        hospitals, specialties = doctor.links()
        assert hospitals[0]["hospital_id"] == hospital_id
        assert specialties is None


class TestTreatmentPricing:
    def _base(self, **extra):
        return dict(name="Knee Replacement", hospital_id=str(uuid.uuid4()), **extra)

    def test_fixed_price(self):
        assert TreatmentCreate(**self._base(price=9000)).slug == "knee-replacement"

    def test_price_range(self):
        treatment = TreatmentCreate(**self._base(price_range_min=8000, price_range_max=12000))
        assert treatment.price is None

    def test_price_required(self):
        with pytest.raises(ValidationError, match="fixed price or a price range"):
            TreatmentCreate(**self._base())

    def test_not_both(self):
        with pytest.raises(ValidationError, match="not both"):
            TreatmentCreate(**self._base(price=1, price_range_min=1, price_range_max=2))

    def test_range_needs_both_ends(self):
        with pytest.raises(ValidationError, match="both minimum and maximum"):
            TreatmentCreate(**self._base(price_range_min=100))

    def test_range_order(self):
        with pytest.raises(ValidationError, match="less than maximum"):
            TreatmentCreate(**self._base(price_range_min=200, price_range_max=100))

    def test_update_checks_present_fields_only(self):
        assert TreatmentUpdate(name="New name").price is None
        with pytest.raises(ValidationError):
            TreatmentUpdate(price=10, price_range_min=1, price_range_max=5)


class TestFacilityCreate:
    def test_needs_a_hospital(self):
        with pytest.raises(ValidationError):
            FacilityCreate(name="MRI Suite", hospitals=[])

    def test_single_primary(self):
        with pytest.raises(ValidationError, match="Only one hospital"):
            FacilityCreate(
                name="MRI Suite",
                hospitals=[
                    {"hospital_id": str(uuid.uuid4()), "primary_hospital": True},
                    {"hospital_id": str(uuid.uuid4()), "primary_hospital": True},
                ],
            )


class TestInspiredContent:
    def test_publishing_stamps_time(self):
        content = InspiredContentCreate(
            title="Top hospitals in Thailand", content_type="hospital_list", is_published=True
        )
        assert content.slug == "top-hospitals-in-thailand"
        assert content.published_at is not None

    def test_draft_not_stamped(self):
        content = InspiredContentCreate(title="Top hospitals in Thailand", content_type="hospital_list")
        assert content.published_at is None

    def test_publication_stamp_on_update(self):
        stamped = publication_stamp({"is_published": True}, None)
        assert isinstance(stamped["published_at"], datetime)
        already = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert publication_stamp({"is_published": True}, already) == {"is_published": True}
        assert publication_stamp({"title": "x"}, None) == {"title": "x"}

    def test_unique_positions(self):
        hid = str(uuid.uuid4())
        with pytest.raises(ValidationError, match="unique position"):
            ContentHospitalList(
                hospitals=[
                    {"hospital_id": hid, "position": 1},
                    {"hospital_id": str(uuid.uuid4()), "position": 1},
                ]
            )
