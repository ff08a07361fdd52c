"""Tests for the hospital embedding text builder."""

from conftest import make_hospital

from medifly.core.indexing.text import (
    build_hospital_text,
    hospital_text_parts,
    included_fields,
)

CURRENT_YEAR = 2024


class TestHospitalTextParts:
    def test_minimal_hospital(self):
        hospital = make_hospital(name="Clinic One", type="GENERAL", city="Phuket", state=None)
        assert hospital_text_parts(hospital, CURRENT_YEAR) == [
            "Clinic One",
            "general hospital",
            "located in Phuket",
        ]

    def test_type_is_humanised(self):
        hospital = make_hospital(type="URGENT_CARE")
        assert "urgent care hospital" in hospital_text_parts(hospital, CURRENT_YEAR)

    def test_bed_count_tiers(self):
        def beds(n):
            return hospital_text_parts(make_hospital(bed_count=n), CURRENT_YEAR)[3]

        assert beds(600) == "large hospital with 600 beds"
        assert beds(300) == "medium-sized hospital with 300 beds"
        assert beds(200) == "200-bed facility"

    def test_established_tiers(self):
        def founded(year):
            return hospital_text_parts(make_hospital(established=year), CURRENT_YEAR)[3]

        assert founded(1900) == "established in 1900, over 120 years of medical service"
        assert founded(1994) == "established in 1994, 30+ years of medical care"
        assert founded(2014) == "established in 2014"

    def test_emergency_and_trauma(self):
        def emergency(**kw):
            return hospital_text_parts(make_hospital(**kw), CURRENT_YEAR)[3:]

        assert emergency(emergency_services=True, trauma_level="I") == [
            "provides Level I trauma center and emergency services"
        ]
        assert emergency(emergency_services=True) == ["provides emergency medical services"]
        assert emergency(trauma_level="II") == ["Level II trauma center"]
        assert emergency() == []

    def test_metadata_lists_are_capped(self):
        hospital = make_hospital(
            extra_metadata={
                "specialties": [f"S{i}" for i in range(10)],
                "programs": [f"P{i}" for i in range(10)],
                "accreditations": ["JCI"],
                "languages": ["Thai"],
                "medical_school": "Mahidol University",
                "research_programs": ["Oncology"],
            }
        )
        parts = hospital_text_parts(hospital, CURRENT_YEAR)
        assert "medical specialties include S0, S1, S2, S3, S4, S5" in parts
        assert "specialized programs: P0, P1, P2, P3" in parts
        assert "accredited by JCI" in parts
        assert "affiliated with Mahidol University" in parts
        assert "research focus: Oncology" in parts
        # A single language is not worth mentioning.
        assert not any(p.startswith("multilingual") for p in parts)

    def test_multiple_languages(self):
        hospital = make_hospital(extra_metadata={"languages": ["Thai", "English"]})
        assert "multilingual services in Thai, English" in hospital_text_parts(
            hospital, CURRENT_YEAR
        )

    def test_description_is_cut_and_website_flagged(self):
        hospital = make_hospital(description="  " + "x" * 300 + "  ", website="https://h.example")
        parts = hospital_text_parts(hospital, CURRENT_YEAR)
        assert parts[-2] == "x" * 200 + "..."
        assert parts[-1] == "online services available"


class TestBuildHospitalText:
    def test_parts_joined_with_period(self):
        hospital = make_hospital(name="A Hospital", city="Chiang Mai", state="CM")
        assert (
            build_hospital_text(hospital, CURRENT_YEAR)
            == "A Hospital. general hospital. located in Chiang Mai, CM"
        )

    def test_overlong_text_keeps_leading_parts(self):
        hospital = make_hospital(
            bed_count=600,
            established=1900,
            emergency_services=True,
            description="d" * 200,
            extra_metadata={"specialties": ["Cardiology"]},
        )
        full = build_hospital_text(hospital, CURRENT_YEAR)
        short = build_hospital_text(hospital, CURRENT_YEAR, max_length=len(full) - 1)
        assert short == ". ".join(hospital_text_parts(hospital, CURRENT_YEAR)[:6])

    def test_falls_back_to_four_parts(self):
        hospital = make_hospital(bed_count=600, established=1900, emergency_services=True)
        text = build_hospital_text(hospital, CURRENT_YEAR, max_length=60)
        assert text == ". ".join(hospital_text_parts(hospital, CURRENT_YEAR)[:4])


class TestIncludedFields:
    def test_lists_populated_fields_in_order(self):
        hospital = make_hospital(
            bed_count=100, description="General care", extra_metadata={"a": 1}
        )
        assert included_fields(hospital) == [
            "name",
            "type",
            "city",
            "state",
            "bed_count",
            "description",
            "metadata",
        ]
