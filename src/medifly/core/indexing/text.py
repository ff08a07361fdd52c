"""Build the descriptive text embedded for a hospital.

The most search-relevant facts come first (name, type, location) so
that shortening for long inputs drops the least useful parts.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

MAX_TEXT_LENGTH = 8000
DESCRIPTION_LIMIT = 200
MAX_SPECIALTIES = 6
MAX_PROGRAMS = 4


class HospitalLike(Protocol):
    name: str
    type: str | None
    city: str | None
    state: str | None
    bed_count: int | None
    established: int | None
    emergency_services: bool | None
    trauma_level: str | None
    description: str | None
    website: str | None
    extra_metadata: dict[str, Any] | None


def _current_year() -> int:
    return datetime.now(timezone.utc).year


def _bed_part(beds: int) -> str:
    if beds > 500:
        return f"large hospital with {beds} beds"
    if beds > 200:
        return f"medium-sized hospital with {beds} beds"
    return f"{beds}-bed facility"


def _established_part(year: int, current_year: int) -> str:
    age = current_year - year
    if age > 100:
        return f"established in {year}, over {age // 10 * 10} years of medical service"
    if age > 25:
        return f"established in {year}, {age // 5 * 5}+ years of medical care"
    return f"established in {year}"


def _emergency_part(emergency: bool, trauma_level: str | None) -> str | None:
    if emergency and trauma_level:
        return f"provides Level {trauma_level} trauma center and emergency services"
    if emergency:
        return "provides emergency medical services"
    if trauma_level:
        return f"Level {trauma_level} trauma center"
    return None


def _str_list(value: Any) -> list[str]:
    return [str(v) for v in value] if isinstance(value, list) else []


def _metadata_parts(metadata: dict[str, Any]) -> list[str]:
    parts: list[str] = []
    if specialties := _str_list(metadata.get("specialties")):
        parts.append(
            f"medical specialties include {', '.join(specialties[:MAX_SPECIALTIES])}"
        )
    if programs := _str_list(metadata.get("programs")):
        parts.append(f"specialized programs: {', '.join(programs[:MAX_PROGRAMS])}")
    if accreditations := _str_list(metadata.get("accreditations")):
        parts.append(f"accredited by {', '.join(accreditations)}")
    languages = _str_list(metadata.get("languages"))
    if len(languages) > 1:
        parts.append(f"multilingual services in {', '.join(languages)}")
    if school := metadata.get("medical_school"):
        parts.append(f"affiliated with {school}")
    if research := _str_list(metadata.get("research_programs")):
        parts.append(f"research focus: {', '.join(research)}")
    return parts


def hospital_text_parts(
    hospital: HospitalLike, current_year: int | None = None
) -> list[str]:
    year = current_year if current_year is not None else _current_year()
    parts: list[str] = []
    if hospital.name:
        parts.append(hospital.name)
    if hospital.type:
        parts.append(f"{hospital.type.replace('_', ' ').lower()} hospital")
    if hospital.city and hospital.state:
        parts.append(f"located in {hospital.city}, {hospital.state}")
    elif hospital.city:
        parts.append(f"located in {hospital.city}")
    if hospital.bed_count:
        parts.append(_bed_part(hospital.bed_count))
    if hospital.established:
        parts.append(_established_part(hospital.established, year))
    if emergency := _emergency_part(bool(hospital.emergency_services), hospital.trauma_level):
        parts.append(emergency)
    if hospital.extra_metadata:
        parts.extend(_metadata_parts(hospital.extra_metadata))
    if hospital.description:
        description = hospital.description.strip()
        if len(description) > DESCRIPTION_LIMIT:
            description = description[:DESCRIPTION_LIMIT] + "..."
        parts.append(description)
    if hospital.website:
        parts.append("online services available")
    return parts


def build_hospital_text(
    hospital: HospitalLike,
    current_year: int | None = None,
    max_length: int = MAX_TEXT_LENGTH,
) -> str:
    """Return the text to embed for *hospital*.

    Over-long text keeps the first six parts, then the first four.
    """
    parts = hospital_text_parts(hospital, current_year)
    text = ". ".join(parts)
    if len(text) <= max_length:
        return text
    text = ". ".join(parts[:6])
    if len(text) > max_length:
        text = ". ".join(parts[:4])
    return text


_FIELD_ORDER = (
    "name",
    "type",
    "city",
    "state",
    "bed_count",
    "established",
    "emergency_services",
    "trauma_level",
    "description",
)


def included_fields(hospital: HospitalLike) -> list[str]:
    """Source fields that contributed to the embedded text."""
    fields = [f for f in _FIELD_ORDER if getattr(hospital, f, None)]
    if hospital.extra_metadata:
        fields.append("metadata")
    return fields
