"""Health-concern keywords and the specialties they point to."""

HEALTH_CONCERN_SPECIALTIES: dict[str, tuple[str, ...]] = {
    "heart": ("Cardiology", "Emergency Medicine"),
    "chest pain": ("Cardiology", "Emergency Medicine", "Internal Medicine"),
    "brain": ("Neurology", "Emergency Medicine"),
    "stroke": ("Neurology", "Rehabilitation Medicine", "Physical Medicine"),
    "rehabilitation": ("Rehabilitation Medicine", "Physical Therapy", "Occupational Therapy"),
    "neuro rehab": ("Neurology", "Rehabilitation Medicine"),
    "physical therapy": ("Rehabilitation Medicine", "Orthopedics"),
    "headache": ("Neurology", "Internal Medicine"),
    "bone": ("Orthopedics", "Emergency Medicine"),
    "joint": ("Orthopedics", "Rheumatology"),
    "cancer": ("Oncology",),
    "stomach": ("Gastroenterology", "Internal Medicine"),
    "skin": ("Dermatology",),
    "eye": ("Ophthalmology",),
    "ear": ("ENT",),
    "mental": ("Psychiatry", "Psychology"),
    "diabetes": ("Endocrinology", "Internal Medicine"),
    "kidney": ("Nephrology", "Internal Medicine"),
    "lung": ("Pulmonology", "Internal Medicine"),
}

DOCTOR_KEYWORDS = ("doctor", "specialist")


def relevant_specialties(query: str) -> list[str]:
    """Specialties for every concern keyword contained in *query*.

    Order follows the table; duplicates are dropped.
    """
    lowered = query.lower()
    found: list[str] = []
    for keyword, specialties in HEALTH_CONCERN_SPECIALTIES.items():
        if keyword in lowered:
            found.extend(s for s in specialties if s not in found)
    return found


def wants_doctors(query: str, specialties: list[str]) -> bool:
    lowered = query.lower()
    return bool(specialties) or any(k in lowered for k in DOCTOR_KEYWORDS)
