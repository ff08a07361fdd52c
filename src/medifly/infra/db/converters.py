"""ORM row -> JSON-ready dict converters.

Vectors are never serialised; API payloads carry ``has_embedding``
instead.
"""

from typing import Any

from sqlalchemy import inspect

from .models import Hospital

_HIDDEN_COLUMNS = frozenset({"embedding"})


def row_to_dict(row: Any, *, exclude: frozenset[str] = _HIDDEN_COLUMNS) -> dict[str, Any]:
    """Return the mapped column attributes of *row* keyed by attribute name."""
    mapper = inspect(row).mapper
    return {
        attr.key: getattr(row, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in exclude
    }


def hospital_to_dict(hospital: Hospital) -> dict[str, Any]:
    data = row_to_dict(hospital)
    data["metadata"] = data.pop("extra_metadata")
    data["has_embedding"] = hospital.embedding is not None
    return data
