"""Domain exceptions raised by services and repositories.

Each maps to one HTTP status in ``medifly.api.exceptions``.
"""

from __future__ import annotations


class NotFound(Exception):
    """Raised when a requested row does not exist."""

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} '{key}' not found")
        self.entity = entity
        self.key = key


class Conflict(Exception):
    """Raised when a write violates a uniqueness rule (e.g. a duplicate slug)."""


class InvalidRequest(Exception):
    """Raised for semantically invalid parameters that pass schema validation."""


class Unauthorized(Exception):
    """Raised when a machine caller presents a missing or wrong secret."""


class BudgetExceeded(Exception):
    """Raised when a spending cap would be exceeded."""

    def __init__(self, message: str, *, scope: str = "usage", period: str = "daily") -> None:
        super().__init__(message)
        self.scope = scope
        self.period = period


class EmbeddingUnavailable(Exception):
    """Raised when no embedding provider could produce a vector."""


class IndexingInProgress(Exception):
    """Raised when a background indexing run is already active."""
