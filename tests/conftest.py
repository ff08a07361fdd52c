"""Shared fakes for unit tests that must not touch Postgres or a provider."""

from __future__ import annotations

import uuid
from types import SimpleNamespace
from typing import Any

import pytest

from medifly.core.embedding.service import EmbeddingResult


def make_hospital(**overrides: Any) -> SimpleNamespace:
    """A ``Hospital``-shaped object with every attribute the services read."""
    values: dict[str, Any] = dict(
        id=uuid.uuid4(),
        name="Bumrungrad International",
        slug="bumrungrad-international",
        type="GENERAL",
        city="Bangkok",
        state="Bangkok",
        country="TH",
        address="33 Sukhumvit 3",
        phone=None,
        website=None,
        email=None,
        bed_count=None,
        established=None,
        emergency_services=False,
        trauma_level=None,
        description=None,
        extra_metadata=None,
        rating=4.5,
        review_count=120,
        is_active=True,
        is_verified=True,
        is_featured=False,
        embedding=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeEmbedder:
    """Returns a fixed vector; fails for texts containing a marker."""

    def __init__(self, fail_on: str | None = None, error: Exception | None = None) -> None:
        self.fail_on = fail_on
        self.error = error or RuntimeError("provider down")
        self.texts: list[str] = []

    async def embed(self, text: str) -> EmbeddingResult:
        self.texts.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise self.error
        return EmbeddingResult(
            vector=[0.1, 0.2, 0.3],
            provider="openai",
            model="text-embedding-3-small",
            dimensions=3,
            tokens=10,
        )


class FakeIndexRepository:
    """In-memory stand-in for ``HospitalRepository``'s indexing methods."""

    def __init__(self, hospitals: list[SimpleNamespace]) -> None:
        self.hospitals = {h.id: h for h in hospitals}
        self.saved: dict[uuid.UUID, tuple[list[float], dict[str, Any]]] = {}
        self.listed_with_force: list[bool] = []

    async def list_for_indexing(self, *, force: bool = False) -> list[SimpleNamespace]:
        self.listed_with_force.append(force)
        return [
            h
            for h in self.hospitals.values()
            if h.is_active and (force or h.embedding is None)
        ]

    async def get_active_by_ids(self, ids) -> list[SimpleNamespace]:
        return [
            self.hospitals[i] for i in ids if i in self.hospitals and self.hospitals[i].is_active
        ]

    async def save_embedding(
        self, hospital_id: uuid.UUID, vector: list[float], metadata: dict[str, Any]
    ) -> None:
        self.saved[hospital_id] = (vector, metadata)
        self.hospitals[hospital_id].embedding = vector

    async def embedding_stats(self) -> dict[str, Any]:
        active = [h for h in self.hospitals.values() if h.is_active]
        return {
            "total": len(active),
            "with_embeddings": sum(1 for h in active if h.embedding is not None),
            "last_updated": None,
        }

    async def reset_embeddings(self) -> int:
        count = 0
        for h in self.hospitals.values():
            if h.embedding is not None:
                h.embedding = None
                count += 1
        return count


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def recording_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep
