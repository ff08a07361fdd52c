"""Embedding cache: Redis when available, an in-process TTL dict otherwise.

Keys are ``embedding:{provider}:{model}:{dimensions}:{sha256(text)}``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import timedelta

from redis.asyncio import Redis
from redis.exceptions import RedisError

from medifly.core.metrics import EMBEDDING_CACHE_LOOKUPS_TOTAL

logger = logging.getLogger(__name__)

KEY_PREFIX = "embedding"
LOCAL_MAX_ENTRIES = 1000


def cache_key(provider: str, model_name: str, dimensions: int, text: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}:{provider}:{model_name}:{dimensions}:{digest}"


class EmbeddingCache(ABC):
    """Abstract vector cache."""

    async def get(self, key: str) -> list[float] | None:
        vector = await self._get(key)
        EMBEDDING_CACHE_LOOKUPS_TOTAL.labels(
            result="miss" if vector is None else "hit"
        ).inc()
        return vector

    @abstractmethod
    async def _get(self, key: str) -> list[float] | None: ...

    @abstractmethod
    async def set(self, key: str, vector: list[float]) -> None: ...


class LocalEmbeddingCache(EmbeddingCache):
    """Process-local cache; evicts the oldest entry past ``max_entries``."""

    def __init__(
        self,
        ttl: timedelta,
        max_entries: int = LOCAL_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl.total_seconds()
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, list[float]]] = {}

    async def _get(self, key: str) -> list[float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, vector = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return vector

    async def set(self, key: str, vector: list[float]) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (self._clock() + self._ttl, vector)

    def __len__(self) -> int:
        return len(self._entries)


class RedisEmbeddingCache(EmbeddingCache):
    """Shared cache in Redis; errors degrade to a miss."""

    def __init__(self, redis: Redis, ttl: timedelta) -> None:
        self._redis = redis
        self._ttl = ttl

    async def _get(self, key: str) -> list[float] | None:
        try:
            raw = await self._redis.get(key)
        except RedisError:
            logger.warning("Embedding cache read failed for %s", key, exc_info=True)
            return None
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, vector: list[float]) -> None:
        try:
            await self._redis.set(key, json.dumps(vector), ex=self._ttl)
        except RedisError:
            logger.warning("Embedding cache write failed for %s", key, exc_info=True)


def make_cache(redis: Redis | None, ttl: timedelta) -> EmbeddingCache:
    if redis is None:
        return LocalEmbeddingCache(ttl)
    return RedisEmbeddingCache(redis, ttl)
