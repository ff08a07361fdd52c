"""Tests for embedding cache keys and the process-local cache."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from medifly.core.embedding.cache import (
    LocalEmbeddingCache,
    RedisEmbeddingCache,
    cache_key,
    make_cache,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCacheKey:
    def test_key_layout(self):
        key = cache_key("openai", "text-embedding-3-small", 1536, "hello")
        prefix, provider, model, dims, digest = key.split(":")
        assert (prefix, provider, model, dims) == (
            "embedding",
            "openai",
            "text-embedding-3-small",
            "1536",
        )
        assert len(digest) == 64

    def test_key_depends_on_every_part(self):
        base = cache_key("openai", "m", 1536, "hello")
        assert base != cache_key("gemini", "m", 1536, "hello")
        assert base != cache_key("openai", "m", 768, "hello")
        assert base != cache_key("openai", "m", 1536, "hello!")


class TestLocalEmbeddingCache:
    @pytest.mark.asyncio
    async def test_hit_then_expiry(self):
        clock = _Clock()
        cache = LocalEmbeddingCache(timedelta(seconds=10), clock=clock)
        await cache.set("k", [1.0, 2.0])
        assert await cache.get("k") == [1.0, 2.0]
        clock.now = 10.0
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_evicts_oldest_entry(self):
        cache = LocalEmbeddingCache(timedelta(hours=1), max_entries=2, clock=_Clock())
        await cache.set("a", [1.0])
        await cache.set("b", [2.0])
        await cache.set("c", [3.0])
        assert len(cache) == 2
        assert await cache.get("a") is None
        assert await cache.get("c") == [3.0]

    @pytest.mark.asyncio
    async def test_rewrite_refreshes_position(self):
        cache = LocalEmbeddingCache(timedelta(hours=1), max_entries=2, clock=_Clock())
        await cache.set("a", [1.0])
        await cache.set("b", [2.0])
        await cache.set("a", [1.5])
        await cache.set("c", [3.0])
        assert await cache.get("a") == [1.5]
        assert await cache.get("b") is None


class TestRedisEmbeddingCache:
    @pytest.mark.asyncio
    async def test_round_trip_through_json(self):
        redis = AsyncMock()
        redis.get.return_value = b"[0.5, 0.25]"
        cache = RedisEmbeddingCache(redis, timedelta(minutes=5))
        await cache.set("k", [0.5, 0.25])
        redis.set.assert_awaited_once_with("k", "[0.5, 0.25]", ex=timedelta(minutes=5))
        assert await cache.get("k") == [0.5, 0.25]

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_miss(self):
        redis = AsyncMock()
        redis.get.side_effect = RedisConnectionError("down")
        redis.set.side_effect = RedisConnectionError("down")
        cache = RedisEmbeddingCache(redis, timedelta(minutes=5))
        await cache.set("k", [1.0])
        assert await cache.get("k") is None

    def test_make_cache_picks_backend(self):
        assert isinstance(make_cache(None, timedelta(hours=1)), LocalEmbeddingCache)
        assert isinstance(make_cache(AsyncMock(), timedelta(hours=1)), RedisEmbeddingCache)
