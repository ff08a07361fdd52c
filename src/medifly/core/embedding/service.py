"""EmbeddingService -- cached, budgeted, retried embeddings with fallback.

Public API
----------
``embed(text)``
    Normalise and truncate *text*, serve from cache when possible,
    otherwise check the budget and call the primary provider (with
    retries), then the fallback provider when enabled.

``embed_many(texts)``
    Batch variant.  One API call per chunk of ``batch_size``; a failed
    chunk is retried item by item so one bad input cannot sink the
    rest.

``build_embedding_service`` is a lifespan dependency that wires the
providers, cache and cost monitor and exposes the service on
``app.state``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from redis.asyncio import Redis

from medifly.configs.config import AppConfig, get_app_config
from medifly.configs.system import EmbeddingConfig
from medifly.core.errors import BudgetExceeded, EmbeddingUnavailable, InvalidRequest
from medifly.core.metrics import EMBEDDING_FAILURES_TOTAL
from medifly.infra.concurrency.base import AcquireTimeout
from medifly.infra.concurrency.semaphore import ModelSemaphore, build_semaphore
from medifly.infra.lifespan import get_app
from medifly.infra.redis import build_redis
from medifly.infra.telemetry import (
    ATTR_EMBEDDING_BATCH_SIZE,
    ATTR_EMBEDDING_CACHE_HIT,
    ATTR_EMBEDDING_MODEL,
    ATTR_EMBEDDING_PROVIDER,
    ATTR_EMBEDDING_TEXT_LEN,
    SPAN_EMBEDDING_BATCH,
    SPAN_EMBEDDING_EMBED,
    tracer,
)
from medifly.infra.tokens import truncate_at_word

from .cache import EmbeddingCache, cache_key, make_cache
from .costs import EmbeddingCostMonitor, estimate_cost, estimate_text_cost
from .provider import EmbeddingProvider
from .retry import with_retries

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    vector: list[float]
    provider: str
    model: str
    dimensions: int
    tokens: int = 0
    cost: float = 0.0
    cached: bool = False


@dataclass
class BatchEmbeddingResult:
    results: list[EmbeddingResult | None] = field(default_factory=list)
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0


def prepare_text(text: str, max_chars: int) -> str:
    """Collapse whitespace and cut at a word boundary."""
    return truncate_at_word(" ".join(text.split()), max_chars)


class EmbeddingService:
    """Embeds text through the configured providers."""

    def __init__(
        self,
        config: EmbeddingConfig,
        primary: EmbeddingProvider,
        cache: EmbeddingCache,
        monitor: EmbeddingCostMonitor,
        fallback: EmbeddingProvider | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_concurrency: int | None = None,
    ) -> None:
        self._config = config
        self._max_concurrency = max_concurrency
        self._primary = primary
        self._fallback = fallback
        self._cache = cache
        self.monitor = monitor
        self._sleep = sleep

    @property
    def providers(self) -> list[EmbeddingProvider]:
        return [p for p in (self._primary, self._fallback) if p is not None]

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    # ------------------------------------------------------------------
    # Single text
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> EmbeddingResult:
        """Return the embedding for *text*.

        Raises:
            InvalidRequest: *text* is blank.
            BudgetExceeded: the cost monitor refused the call.
            AcquireTimeout: no concurrency slot in time.
            EmbeddingUnavailable: every provider failed.
        """
        prepared = prepare_text(text, self._config.max_input_chars)
        if not prepared:
            raise InvalidRequest("Cannot embed empty text")

        errors: list[str] = []
        with tracer.start_as_current_span(SPAN_EMBEDDING_EMBED) as span:
            span.set_attribute(ATTR_EMBEDDING_TEXT_LEN, len(prepared))
            for provider in self.providers:
                span.set_attribute(ATTR_EMBEDDING_PROVIDER, provider.name)
                span.set_attribute(ATTR_EMBEDDING_MODEL, provider.model_name)
                key = cache_key(
                    provider.name, provider.model_name, provider.dimensions, prepared
                )
                cached = await self._cache.get(key)
                if cached is not None:
                    span.set_attribute(ATTR_EMBEDDING_CACHE_HIT, True)
                    return EmbeddingResult(
                        vector=cached,
                        provider=provider.name,
                        model=provider.model_name,
                        dimensions=len(cached),
                        cached=True,
                    )
                _, estimated = estimate_text_cost(provider.model_name, prepared)
                self.monitor.check_budget(estimated)
                try:
                    response = await with_retries(
                        lambda p=provider: p.embed([prepared]),
                        provider=provider.name,
                        config=self._config,
                        sleep=self._sleep,
                    )
                except (AcquireTimeout, BudgetExceeded):
                    raise
                except Exception as exc:
                    EMBEDDING_FAILURES_TOTAL.labels(provider=provider.name).inc()
                    logger.warning("Embedding with %s failed: %s", provider.name, exc)
                    errors.append(f"{provider.name}: {exc}")
                    continue
                cost = estimate_cost(provider.model_name, response.tokens)
                self.monitor.record(cost, provider.model_name)
                vector = response.vectors[0]
                await self._cache.set(key, vector)
                span.set_attribute(ATTR_EMBEDDING_CACHE_HIT, False)
                return EmbeddingResult(
                    vector=vector,
                    provider=provider.name,
                    model=provider.model_name,
                    dimensions=len(vector),
                    tokens=response.tokens,
                    cost=cost,
                )
        raise EmbeddingUnavailable(
            "All embedding providers failed: " + "; ".join(errors)
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def embed_many(self, texts: Sequence[str]) -> BatchEmbeddingResult:
        """Embed *texts*; the result list is aligned with the input."""
        batch = BatchEmbeddingResult(results=[None] * len(texts))
        size = max(self._config.batch_size, 1)
        delay = self._config.batch_delay.total_seconds()
        chunks = [range(i, min(i + size, len(texts))) for i in range(0, len(texts), size)]
        with tracer.start_as_current_span(SPAN_EMBEDDING_BATCH) as span:
            span.set_attribute(ATTR_EMBEDDING_BATCH_SIZE, len(texts))
            for n, chunk in enumerate(chunks):
                try:
                    results = await self._embed_chunk([texts[i] for i in chunk])
                except (AcquireTimeout, BudgetExceeded):
                    raise
                except Exception as exc:
                    logger.warning(
                        "Batch of %d failed (%s), embedding items individually",
                        len(chunk),
                        exc,
                    )
                    results = None
                if results is None:
                    for i in chunk:
                        try:
                            batch.results[i] = await self.embed(texts[i])
                        except Exception as exc:
                            batch.errors.append({"index": i, "error": str(exc)})
                else:
                    for i, result in zip(chunk, results):
                        batch.results[i] = result
                if n < len(chunks) - 1 and delay > 0:
                    await self._sleep(delay)

        for result in batch.results:
            if result is None:
                batch.failed += 1
            else:
                batch.successful += 1
                batch.total_tokens += result.tokens
                batch.total_cost += result.cost
        return batch

    async def _embed_chunk(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        """One API call on the primary provider for the uncached texts."""
        provider = self._primary
        prepared = [prepare_text(t, self._config.max_input_chars) for t in texts]
        if not all(prepared):
            raise InvalidRequest("Cannot embed empty text")
        keys = [
            cache_key(provider.name, provider.model_name, provider.dimensions, p)
            for p in prepared
        ]
        results: list[EmbeddingResult | None] = []
        for key in keys:
            cached = await self._cache.get(key)
            results.append(
                None
                if cached is None
                else EmbeddingResult(
                    vector=cached,
                    provider=provider.name,
                    model=provider.model_name,
                    dimensions=len(cached),
                    cached=True,
                )
            )
        pending = [i for i, r in enumerate(results) if r is None]
        if pending:
            estimated = sum(
                estimate_text_cost(provider.model_name, prepared[i])[1] for i in pending
            )
            self.monitor.check_budget(estimated)
            response = await with_retries(
                lambda: provider.embed([prepared[i] for i in pending]),
                provider=provider.name,
                config=self._config,
                sleep=self._sleep,
            )
            cost = estimate_cost(provider.model_name, response.tokens)
            self.monitor.record(cost, provider.model_name)
            per_item_tokens = response.tokens // len(pending)
            per_item_cost = cost / len(pending)
            for i, vector in zip(pending, response.vectors):
                await self._cache.set(keys[i], vector)
                results[i] = EmbeddingResult(
                    vector=vector,
                    provider=provider.name,
                    model=provider.model_name,
                    dimensions=len(vector),
                    tokens=per_item_tokens,
                    cost=per_item_cost,
                )
        return [r for r in results if r is not None]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        errors, warnings = self._config.validate_setup(self._max_concurrency)
        return {
            "provider": self._primary.name,
            "model": self._primary.model_name,
            "dimensions": self._config.dimensions,
            "fallback_provider": self._fallback.name if self._fallback else None,
            "budget": self.monitor.status(),
            "configuration": {"errors": errors, "warnings": warnings},
        }

    async def aclose(self) -> None:
        for provider in self.providers:
            await provider.aclose()


def create_embedding_service(
    config: EmbeddingConfig,
    semaphore: ModelSemaphore,
    redis: Redis | None = None,
    max_concurrency: int | None = None,
) -> EmbeddingService:
    """Wire providers, cache and cost monitor from *config*."""
    primary = EmbeddingProvider(config.provider, config, semaphore)
    fallback = None
    fallback_name = config.fallback_provider
    if fallback_name is not None:
        if config.provider_config(fallback_name).has_valid_key:
            fallback = EmbeddingProvider(fallback_name, config, semaphore)
        else:
            logger.info(
                "Embedding fallback '%s' has no API key, running without fallback",
                fallback_name,
            )
    return EmbeddingService(
        config=config,
        primary=primary,
        fallback=fallback,
        cache=make_cache(redis, config.cache_ttl),
        monitor=EmbeddingCostMonitor.from_config(config),
        max_concurrency=max_concurrency,
    )


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_embedding_service(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    redis: Annotated[Redis | None, Depends(build_redis)],
    _sem: Annotated[None, Depends(build_semaphore)],
) -> AsyncGenerator[None, None]:
    """Create the ``EmbeddingService`` and expose it on ``app.state``."""
    max_concurrency = config.concurrency.max_concurrency
    errors, warnings = config.embedding.validate_setup(max_concurrency)
    for message in errors:
        logger.error("Embedding configuration: %s", message)
    for message in warnings:
        logger.warning("Embedding configuration: %s", message)

    service = create_embedding_service(
        config.embedding, app.state.semaphore, redis, max_concurrency
    )
    logger.info(
        "Embedding service: provider=%s model=%s fallback=%s cache=%s",
        service.providers[0].name,
        service.providers[0].model_name,
        service.providers[1].name if len(service.providers) > 1 else None,
        "redis" if redis is not None else "local",
    )
    app.state.embedding_service = service
    yield
    await service.aclose()


def get_embedding_service(request: Request) -> EmbeddingService:
    """Return the ``EmbeddingService`` from ``app.state``."""
    return request.app.state.embedding_service
