"""EmbeddingProvider -- semaphore-gated call to one OpenAI-compatible endpoint.

Both providers speak the OpenAI embeddings API: OpenAI natively and
Gemini through Google's OpenAI-compatible endpoint.  Retries, caching
and budgets are the caller's job (``EmbeddingService``).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

import openai

from medifly.configs.system import EmbeddingConfig, EmbeddingProviderName
from medifly.core.metrics import EMBEDDING_CALLS_IN_FLIGHT, EMBEDDING_LATENCY_SECONDS
from medifly.infra.concurrency.semaphore import ModelSemaphore
from medifly.infra.tokens import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class ProviderResponse:
    vectors: list[list[float]]
    tokens: int


class EmbeddingProvider:
    """Gates embedding API calls for one provider behind the semaphore."""

    def __init__(
        self,
        name: EmbeddingProviderName,
        config: EmbeddingConfig,
        semaphore: ModelSemaphore,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        settings = config.provider_config(name)
        self.name = name
        self.model_name = settings.model_name
        self.dimensions = config.dimensions
        self._semaphore = semaphore
        self._openai = client or openai.AsyncOpenAI(
            base_url=settings.endpoint,
            api_key=settings.api_key or "unused",
            timeout=config.request_timeout.total_seconds(),
            max_retries=0,
        )

    async def embed(self, texts: Sequence[str]) -> ProviderResponse:
        """Embed *texts* in one API call, preserving input order."""
        operation = "single" if len(texts) == 1 else "batch"
        start = time.monotonic()
        async with self._semaphore.slot():
            EMBEDDING_CALLS_IN_FLIGHT.labels(provider=self.name).inc()
            try:
                response = await self._openai.embeddings.create(
                    input=list(texts),
                    model=self.model_name,
                    dimensions=self.dimensions,
                )
            finally:
                EMBEDDING_CALLS_IN_FLIGHT.labels(provider=self.name).dec()
        EMBEDDING_LATENCY_SECONDS.labels(
            provider=self.name, operation=operation
        ).observe(time.monotonic() - start)

        data = sorted(response.data, key=lambda item: item.index)
        vectors = [self._fit_dimensions(list(item.embedding)) for item in data]
        if len(vectors) != len(texts):
            raise ValueError(
                f"{self.name} returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        usage = getattr(response, "usage", None)
        tokens = (
            usage.prompt_tokens
            if usage is not None and usage.prompt_tokens
            else sum(estimate_tokens(t) for t in texts)
        )
        logger.debug(
            "Embedded %d text(s) with %s/%s (%d tokens)",
            len(texts),
            self.name,
            self.model_name,
            tokens,
        )
        return ProviderResponse(vectors=vectors, tokens=tokens)

    def _fit_dimensions(self, vector: list[float]) -> list[float]:
        """Match *vector* to the column size.

        Gemini's 768-dim vectors are doubled to fill a 1536-dim column;
        longer vectors are truncated.
        """
        size = len(vector)
        if size == self.dimensions:
            return vector
        if size and size * 2 == self.dimensions:
            logger.debug("Padded %s embedding from %d to %d dimensions", self.name, size, self.dimensions)
            return vector + vector
        if size > self.dimensions:
            return vector[: self.dimensions]
        raise ValueError(
            f"{self.name} returned {size} dimensions, expected {self.dimensions}"
        )

    async def aclose(self) -> None:
        await self._openai.close()
