"""Embedding infrastructure -- providers, retries, cost monitor, cache, service."""

from .costs import MODEL_COSTS, EmbeddingCostMonitor, estimate_cost
from .provider import EmbeddingProvider
from .service import (
    BatchEmbeddingResult,
    EmbeddingResult,
    EmbeddingService,
    build_embedding_service,
    get_embedding_service,
)

__all__ = [
    "BatchEmbeddingResult",
    "build_embedding_service",
    "EmbeddingCostMonitor",
    "EmbeddingProvider",
    "EmbeddingResult",
    "EmbeddingService",
    "estimate_cost",
    "get_embedding_service",
    "MODEL_COSTS",
]
