"""FastAPI application entry point."""

import logging
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medifly.api.catalog import router as catalog_router
from medifly.api.chat import router as chat_router
from medifly.api.exceptions import install_exception_handlers
from medifly.api.hospitals import router as hospitals_router
from medifly.api.indexing import router as indexing_router
from medifly.api.inspired import router as inspired_router
from medifly.api.search import router as search_router
from medifly.api.usage import router as usage_router
from medifly.configs.config import get_app_config
from medifly.core.embedding.service import build_embedding_service
from medifly.core.indexing.cron import build_indexing_cron
from medifly.core.indexing.jobs import build_indexing
from medifly.core.metrics import setup_metrics
from medifly.infra.concurrency import build_semaphore
from medifly.infra.db_engine import build_db
from medifly.infra.lifespan import inject
from medifly.infra.logging import setup_logging
from medifly.infra.redis import build_redis
from medifly.infra.telemetry import build_telemetry, init_telemetry

logger = logging.getLogger(__name__)


@inject
async def lifespan(
    app: FastAPI,
    _db: Annotated[None, Depends(build_db)],
    _redis: Annotated[None, Depends(build_redis)],
    _telemetry: Annotated[None, Depends(build_telemetry)],
    _sem: Annotated[None, Depends(build_semaphore)],
    _embedding: Annotated[None, Depends(build_embedding_service)],
    _indexing: Annotated[None, Depends(build_indexing)],
    _cron: Annotated[None, Depends(build_indexing_cron)],
):
    """Application lifespan: every ``build_*`` dependency owns setup and teardown."""
    logger.info("MediFly started.")
    yield
    logger.info("MediFly shutting down.")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_app_config()
    setup_logging(config.logging)

    app = FastAPI(
        title="MediFly",
        description="Medical-tourism catalog, semantic hospital search and AI concierge",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)
    setup_metrics(app, config.tracing)
    init_telemetry(app, config.tracing)

    # Literal /hospitals/... paths must precede /hospitals/{hospital_id}.
    app.include_router(indexing_router)
    app.include_router(hospitals_router)
    app.include_router(catalog_router)
    app.include_router(inspired_router)
    app.include_router(search_router)
    app.include_router(usage_router)
    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
