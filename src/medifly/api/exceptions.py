"""Global exception handlers: domain exceptions -> JSON errors.

Installed by the app factory; Starlette only accepts exception handlers
before the application starts.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from medifly.core.errors import (
    BudgetExceeded,
    Conflict,
    EmbeddingUnavailable,
    IndexingInProgress,
    InvalidRequest,
    NotFound,
    Unauthorized,
)
from medifly.infra.concurrency.base import AcquireTimeout

CODE_NOT_FOUND = "NOT_FOUND"
CODE_CONFLICT = "CONFLICT"
CODE_INVALID_REQUEST = "INVALID_REQUEST"
CODE_UNAUTHORIZED = "UNAUTHORIZED"
CODE_BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
CODE_EMBEDDING_UNAVAILABLE = "EMBEDDING_UNAVAILABLE"
CODE_ACQUIRE_TIMEOUT = "ACQUIRE_TIMEOUT"
CODE_INDEXING_IN_PROGRESS = "INDEXING_IN_PROGRESS"

# exception type -> (status, code)
_ERROR_MAP: dict[type[Exception], tuple[int, str]] = {
    NotFound: (404, CODE_NOT_FOUND),
    Conflict: (409, CODE_CONFLICT),
    InvalidRequest: (400, CODE_INVALID_REQUEST),
    Unauthorized: (401, CODE_UNAUTHORIZED),
    BudgetExceeded: (429, CODE_BUDGET_EXCEEDED),
    EmbeddingUnavailable: (503, CODE_EMBEDDING_UNAVAILABLE),
    AcquireTimeout: (503, CODE_ACQUIRE_TIMEOUT),
    IndexingInProgress: (409, CODE_INDEXING_IN_PROGRESS),
}


def error_response(status_code: int, detail: str, code: str, **extra: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "code": code, **extra},
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Register one JSON handler per domain exception on ``app``."""

    async def handle_domain_error(request: Request, exc: Exception) -> JSONResponse:
        status_code, code = next(
            _ERROR_MAP[cls] for cls in type(exc).__mro__ if cls in _ERROR_MAP
        )
        return error_response(status_code, str(exc), code)

    for exc_type in _ERROR_MAP:
        if exc_type in (BudgetExceeded, Unauthorized):
            continue
        app.add_exception_handler(exc_type, handle_domain_error)

    @app.exception_handler(BudgetExceeded)
    async def handle_budget_exceeded(request: Request, exc: BudgetExceeded) -> JSONResponse:
        return error_response(
            429, str(exc), CODE_BUDGET_EXCEEDED, scope=exc.scope, period=exc.period
        )

    @app.exception_handler(Unauthorized)
    async def handle_unauthorized(request: Request, exc: Unauthorized) -> JSONResponse:
        response = error_response(401, str(exc), CODE_UNAUTHORIZED)
        response.headers["WWW-Authenticate"] = "Bearer"
        return response
