"""FastAPI server for carrier reconciliation.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import (
    health,
    batches,
    mappings,
    historical,
    balances,
)
from core import __version__
from core.config import ReconciliationSettings, get_settings
from core.errors import (
    BalanceNotFoundError,
    BatchBlockedError,
    BatchNotFoundError,
    FeedFormatError,
    PaymentNotFoundError,
    PendingMappingNotFoundError,
    ReconciliationError,
    UnknownCompanyError,
    UnmatchedTripNotFoundError,
)
from core.observability.logging import configure_logging, get_logger
from reconciliation.orchestrator import ReconciliationOrchestrator


logger = get_logger(__name__)

ERROR_STATUS = {
    BatchNotFoundError: 404,
    PendingMappingNotFoundError: 404,
    UnmatchedTripNotFoundError: 404,
    BalanceNotFoundError: 404,
    PaymentNotFoundError: 404,
    UnknownCompanyError: 422,
    FeedFormatError: 422,
    BatchBlockedError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = app.state.orchestrator.settings
    logger.info(f"Carrier Reconciliation API starting up (db: {settings.db_path})")

    yield

    logger.info("Carrier Reconciliation API shutting down")


async def reconciliation_error_handler(request: Request, exc: ReconciliationError) -> JSONResponse:
    status_code = 400
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__, "context": exc.details},
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc), "error": "ValueError"})


def create_app(
    settings: Optional[ReconciliationSettings] = None,
    orchestrator: Optional[ReconciliationOrchestrator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(level=settings.log_level_number, json_format=settings.log_json)

    app = FastAPI(
        title="Carrier Reconciliation API",
        description="Weekly carrier invoice reconciliation, driver mapping confirmation and company balances",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.orchestrator = orchestrator or ReconciliationOrchestrator(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ReconciliationError, reconciliation_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(batches.router, prefix="/batches", tags=["Batches"])
    app.include_router(mappings.router, prefix="/mappings", tags=["Mappings"])
    app.include_router(historical.router, prefix="/historical", tags=["Historical"])
    app.include_router(balances.router, prefix="/balances", tags=["Balances"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
