"""
Regulatory Truth Service - Main Application
===========================================

FastAPI application exposing rule selection, review, arbitration,
releases and the invariant verdict.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.regulatory_truth.errors import (
    AppliesWhenError,
    ConflictResolutionError,
    CycleDetectedError,
    HumanApprovalRequiredError,
    InvalidTransitionError,
    NotFoundError,
    PipelineError,
    PublicationBlockedError,
)
from services.regulatory_truth.routes import conflicts, invariants, releases, rules
from shared.config import settings
from shared.database.postgres import PostgresClient
from shared.logging import get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="regulatory-truth",
)

logger = get_logger(__name__)


# Most specific first
ERROR_STATUS_CODES: list[tuple[type[PipelineError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (HumanApprovalRequiredError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (PublicationBlockedError, status.HTTP_409_CONFLICT),
    (CycleDetectedError, status.HTTP_409_CONFLICT),
    (ConflictResolutionError, status.HTTP_409_CONFLICT),
    (AppliesWhenError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def status_code_for(exc: PipelineError) -> int:
    """HTTP status for a pipeline error; anything unlisted is a bad request."""
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "regulatory_truth_starting",
        environment=settings.environment.value,
        port=settings.port,
    )

    # Startup
    try:
        await PostgresClient.create_all()
        logger.info("database_connected")
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("regulatory_truth_shutting_down")
    await PostgresClient.close()


# Create FastAPI application
app = FastAPI(
    title="Regulatory Truth Service",
    description="Evidence-backed regulatory rules with fail-closed review and releases",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its database.
    """
    components: dict[str, dict[str, Any]] = {"database": await PostgresClient.health_check()}
    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="regulatory-truth",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Regulatory Truth Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    rules.router,
    prefix="/api/v1/rules",
    tags=["Rules"],
)

app.include_router(
    conflicts.router,
    prefix="/api/v1/conflicts",
    tags=["Conflicts"],
)

app.include_router(
    releases.router,
    prefix="/api/v1/releases",
    tags=["Releases"],
)

app.include_router(
    invariants.router,
    prefix="/api/v1/invariants",
    tags=["Invariants"],
)


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Map typed pipeline errors to HTTP responses."""
    status_code = status_code_for(exc)
    logger.warning(
        "pipeline_error",
        status_code=status_code,
        error_code=exc.code,
        error=exc.message,
        path=request.url.path,
    )
    body = ErrorResponse(status_code=status_code, **exc.to_dict())
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    body = ErrorResponse(status_code=exc.status_code, error=str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    body = ErrorResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, error="Internal server error")
    return JSONResponse(status_code=body.status_code, content=body.model_dump(mode="json"))


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.regulatory_truth.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
