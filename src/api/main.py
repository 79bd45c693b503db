"""Terraform Dashboard API - Main FastAPI Application.

This module provides the FastAPI application for the dashboard backend.
It includes:
- CORS and API key middleware
- API versioning (/api/v1)
- Health check and Prometheus metrics endpoints
- Template, Job, Audit and Notification endpoints
- AppContext initialization on startup and graceful shutdown

Usage:
    # Run with uvicorn
    uvicorn src.api.main:app --reload

    # Or build an app around an existing context (tests)
    app = create_app(AppContext(settings))
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import structlog
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src import __version__
from src.api.middleware import RequestMetricsMiddleware
from src.api.models import ErrorResponse, ValidationErrorDetail, ValidationErrorResponse
from src.api.routes.audit import router as audit_router
from src.api.routes.health import router as health_router, set_server_start_time
from src.api.routes.jobs import router as jobs_router
from src.api.routes.notifications import router as notifications_router
from src.api.routes.templates import router as templates_router
from src.config.settings import Settings, get_settings
from src.core.container import AppContext
from src.core.exceptions import (
    ConfigurationError,
    ConflictError,
    DashboardError,
    InfrastructureError,
    JobNotFoundError,
    PreconditionError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)
from src.monitoring.metrics import get_metrics_app

logger = structlog.get_logger(__name__)

# API metadata for OpenAPI documentation
API_TITLE = "Terraform Dashboard API"
API_DESCRIPTION = """
## Deployment orchestration for Terraform/Terragrunt

Runs provisioning templates as tracked jobs with an audit trail and live
notifications.

### Getting Started

1. **Pick a template**: `GET /api/v1/templates`
2. **Create a job**: `POST /api/v1/jobs` with template id, environment and variables
3. **Plan**: `POST /api/v1/jobs/{id}/plan`, follow `GET /api/v1/jobs/{id}/output`
4. **Apply**: `POST /api/v1/jobs/{id}/apply` once the job is Planned

### Identity

Send `X-User-Id` to attribute actions in the audit log. Set `API_KEY_ENABLED=true`
and `API_KEY=your-secret-key` to require the `X-API-Key` header.
"""
API_VERSION = __version__

# Domain errors and the HTTP status they map to
ERROR_STATUS: list[tuple[type[DashboardError], int, str]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (JobNotFoundError, status.HTTP_404_NOT_FOUND, "job_not_found"),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND, "session_not_found"),
    (ConflictError, status.HTTP_409_CONFLICT, "conflict"),
    (PreconditionError, status.HTTP_412_PRECONDITION_FAILED, "precondition_failed"),
    (InfrastructureError, status.HTTP_502_BAD_GATEWAY, "infrastructure_error"),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE, "storage_error"),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "configuration_error"),
]


# =============================================================================
# API Key Authentication Middleware
# =============================================================================


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Middleware to validate API key for all requests except health/docs endpoints.

    Enable by setting API_KEY_ENABLED=true and API_KEY=<secret> in environment.
    """

    # Endpoints that don't require authentication
    PUBLIC_PATHS = {"/", "/health", "/health/live", "/health/ready", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        settings: Settings = request.app.state.settings

        # Skip auth if disabled
        if not settings.api_key_enabled:
            return await call_next(request)

        # Skip auth for public paths
        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        # Validate API key
        api_key = request.headers.get("X-API-Key")
        expected_key = settings.api_key.get_secret_value() if settings.api_key else None

        if not expected_key:
            logger.error("api_key_enabled_but_not_set")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Server misconfiguration: API key authentication enabled but no key configured"},
            )

        if not api_key:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Missing X-API-Key header"},
            )

        if api_key != expected_key:
            logger.warning("invalid_api_key_attempt", path=request.url.path)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Invalid API key"},
            )

        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    - Startup: build (if needed) and initialize the AppContext
    - Shutdown: cancel running jobs, stop maintenance, close sessions
    """
    logger.info("application_starting")
    set_server_start_time()

    context: Optional[AppContext] = getattr(app.state, "context", None)
    if context is None:
        context = AppContext(app.state.settings)
        app.state.context = context
    await context.initialize()

    logger.info("application_started")

    yield

    logger.info("application_stopping")
    try:
        await context.shutdown()
    except Exception as e:
        logger.error("context_shutdown_error", error=str(e), error_type=type(e).__name__)
    logger.info("application_stopped")


# =============================================================================
# Exception Handlers
# =============================================================================


async def dashboard_exception_handler(request: Request, exc: DashboardError) -> JSONResponse:
    """Map domain errors to JSON error bodies."""
    status_code, error = status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"
    for exc_type, code, name in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, error = code, name
            break

    log = logger.warning if status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        method=request.method,
        error=error,
        message=exc.message,
    )

    response = ErrorResponse(
        error=error,
        message=exc.message,
        detail=exc.details or None,
        path=request.url.path,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with detailed response."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append(ValidationErrorDetail(
            field=field,
            message=error["msg"],
            value=error.get("input"),
        ))

    response = ValidationErrorResponse(
        errors=errors,
        timestamp=datetime.now(timezone.utc),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=response.model_dump(mode="json"),
    )


async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )

    response = ErrorResponse(
        error="internal_server_error",
        message="An unexpected error occurred",
        detail=str(exc) if request.app.state.settings.debug else None,
        path=request.url.path,
        timestamp=datetime.now(timezone.utc),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=response.model_dump(mode="json"),
    )


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    context: Optional[AppContext] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Pre-built context. Built from settings at startup if omitted.
        settings: Settings to use; defaults to the context's or get_settings().
    """
    settings = settings or (context.settings if context else get_settings())

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "Health", "description": "System health and status endpoints"},
            {"name": "Templates", "description": "Provisioning templates jobs are created from"},
            {"name": "Jobs", "description": "Deployment jobs - create, plan, apply, cancel, follow output"},
            {"name": "Audit", "description": "Audit trail of privileged actions"},
            {"name": "Notifications", "description": "Live notification sessions for UI clients"},
        ],
    )
    app.state.settings = settings
    app.state.context = context

    # Configure CORS middleware (from settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-User-Id", "Accept"],
    )
    app.add_middleware(APIKeyMiddleware)
    app.add_middleware(RequestMetricsMiddleware)

    app.add_exception_handler(DashboardError, dashboard_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/", include_in_schema=False)
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs" if settings.is_development else None,
            "health": "/health",
            "api": "/api/v1",
        }

    # Health endpoints at root level
    app.include_router(health_router)
    app.mount("/metrics", get_metrics_app())

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(templates_router)
    api_v1_router.include_router(jobs_router)
    api_v1_router.include_router(audit_router)
    api_v1_router.include_router(notifications_router)
    app.include_router(api_v1_router)

    return app


app = create_app()


# =============================================================================
# Development Server
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
