"""Health check endpoints for the dashboard API.

Provides component status for storage, templates, the provisioning binary
and the maintenance scheduler.
"""

from datetime import datetime, timezone
import shutil
import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException

from src import __version__
from src.api.dependencies import get_context
from src.api.models import HealthCheckResponse, HealthStatus
from src.audit.store import SupabaseAuditBackend
from src.core.container import AppContext

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])

# Track server start time for uptime calculation
_server_start_time: Optional[float] = None


def set_server_start_time() -> None:
    """Set the server start time. Called on application startup."""
    global _server_start_time
    _server_start_time = time.time()


def get_uptime_seconds() -> Optional[float]:
    """Get server uptime in seconds."""
    if _server_start_time is None:
        return None
    return time.time() - _server_start_time


async def check_storage_health(context: AppContext) -> HealthStatus:
    """Check the audit/job storage backend."""
    backend = context.audit.backend
    if not isinstance(backend, SupabaseAuditBackend):
        return HealthStatus(status="degraded", message="Using in-memory storage")

    start_time = time.time()
    try:
        await backend.ping()
        latency = (time.time() - start_time) * 1000
        return HealthStatus(
            status="healthy",
            latency_ms=round(latency, 2),
            message="Connected to Supabase",
        )
    except Exception as e:
        latency = (time.time() - start_time) * 1000
        logger.error("supabase_health_check_failed", error=str(e))
        return HealthStatus(
            status="unhealthy",
            latency_ms=round(latency, 2),
            message=f"Supabase connection failed: {str(e)[:100]}",
        )


def check_binary_health(context: AppContext) -> HealthStatus:
    """Check that the provisioning tool is on the PATH."""
    binary = context.settings.provisioning_binary
    path = shutil.which(binary)
    if path is None:
        return HealthStatus(status="unhealthy", message=f"{binary} not found")
    return HealthStatus(status="healthy", message=path)


def check_templates_health(context: AppContext) -> HealthStatus:
    count = len(context.templates)
    if count == 0:
        return HealthStatus(status="degraded", message="No templates loaded")
    return HealthStatus(status="healthy", message=f"{count} templates loaded")


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health Check",
    description="Check the health status of the API and its dependencies.",
)
async def health_check(
    context: AppContext = Depends(get_context),
) -> HealthCheckResponse:
    """
    Report the status of:
    - Storage (Supabase or in-memory)
    - Provisioning binary (terraform/terragrunt)
    - Template registry
    """
    services = {
        "storage": await check_storage_health(context),
        "provisioning_binary": check_binary_health(context),
        "templates": check_templates_health(context),
    }

    # Determine overall status
    statuses = [s.status for s in services.values()]
    if all(s == "healthy" for s in statuses):
        overall_status = "healthy"
    elif any(s == "unhealthy" for s in statuses):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthCheckResponse(
        status=overall_status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        services=services,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/health/live",
    summary="Liveness Check",
    description="Simple liveness check for container orchestration.",
)
async def liveness() -> dict:
    """Returns 200 if the service is alive."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get(
    "/health/ready",
    summary="Readiness Check",
    description="Check if the service is ready to accept traffic.",
)
async def readiness(
    context: AppContext = Depends(get_context),
) -> dict:
    """Returns 200 only once the context is initialized and storage is reachable."""
    if not context.is_initialized:
        raise HTTPException(status_code=503, detail="Service not ready: starting up")

    storage = await check_storage_health(context)
    if storage.status == "unhealthy":
        raise HTTPException(status_code=503, detail="Service not ready: storage unavailable")

    return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
