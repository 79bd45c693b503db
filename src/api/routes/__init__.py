"""API route modules."""

from src.api.routes.audit import router as audit_router
from src.api.routes.health import router as health_router
from src.api.routes.jobs import router as jobs_router
from src.api.routes.notifications import router as notifications_router
from src.api.routes.templates import router as templates_router

__all__ = [
    "health_router",
    "templates_router",
    "jobs_router",
    "audit_router",
    "notifications_router",
]
