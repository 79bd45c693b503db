"""Request metrics middleware for FastAPI.

Records duration and count of every API request in Prometheus, labelled by
method, route template and status code.

Usage:
    from src.api.middleware import RequestMetricsMiddleware

    app = FastAPI()
    app.add_middleware(RequestMetricsMiddleware)

Health, docs and metrics endpoints are excluded.
"""

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from src.monitoring.metrics import track_api_request

logger = structlog.get_logger(__name__)


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Middleware tracking request duration and status per route."""

    # Endpoints excluded from request metrics (monitoring and documentation)
    EXCLUDED_PATHS = {
        "/",
        "/health",
        "/health/live",
        "/health/ready",
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    @staticmethod
    def _endpoint_label(request: Request) -> str:
        # route templates keep label cardinality bounded (no job ids)
        route = request.scope.get("route")
        return getattr(route, "path", None) or "unmatched"

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.EXCLUDED_PATHS or path.startswith("/metrics"):
            return await call_next(request)

        with track_api_request(request.method, "unmatched") as ctx:
            response = await call_next(request)
            ctx["status_code"] = response.status_code
            ctx["endpoint"] = self._endpoint_label(request)
        return response
