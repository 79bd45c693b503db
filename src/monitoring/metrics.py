"""
Prometheus metrics for dashboard observability.

Provides standardized metrics for job lifecycle, audit and notification
health, and API performance.

Usage:
    from src.monitoring.metrics import track_process_execution

    with track_process_execution("plan"):
        exit_code = await handle.wait()

    # Or manually
    JOB_TRANSITIONS.labels(state="planned").inc()
"""

import time
from contextlib import contextmanager
from typing import Generator

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from starlette.applications import Starlette
from starlette.responses import Response
from starlette.routing import Route


# =============================================================================
# Metric Definitions
# =============================================================================

# Job lifecycle metrics
JOB_TRANSITIONS = Counter(
    "dashboard_job_transitions_total",
    "Total job state transitions by target state",
    ["state"],
)

JOB_PHASE_DURATION = Histogram(
    "dashboard_job_phase_duration_seconds",
    "Duration of external process executions in seconds",
    ["phase", "status"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
)

ACTIVE_PROCESSES = Gauge(
    "dashboard_active_processes",
    "Number of provisioning processes currently running",
)

PRECONDITION_WARNINGS = Counter(
    "dashboard_precondition_warnings_total",
    "Apply requests made against an instance in an incompatible state",
    ["state"],
)

# Audit metrics
AUDIT_WRITES = Counter(
    "dashboard_audit_writes_total",
    "Audit log write attempts",
    ["status"],
)

# Notification metrics
NOTIFICATIONS_PUBLISHED = Counter(
    "dashboard_notifications_published_total",
    "Notifications published to sessions",
    ["type"],
)

NOTIFICATION_SESSIONS = Gauge(
    "dashboard_notification_sessions",
    "Currently subscribed notification sessions",
)

# API request metrics
API_REQUEST_DURATION = Histogram(
    "dashboard_api_request_duration_seconds",
    "Duration of API requests in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

API_REQUEST_TOTAL = Counter(
    "dashboard_api_request_total",
    "Total number of API requests",
    ["method", "endpoint", "status_code"],
)


# =============================================================================
# Tracking Context Managers
# =============================================================================


@contextmanager
def track_process_execution(phase: str) -> Generator[dict, None, None]:
    """
    Context manager to track one external process run.

    Usage:
        with track_process_execution("apply") as ctx:
            ctx["status"] = "success" if await handle.wait() == 0 else "failed"
    """
    start_time = time.perf_counter()
    context = {"status": "error"}
    ACTIVE_PROCESSES.inc()
    try:
        yield context
    finally:
        ACTIVE_PROCESSES.dec()
        duration = time.perf_counter() - start_time
        JOB_PHASE_DURATION.labels(phase=phase, status=context.get("status", "error")).observe(duration)


@contextmanager
def track_api_request(
    method: str,
    endpoint: str,
) -> Generator[dict, None, None]:
    """
    Context manager to track API request duration and status.

    Setting ctx["endpoint"] overrides the endpoint label, for callers that
    only learn the matched route after the request ran.

    Usage:
        with track_api_request("GET", "/api/v1/jobs") as ctx:
            response = await call_next(request)
            ctx["status_code"] = response.status_code
    """
    start_time = time.perf_counter()
    context = {"status_code": "500"}  # Default to error
    try:
        yield context
    finally:
        duration = time.perf_counter() - start_time
        status_code = str(context.get("status_code", "500"))
        endpoint = context.get("endpoint", endpoint)
        API_REQUEST_DURATION.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code,
        ).observe(duration)
        API_REQUEST_TOTAL.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code,
        ).inc()


def record_job_transition(state: str) -> None:
    """Count a transition into ``state``."""
    JOB_TRANSITIONS.labels(state=state).inc()


def record_audit_write(success: bool) -> None:
    """Count an audit write attempt."""
    AUDIT_WRITES.labels(status="success" if success else "failure").inc()


def record_notification(notification_type: str) -> None:
    """Count a published notification."""
    NOTIFICATIONS_PUBLISHED.labels(type=notification_type).inc()


def record_precondition_warning(state: str) -> None:
    """Count an apply against an incompatible instance state."""
    PRECONDITION_WARNINGS.labels(state=state).inc()


# =============================================================================
# Metrics Endpoint
# =============================================================================


async def metrics_endpoint(request) -> Response:
    """Prometheus metrics endpoint handler."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


def get_metrics_app() -> Starlette:
    """
    Get a Starlette app for serving metrics.

    Mount this at /metrics in your main app:
        from src.monitoring.metrics import get_metrics_app
        app.mount("/metrics", get_metrics_app())
    """
    return Starlette(
        routes=[
            Route("/", metrics_endpoint),
        ]
    )
