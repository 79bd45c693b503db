"""
Monitoring and observability for the dashboard backend.

Provides Prometheus metrics for tracking job lifecycle, audit health and
API performance.

Usage:
    from src.monitoring import track_process_execution, record_job_transition

    with track_process_execution("plan") as ctx:
        ...

    record_job_transition("planned")
"""

from src.monitoring.metrics import (
    ACTIVE_PROCESSES,
    API_REQUEST_DURATION,
    AUDIT_WRITES,
    JOB_PHASE_DURATION,
    JOB_TRANSITIONS,
    NOTIFICATION_SESSIONS,
    NOTIFICATIONS_PUBLISHED,
    PRECONDITION_WARNINGS,
    track_process_execution,
    track_api_request,
    record_job_transition,
    record_audit_write,
    record_notification,
    record_precondition_warning,
    get_metrics_app,
)

__all__ = [
    # Prometheus metrics
    "ACTIVE_PROCESSES",
    "API_REQUEST_DURATION",
    "AUDIT_WRITES",
    "JOB_PHASE_DURATION",
    "JOB_TRANSITIONS",
    "NOTIFICATION_SESSIONS",
    "NOTIFICATIONS_PUBLISHED",
    "PRECONDITION_WARNINGS",
    # Context managers
    "track_process_execution",
    "track_api_request",
    # Helper functions
    "record_job_transition",
    "record_audit_write",
    "record_notification",
    "record_precondition_warning",
    "get_metrics_app",
]
