"""
Data Models and Schemas.

This module defines the data structures shared across the backend:

- Template / VariableSpec: provisioning templates and their typed variables
- DeploymentJob / JobState: one plan/apply attempt and its lifecycle
- AuditLogEntry / AuditQuery / AuditStats: the audit trail
- Notification / NotificationEvent: live UI notifications

Example:
    from src.models import DeploymentJob, JobState

    if job.state == JobState.PLANNED:
        ...
"""

from src.models.schemas import (
    TERMINAL_STATES,
    AuditLogEntry,
    AuditQuery,
    AuditStats,
    CountedValue,
    DeploymentJob,
    JobState,
    Notification,
    NotificationAction,
    NotificationEvent,
    NotificationSettings,
    OutputLine,
    StateChange,
    Template,
    VariableSpec,
    VariableType,
    utcnow,
)

__all__ = [
    # Templates
    "Template",
    "VariableSpec",
    "VariableType",
    # Jobs
    "DeploymentJob",
    "JobState",
    "TERMINAL_STATES",
    "OutputLine",
    "StateChange",
    # Audit
    "AuditLogEntry",
    "AuditQuery",
    "AuditStats",
    "CountedValue",
    # Notifications
    "Notification",
    "NotificationAction",
    "NotificationEvent",
    "NotificationSettings",
    # Helpers
    "utcnow",
]
