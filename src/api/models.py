"""Pydantic models for API requests and responses.

This module defines the request/response schemas for the dashboard API.
Domain entities (jobs, audit entries, notifications) are returned as their
``src.models`` types where the shape is the same.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.models.schemas import (
    AuditLogEntry,
    DeploymentJob,
    JobState,
    Notification,
    NotificationSettings,
    Template,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Template Models
# =============================================================================


class TemplateListResponse(BaseModel):
    """Response model for listing templates."""

    templates: list[Template] = Field(..., description="Registered templates")
    total: int = Field(..., description="Number of templates returned")


# =============================================================================
# Job Models
# =============================================================================


class JobCreate(BaseModel):
    """Request model for creating a deployment job."""

    template_id: str = Field(
        ...,
        min_length=1,
        description="Template to deploy",
        json_schema_extra={"example": "ec2-instance"},
    )
    environment: str = Field(
        ...,
        description="Target environment tag",
        json_schema_extra={"example": "dev"},
    )
    variables: dict[str, Any] = Field(
        default_factory=dict,
        description="Template variables; coerced to the declared types",
        json_schema_extra={"example": {"name": "web-1", "instance_type": "t3.micro"}},
    )
    name: Optional[str] = Field(None, max_length=255, description="Display name")
    destroy: bool = Field(default=False, description="Plan and apply a destroy")
    timeout_seconds: Optional[float] = Field(
        None,
        gt=0,
        description="Wall-clock ceiling per running phase; defaults to the service setting",
    )


class ApplyRequest(BaseModel):
    """Request model for applying a planned job."""

    force: bool = Field(
        default=False,
        description="Apply even if the target instance is not running",
    )


class JobSummary(BaseModel):
    """Job without its captured output."""

    id: UUID
    name: str
    template_id: str
    template_version: str
    environment: str
    state: JobState
    state_label: str
    destroy: bool
    exit_code: Optional[int] = None
    error_output: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    cancellation_requested: bool = False
    cancel_reason: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: DeploymentJob) -> "JobSummary":
        return cls(
            **job.model_dump(
                include={
                    "id",
                    "name",
                    "template_id",
                    "template_version",
                    "environment",
                    "state",
                    "destroy",
                    "exit_code",
                    "error_output",
                    "warnings",
                    "cancellation_requested",
                    "cancel_reason",
                    "user_id",
                    "created_at",
                    "updated_at",
                }
            ),
            state_label=job.state_label,
        )


class JobDetail(JobSummary):
    """Full job view."""

    variables: dict[str, Any] = Field(default_factory=dict)
    working_dir: str
    history: list[dict[str, Any]] = Field(default_factory=list)
    output_lines: int = Field(0, description="Number of captured output lines")
    active: bool = Field(False, description="A provisioning process is running")

    @classmethod
    def from_job(cls, job: DeploymentJob, active: bool = False) -> "JobDetail":
        summary = JobSummary.from_job(job)
        return cls(
            **summary.model_dump(),
            variables=job.variables,
            working_dir=job.working_dir,
            history=[h.model_dump(mode="json") for h in job.history],
            output_lines=len(job.output),
            active=active,
        )


class JobListResponse(BaseModel):
    """Response model for listing jobs."""

    jobs: list[JobSummary]
    total: int = Field(..., description="Number of jobs matching the filters")
    limit: int
    offset: int


# =============================================================================
# Audit Models
# =============================================================================


class AuditListResponse(BaseModel):
    """Response model for audit queries."""

    entries: list[AuditLogEntry]
    total: int = Field(..., description="Number of entries matching the filters")
    limit: Optional[int]
    offset: int


class AuditPurgeResponse(BaseModel):
    """Response model for audit purges."""

    removed: int
    older_than_days: int


# =============================================================================
# Notification Models
# =============================================================================


class SessionCreate(BaseModel):
    """Request model for subscribing a UI session."""

    settings: Optional[NotificationSettings] = None


class SettingsUpdate(BaseModel):
    """Partial update of session settings."""

    enable_sound: Optional[bool] = None
    enable_desktop: Optional[bool] = None
    auto_hide: Optional[bool] = None
    hide_delay_ms: Optional[int] = Field(None, ge=0)


class SessionResponse(BaseModel):
    """Current view of one notification session."""

    session_id: str
    settings: NotificationSettings
    unread_count: int
    notifications: list[Notification] = Field(default_factory=list)


class ActionResponse(BaseModel):
    """Response for actions that affect a number of items."""

    success: bool
    affected: int = 0


# =============================================================================
# Health Models
# =============================================================================


class HealthStatus(BaseModel):
    """Individual component health status."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(
        ..., description="Component status"
    )
    latency_ms: Optional[float] = Field(None, description="Response latency in milliseconds")
    message: Optional[str] = Field(None, description="Additional status message")


class HealthCheckResponse(BaseModel):
    """Response model for health check endpoint."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(
        ..., description="Overall system status"
    )
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(..., description="Check timestamp")
    services: dict[str, HealthStatus] = Field(
        default_factory=dict,
        description="Individual component statuses",
    )
    uptime_seconds: Optional[float] = Field(None, description="Server uptime in seconds")


# =============================================================================
# Error Models
# =============================================================================


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[Any] = Field(None, description="Additional error details")
    path: Optional[str] = Field(None, description="Request path that caused the error")
    timestamp: datetime = Field(default_factory=_now, description="Error timestamp")


class ValidationErrorDetail(BaseModel):
    """Details for validation errors."""

    field: str = Field(..., description="Field that failed validation")
    message: str = Field(..., description="Validation error message")
    value: Optional[Any] = Field(None, description="Invalid value provided")


class ValidationErrorResponse(BaseModel):
    """Response for validation errors."""

    error: str = Field(default="validation_error", description="Error type")
    message: str = Field(default="Request validation failed", description="Error message")
    errors: list[ValidationErrorDetail] = Field(..., description="List of validation errors")
    timestamp: datetime = Field(default_factory=_now, description="Error timestamp")
