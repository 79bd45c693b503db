"""Pydantic models for the dashboard's core entities."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.core.exceptions import ExecutionFailure, JobCancelledError, JobTimeoutError


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Base Models
# =============================================================================


class BaseEntity(BaseModel):
    """Base model with common fields and conversion methods."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    def to_db_row(self) -> dict[str, Any]:
        """Convert model to database row format (e.g., for Supabase/PostgreSQL)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "BaseEntity":
        """Create model instance from database row."""
        return cls.model_validate(row)


# =============================================================================
# Templates
# =============================================================================


class VariableType(str, Enum):
    """Declared type of a template variable."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    MAP = "map"


class VariableSpec(BaseModel):
    """A variable declared by a template."""

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: VariableType = VariableType.STRING
    required: bool = True
    default: Any = None
    description: str = ""
    sensitive: bool = False


class Template(BaseEntity):
    """A named, versioned provisioning configuration."""

    id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    version: str = Field(default="1.0.0")
    description: str = ""
    category: str = "general"
    terraform_code: str = Field(..., description="Contents written to main.tf")
    variables: list[VariableSpec] = Field(default_factory=list)
    requires_running_instance: bool = Field(
        default=False,
        description="Apply targets an existing instance that should be running",
    )
    instance_variable: str = Field(
        default="instance_id",
        description="Variable holding the target instance id",
    )

    def variable(self, name: str) -> Optional[VariableSpec]:
        for spec in self.variables:
            if spec.name == name:
                return spec
        return None


# =============================================================================
# Deployment Jobs
# =============================================================================


class JobState(str, Enum):
    """Lifecycle states of a deployment job."""

    CREATED = "created"
    PLANNING = "planning"
    PLANNED = "planned"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    PLAN_FAILED = "plan_failed"
    APPLY_FAILED = "apply_failed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        """Display name, e.g. ``PlanFailed``."""
        return "".join(part.capitalize() for part in self.value.split("_"))

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        return self in (JobState.PLANNING, JobState.APPLYING)


TERMINAL_STATES = frozenset(
    {JobState.SUCCEEDED, JobState.PLAN_FAILED, JobState.APPLY_FAILED, JobState.CANCELLED}
)

CancelReason = Literal["user", "timeout", "shutdown"]


class OutputLine(BaseModel):
    """One line of captured process output."""

    stream: Literal["stdout", "stderr"]
    text: str
    at: datetime = Field(default_factory=utcnow)


class StateChange(BaseModel):
    """One observed state of a job."""

    state: JobState
    at: datetime = Field(default_factory=utcnow)


class DeploymentJob(BaseEntity):
    """One attempt to plan/apply a template against an environment."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    template_id: str
    template_version: str
    variables: dict[str, Any] = Field(default_factory=dict)
    environment: str
    working_dir: str
    destroy: bool = False
    state: JobState = JobState.CREATED
    exit_code: Optional[int] = None
    output: list[OutputLine] = Field(default_factory=list)
    error_output: Optional[str] = None
    history: list[StateChange] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    cancellation_requested: bool = False
    cancel_reason: Optional[CancelReason] = None
    cancel_forced: bool = False
    timeout_seconds: Optional[float] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def state_label(self) -> str:
        """State display name, with the forced-cancel marker."""
        if self.state == JobState.CANCELLED and self.cancel_forced:
            return "Cancelled (forced)"
        return self.state.label

    def raise_for_state(self) -> None:
        """Raise the matching error if the job ended unsuccessfully."""
        if self.state in (JobState.PLAN_FAILED, JobState.APPLY_FAILED):
            raise ExecutionFailure(self.id, self.exit_code, self.error_output or "")
        if self.state == JobState.CANCELLED:
            if self.cancel_reason == "timeout":
                raise JobTimeoutError(self.id, forced=self.cancel_forced)
            raise JobCancelledError(self.id, reason=self.cancel_reason, forced=self.cancel_forced)


# =============================================================================
# Audit Log
# =============================================================================


class AuditLogEntry(BaseEntity):
    """An immutable record of one privileged action."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = None
    action: str = Field(..., min_length=1)
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class AuditQuery(BaseModel):
    """Filters for audit queries. All set filters must match."""

    user_id: Optional[str] = None
    action: Optional[str] = Field(None, description="Case-sensitive substring of the action tag")
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    success: Optional[bool] = None
    limit: Optional[int] = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.action is not None and self.action not in entry.action:
            return False
        if self.resource_type is not None and entry.resource_type != self.resource_type:
            return False
        if self.resource_id is not None and entry.resource_id != self.resource_id:
            return False
        if self.start_date is not None and entry.created_at < self.start_date:
            return False
        if self.end_date is not None and entry.created_at > self.end_date:
            return False
        if self.success is not None and entry.success != self.success:
            return False
        return True


class CountedValue(BaseModel):
    """A value and how often it occurred."""

    value: str
    count: int


class AuditStats(BaseModel):
    """Aggregate counts over a filtered audit window."""

    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    top_actions: list[CountedValue] = Field(default_factory=list)
    top_users: list[CountedValue] = Field(default_factory=list)


# =============================================================================
# Notifications
# =============================================================================

NotificationType = Literal["success", "error", "warning", "info"]


class NotificationAction(BaseModel):
    """A button offered alongside a notification."""

    label: str
    action: str
    variant: Literal["text", "outlined", "contained"] = "text"


class Notification(BaseModel):
    """A message shown to connected UI sessions."""

    id: str = Field(default_factory=lambda: f"notification_{uuid4().hex}")
    type: NotificationType = "info"
    title: str
    message: str
    actions: list[NotificationAction] = Field(default_factory=list)
    persistent: bool = False
    read: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class NotificationSettings(BaseModel):
    """Per-session delivery preferences."""

    enable_sound: bool = True
    enable_desktop: bool = True
    auto_hide: bool = True
    hide_delay_ms: int = Field(5000, ge=0)


class NotificationEvent(BaseModel):
    """One entry of a session's event stream."""

    kind: Literal["created", "read", "removed", "cleared"]
    notification: Optional[Notification] = None
    play_sound: bool = False
    show_desktop: bool = False
    at: datetime = Field(default_factory=utcnow)
