"""
Core exception hierarchy for the dashboard backend.

Provides standardized exception types with categorization for retry logic.
All components should use these exceptions instead of generic Exception.
"""

from typing import Any, Optional


# =============================================================================
# Base Exceptions
# =============================================================================


class DashboardError(Exception):
    """Base exception for all dashboard errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class RetryableError(DashboardError):
    """
    Transient errors that may succeed if retried.

    Examples: storage backend timeouts, temporary network issues.
    """

    pass


class PermanentError(DashboardError):
    """
    Errors that won't be fixed by retrying.

    Examples: invalid input, state machine violations, missing binaries.
    """

    pass


# =============================================================================
# Request Errors (raised synchronously, never partially applied)
# =============================================================================


class ValidationError(PermanentError):
    """Raised when input is rejected before any external call is made."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or [message]
        super().__init__(message, {"errors": self.errors} if len(self.errors) > 1 else None)


class JobNotFoundError(PermanentError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: Any):
        self.job_id = str(job_id)
        super().__init__(f"job {self.job_id} not found")


class SessionNotFoundError(PermanentError):
    """Raised when a notification session id is unknown."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"notification session {session_id} not found")


class ConflictError(PermanentError):
    """Raised when a state machine precondition is violated."""

    def __init__(self, message: str, current_state: Optional[str] = None):
        self.current_state = current_state
        super().__init__(message)


class PreconditionError(PermanentError):
    """
    Raised when the target resource's operational state is incompatible.

    Only raised under the "enforce" policy and when force was not requested;
    otherwise the condition is recorded as a warning.
    """

    def __init__(self, message: str, resource_id: Optional[str] = None, state: Optional[str] = None):
        self.resource_id = resource_id
        self.state = state
        details = {"resource_id": resource_id, "state": state} if resource_id else None
        super().__init__(message, details)


# =============================================================================
# Execution Errors
# =============================================================================


class InfrastructureError(PermanentError):
    """Raised when the provisioning tool itself could not be started."""

    def __init__(self, command: str, message: str):
        self.command = command
        super().__init__(f"[{command}] {message}")


class ExecutionFailure(PermanentError):
    """The provisioning tool ran and exited non-zero."""

    def __init__(self, job_id: Any, exit_code: Optional[int], error_output: str):
        self.job_id = str(job_id)
        self.exit_code = exit_code
        self.error_output = error_output
        super().__init__(
            f"job {self.job_id} failed with exit code {exit_code}",
            {"error_output": error_output},
        )


class JobTimeoutError(PermanentError):
    """A running phase exceeded its wall-clock ceiling."""

    def __init__(self, job_id: Any, forced: bool = False):
        self.job_id = str(job_id)
        self.forced = forced
        super().__init__(f"job {self.job_id} timed out", {"forced": forced} if forced else None)


class JobCancelledError(PermanentError):
    """The job was cancelled before completing."""

    def __init__(self, job_id: Any, reason: Optional[str] = None, forced: bool = False):
        self.job_id = str(job_id)
        self.reason = reason
        self.forced = forced
        suffix = " (forced)" if forced else ""
        super().__init__(f"job {self.job_id} cancelled{suffix}", {"reason": reason} if reason else None)


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(RetryableError):
    """Raised when a persistence backend fails after retries."""

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PermanentError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        details = {"config_key": config_key} if config_key else None
        super().__init__(message, details)
