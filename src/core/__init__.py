"""
Core infrastructure modules for the dashboard backend.

Provides common utilities used across the application:
- exceptions: Standardized exception hierarchy
- container: AppContext, the explicit service context (import from
  src.core.container directly)
"""

from src.core.exceptions import (
    DashboardError,
    RetryableError,
    PermanentError,
    ValidationError,
    JobNotFoundError,
    SessionNotFoundError,
    ConflictError,
    PreconditionError,
    InfrastructureError,
    ExecutionFailure,
    JobTimeoutError,
    JobCancelledError,
    StorageError,
    ConfigurationError,
)

__all__ = [
    "DashboardError",
    "RetryableError",
    "PermanentError",
    "ValidationError",
    "JobNotFoundError",
    "SessionNotFoundError",
    "ConflictError",
    "PreconditionError",
    "InfrastructureError",
    "ExecutionFailure",
    "JobTimeoutError",
    "JobCancelledError",
    "StorageError",
    "ConfigurationError",
]
