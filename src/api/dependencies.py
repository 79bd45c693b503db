"""FastAPI dependency injection providers.

This module provides dependency functions for injecting services into route handlers.
All services hang off the AppContext stored on ``app.state.context``.
"""

from fastapi import Request

from src.audit.store import AuditLogStore
from src.core.container import AppContext
from src.jobs.tracker import ActorContext, JobTracker
from src.notifications.dispatcher import NotificationDispatcher
from src.templates.registry import TemplateRegistry

USER_ID_HEADER = "X-User-Id"


def get_context(request: Request) -> AppContext:
    """
    Get the application context.

    Raises:
        RuntimeError: If the context has not been attached to the app.
    """
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError(
            "AppContext not initialized. Ensure the application startup event has run."
        )
    return context


def get_tracker(request: Request) -> JobTracker:
    return get_context(request).tracker


def get_audit_store(request: Request) -> AuditLogStore:
    return get_context(request).audit


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return get_context(request).notifications


def get_templates(request: Request) -> TemplateRegistry:
    return get_context(request).templates


def get_actor(request: Request) -> ActorContext:
    """
    Build the audit actor from the request.

    Identity comes from the ``X-User-Id`` header; the client address and
    ``User-Agent`` are recorded alongside it.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ActorContext(
        user_id=request.headers.get(USER_ID_HEADER) or None,
        ip_address=ip_address,
        user_agent=request.headers.get("User-Agent"),
    )
