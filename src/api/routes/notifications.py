"""Notification session endpoints.

A UI client subscribes once, then follows its event stream (server-sent
events) and acknowledges notifications through the session endpoints.
"""

from typing import AsyncIterator

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from src.api.dependencies import get_dispatcher
from src.api.models import (
    ActionResponse,
    ErrorResponse,
    SessionCreate,
    SessionResponse,
    SettingsUpdate,
)
from src.models.schemas import NotificationSettings
from src.notifications.dispatcher import NotificationDispatcher, NotificationSession

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Session not found"}}


def _session_response(session: NotificationSession, active_only: bool = False) -> SessionResponse:
    return SessionResponse(
        session_id=session.id,
        settings=session.settings,
        unread_count=session.unread_count,
        notifications=session.active() if active_only else session.notifications,
    )


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=201,
    summary="Open a notification session",
)
async def create_session(
    request: SessionCreate | None = None,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SessionResponse:
    session = dispatcher.subscribe(request.settings if request else None)
    return _session_response(session)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    summary="Get session notifications",
    responses=_NOT_FOUND,
)
async def get_session(
    session_id: str,
    active_only: bool = False,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SessionResponse:
    return _session_response(dispatcher.get_session(session_id), active_only=active_only)


@router.put(
    "/sessions/{session_id}/settings",
    response_model=NotificationSettings,
    summary="Update session settings",
    responses=_NOT_FOUND,
)
async def update_settings(
    session_id: str,
    update: SettingsUpdate,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotificationSettings:
    session = dispatcher.get_session(session_id)
    return session.update_settings(**update.model_dump(exclude_none=True))


@router.post(
    "/sessions/{session_id}/read-all",
    response_model=ActionResponse,
    summary="Mark all notifications read",
    responses=_NOT_FOUND,
)
async def mark_all_read(
    session_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ActionResponse:
    count = dispatcher.get_session(session_id).mark_all_read()
    return ActionResponse(success=True, affected=count)


@router.post(
    "/sessions/{session_id}/clear-read",
    response_model=ActionResponse,
    summary="Remove read notifications",
    responses=_NOT_FOUND,
)
async def clear_read(
    session_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ActionResponse:
    count = dispatcher.get_session(session_id).clear_read()
    return ActionResponse(success=True, affected=count)


@router.post(
    "/sessions/{session_id}/{notification_id}/read",
    response_model=ActionResponse,
    summary="Mark a notification read",
    responses=_NOT_FOUND,
)
async def mark_read(
    session_id: str,
    notification_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ActionResponse:
    changed = dispatcher.get_session(session_id).mark_read(notification_id)
    return ActionResponse(success=changed, affected=int(changed))


@router.delete(
    "/sessions/{session_id}/{notification_id}",
    response_model=ActionResponse,
    summary="Dismiss a notification",
    responses=_NOT_FOUND,
)
async def dismiss(
    session_id: str,
    notification_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ActionResponse:
    removed = dispatcher.get_session(session_id).dismiss(notification_id)
    return ActionResponse(success=removed, affected=int(removed))


@router.get(
    "/sessions/{session_id}/stream",
    summary="Follow session events",
    description="Server-sent events; one event per created/read/removed/cleared notification.",
    responses=_NOT_FOUND,
)
async def stream_events(
    session_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> StreamingResponse:
    session = dispatcher.get_session(session_id)

    async def events() -> AsyncIterator[str]:
        stream = session.events()
        try:
            async for event in stream:
                yield f"event: {event.kind}\ndata: {event.model_dump_json()}\n\n"
        finally:
            # marks the session idle again on disconnect
            await stream.aclose()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.delete(
    "/sessions/{session_id}",
    status_code=204,
    summary="Close a notification session",
    responses=_NOT_FOUND,
)
async def close_session(
    session_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> None:
    dispatcher.unsubscribe(session_id)
