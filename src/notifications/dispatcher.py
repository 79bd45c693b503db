"""Notification fan-out to connected UI sessions.

Each subscribed session gets its own copy of every published notification,
its own read state and its own ordered event queue. Nothing is persisted
beyond the lifetime of the session.

Usage:
    dispatcher = NotificationDispatcher.from_settings(settings)
    session = dispatcher.subscribe()

    dispatcher.success("Plan ready", "web-prod planned 3 changes")

    async for event in session.events():
        ...
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import AsyncIterator, Iterable, Optional
from uuid import uuid4

import structlog

from src.config.settings import Settings
from src.core.exceptions import SessionNotFoundError
from src.models.schemas import (
    Notification,
    NotificationAction,
    NotificationEvent,
    NotificationSettings,
    NotificationType,
    utcnow,
)
from src.monitoring.metrics import NOTIFICATION_SESSIONS, record_notification

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 100

# undelivered events per session, as a multiple of the history limit
EVENT_BACKLOG_FACTOR = 2


class NotificationSession:
    """One connected client's view of the notification stream."""

    def __init__(
        self,
        session_id: str,
        settings: NotificationSettings,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.id = session_id
        self.settings = settings
        self.history_limit = history_limit
        self._notifications: list[Notification] = []  # newest first
        self._queue: asyncio.Queue[Optional[NotificationEvent]] = asyncio.Queue(
            maxsize=history_limit * EVENT_BACKLOG_FACTOR
        )
        self.dropped_events = 0
        self.last_active: datetime = utcnow()
        self._streams = 0
        self._hide_timers: dict[str, asyncio.TimerHandle] = {}
        self._closed = False

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def deliver(self, notification: Notification) -> None:
        if self._closed:
            return

        copy = notification.model_copy(deep=True)
        self._notifications.insert(0, copy)
        for dropped in self._notifications[self.history_limit:]:
            self._cancel_timer(dropped.id)
        del self._notifications[self.history_limit:]

        self._emit(
            NotificationEvent(
                kind="created",
                notification=copy,
                play_sound=self.settings.enable_sound,
                show_desktop=self.settings.enable_desktop,
            )
        )

        if self.settings.auto_hide and not copy.persistent:
            self._schedule_auto_hide(copy.id)

    def _schedule_auto_hide(self, notification_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("auto_hide_skipped_no_loop", session_id=self.id)
            return
        delay = self.settings.hide_delay_ms / 1000
        self._hide_timers[notification_id] = loop.call_later(
            delay, self._auto_hide, notification_id
        )

    def _auto_hide(self, notification_id: str) -> None:
        self._hide_timers.pop(notification_id, None)
        if self.mark_read(notification_id):
            logger.debug("notification_auto_hidden", session_id=self.id, notification_id=notification_id)

    def _cancel_timer(self, notification_id: str) -> None:
        timer = self._hide_timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()

    def _emit(self, event: NotificationEvent) -> None:
        self._put(event)

    def _put(self, item: Optional[NotificationEvent]) -> None:
        if self._queue.full():
            # client stopped reading, drop the oldest undelivered event
            self._queue.get_nowait()
            self.dropped_events += 1
            if self.dropped_events == 1:
                logger.warning("notification_events_dropped", session_id=self.id)
        self._queue.put_nowait(item)

    # -------------------------------------------------------------------------
    # Client operations
    # -------------------------------------------------------------------------

    def _find(self, notification_id: str) -> Optional[Notification]:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        return None

    @property
    def notifications(self) -> list[Notification]:
        """All retained notifications, newest first."""
        return list(self._notifications)

    def active(self) -> list[Notification]:
        """Unread notifications, newest first."""
        return [n for n in self._notifications if not n.read]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def mark_read(self, notification_id: str) -> bool:
        notification = self._find(notification_id)
        if notification is None or notification.read:
            return False
        self._cancel_timer(notification_id)
        notification.read = True
        self._emit(NotificationEvent(kind="read", notification=notification))
        return True

    def mark_all_read(self) -> int:
        count = 0
        for notification in self._notifications:
            if not notification.read:
                self.mark_read(notification.id)
                count += 1
        return count

    def dismiss(self, notification_id: str) -> bool:
        """Remove a notification, including persistent ones."""
        notification = self._find(notification_id)
        if notification is None:
            return False
        self._cancel_timer(notification_id)
        self._notifications.remove(notification)
        self._emit(NotificationEvent(kind="removed", notification=notification))
        return True

    def clear_read(self) -> int:
        read = [n for n in self._notifications if n.read]
        for notification in read:
            self.dismiss(notification.id)
        return len(read)

    def clear_all(self) -> None:
        for notification_id in list(self._hide_timers):
            self._cancel_timer(notification_id)
        self._notifications.clear()
        self._emit(NotificationEvent(kind="cleared"))

    def update_settings(self, **changes) -> NotificationSettings:
        self.settings = self.settings.model_copy(update=changes)
        return self.settings

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def events(self) -> AsyncIterator[NotificationEvent]:
        """Yield events in emission order until the session is closed."""
        self._streams += 1
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    return
                self.touch()
                yield event
        finally:
            self._streams -= 1
            self.touch()

    def pending_events(self) -> int:
        return self._queue.qsize()

    def touch(self) -> None:
        self.last_active = utcnow()

    def is_idle(self, max_idle: timedelta, now: Optional[datetime] = None) -> bool:
        """True when no client has streamed or called in for ``max_idle``."""
        if self._streams:
            return False
        return (now or utcnow()) - self.last_active >= max_idle

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for notification_id in list(self._hide_timers):
            self._cancel_timer(notification_id)
        self._put(None)


class NotificationDispatcher:
    """In-memory pub/sub of notifications to subscribed sessions."""

    def __init__(
        self,
        default_settings: Optional[NotificationSettings] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.default_settings = default_settings or NotificationSettings()
        self.history_limit = history_limit
        self._sessions: dict[str, NotificationSession] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationDispatcher":
        return cls(
            default_settings=NotificationSettings(
                auto_hide=settings.notification_auto_hide,
                hide_delay_ms=settings.notification_hide_delay_ms,
            ),
            history_limit=settings.notification_history_limit,
        )

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def subscribe(self, settings: Optional[NotificationSettings] = None) -> NotificationSession:
        session = NotificationSession(
            session_id=uuid4().hex,
            settings=settings or self.default_settings.model_copy(),
            history_limit=self.history_limit,
        )
        self._sessions[session.id] = session
        NOTIFICATION_SESSIONS.set(len(self._sessions))
        logger.info("notification_session_opened", session_id=session.id)
        return session

    def get_session(self, session_id: str) -> NotificationSession:
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None
        session.touch()
        return session

    def unsubscribe(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.close()
        NOTIFICATION_SESSIONS.set(len(self._sessions))
        logger.info("notification_session_closed", session_id=session_id)

    @property
    def sessions(self) -> list[NotificationSession]:
        return list(self._sessions.values())

    def close(self) -> None:
        for session_id in list(self._sessions):
            self.unsubscribe(session_id)

    def reap_idle(self, max_idle: timedelta, now: Optional[datetime] = None) -> int:
        """Close sessions no client has used for ``max_idle``.

        Returns:
            Number of sessions closed.
        """
        idle = [s.id for s in self._sessions.values() if s.is_idle(max_idle, now)]
        for session_id in idle:
            self.unsubscribe(session_id)
        if idle:
            logger.info("notification_sessions_reaped", count=len(idle))
        return len(idle)

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def publish(self, notification: Notification) -> Notification:
        for session in list(self._sessions.values()):
            session.deliver(notification)
        record_notification(notification.type)
        logger.debug(
            "notification_published",
            notification_id=notification.id,
            type=notification.type,
            sessions=len(self._sessions),
        )
        return notification

    def notify(
        self,
        type: NotificationType,
        title: str,
        message: str,
        *,
        persistent: Optional[bool] = None,
        actions: Optional[Iterable[NotificationAction]] = None,
        metadata: Optional[dict] = None,
    ) -> Notification:
        """Publish a new notification. Errors are persistent unless told otherwise."""
        if persistent is None:
            persistent = type == "error"
        return self.publish(
            Notification(
                type=type,
                title=title,
                message=message,
                persistent=persistent,
                actions=list(actions or []),
                metadata=metadata or {},
            )
        )

    def success(self, title: str, message: str, **kwargs) -> Notification:
        return self.notify("success", title, message, **kwargs)

    def error(self, title: str, message: str, **kwargs) -> Notification:
        return self.notify("error", title, message, **kwargs)

    def warning(self, title: str, message: str, **kwargs) -> Notification:
        return self.notify("warning", title, message, **kwargs)

    def info(self, title: str, message: str, **kwargs) -> Notification:
        return self.notify("info", title, message, **kwargs)
