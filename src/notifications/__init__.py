"""
Live notifications for connected UI sessions.

Usage:
    from src.notifications import NotificationDispatcher

    dispatcher = NotificationDispatcher()
    session = dispatcher.subscribe()
    dispatcher.error("Apply failed", "Error: InvalidVpcID")
"""

from src.notifications.dispatcher import NotificationDispatcher, NotificationSession

__all__ = ["NotificationDispatcher", "NotificationSession"]
