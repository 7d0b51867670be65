"""Notification documents stored in Redis.

Exports:
    NotificationStore: create/list/mark-read operations, also usable as the
        ``notifications`` record source for the analytics fetcher.
    NotificationCreate: Request body for creating a notification.
"""

from __future__ import annotations

from src.app.notifications.schemas import NotificationCreate
from src.app.notifications.store import NotificationStore

__all__ = [
    "NotificationCreate",
    "NotificationStore",
]
