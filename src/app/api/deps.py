"""FastAPI dependencies for the services built at startup.

The lifespan handler in main.py places the analytics service and the
notification store on ``app.state``; endpoints pull them from there and get
a 503 if startup did not complete.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.app.analytics.service import AnalyticsService
from src.app.notifications.store import NotificationStore


def get_analytics_service(request: Request) -> AnalyticsService:
    """Retrieve AnalyticsService from app.state, 503 if not available."""
    service = getattr(request.app.state, "analytics_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics service not initialized",
        )
    return service


def get_notification_store(request: Request) -> NotificationStore:
    """Retrieve NotificationStore from app.state, 503 if not available."""
    store = getattr(request.app.state, "notification_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification store not initialized",
        )
    return store
