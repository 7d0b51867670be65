"""REST endpoints for notifications.

Endpoints:
- GET  /notifications                   notifications visible to the caller
- POST /notifications                   create a notification (recipients required)
- PUT  /notifications/{id}/read         mark one notification read for a user
- PUT  /notifications/read-all          mark everything visible to a user read
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.app.analytics.errors import ScopeValidationError
from src.app.analytics.scope import resolve_scope
from src.app.api.deps import get_notification_store
from src.app.api.v1.analytics import NO_STORE_HEADERS
from src.app.notifications.schemas import MarkAllReadRequest, MarkReadRequest, NotificationCreate
from src.app.notifications.store import NotificationStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _response(content: dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=NO_STORE_HEADERS)


def _failure(status_code: int, error: str, message: str) -> JSONResponse:
    return _response(
        {
            "success": False,
            "error": error,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status_code=status_code,
    )


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )


@router.get("")
async def list_notifications(
    user_role: str | None = Query(default=None, alias="userRole"),
    user_id: str | None = Query(default=None, alias="userId"),
    managed_team: str | None = Query(default=None, alias="managedTeam"),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: NotificationStore = Depends(get_notification_store),
) -> JSONResponse:
    try:
        scope = resolve_scope(user_role, user_id, managed_team)
    except ScopeValidationError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc), str(exc))

    try:
        notifications = await store.list_for_scope(scope, limit=limit, offset=offset, unread_only=unread_only)
        unread = await store.count_for_scope(scope, unread_only=True)
    except Exception as exc:
        logger.exception("notifications.list_failed", user_id=user_id)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error reading notifications", str(exc))

    return _response(
        {
            "success": True,
            "data": [n.to_json() for n in notifications],
            "unreadCount": unread,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@router.post("")
async def create_notification(
    payload: dict[str, Any] = Body(...),
    store: NotificationStore = Depends(get_notification_store),
) -> JSONResponse:
    try:
        data = NotificationCreate.model_validate(payload)
    except ValidationError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, "Invalid notification", _validation_message(exc))

    try:
        notification = await store.create(data)
    except Exception as exc:
        logger.exception("notifications.create_failed")
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error creating notification", str(exc))

    return _response({"success": True, "data": notification.to_json()}, status_code=status.HTTP_201_CREATED)


@router.put("/read-all")
async def mark_all_notifications_read(
    payload: dict[str, Any] = Body(...),
    store: NotificationStore = Depends(get_notification_store),
) -> JSONResponse:
    try:
        body = MarkAllReadRequest.model_validate(payload)
        scope = resolve_scope(body.user_role, body.user_id, body.managed_team)
    except ValidationError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, "Invalid request", _validation_message(exc))
    except ScopeValidationError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc), str(exc))

    try:
        updated = await store.mark_all_read(body.user_id, scope)
    except Exception as exc:
        logger.exception("notifications.mark_all_read_failed", user_id=body.user_id)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error updating notifications", str(exc))

    return _response({"success": True, "updated": updated})


@router.put("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    payload: dict[str, Any] = Body(...),
    store: NotificationStore = Depends(get_notification_store),
) -> JSONResponse:
    try:
        body = MarkReadRequest.model_validate(payload)
    except ValidationError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, "Invalid request", _validation_message(exc))

    try:
        notification = await store.mark_read(notification_id, body.user_id)
    except Exception as exc:
        logger.exception("notifications.mark_read_failed", notification_id=notification_id)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error updating notification", str(exc))

    if notification is None:
        return _failure(
            status.HTTP_404_NOT_FOUND,
            "Notification not found",
            f"No notification with id {notification_id}",
        )
    return _response({"success": True, "data": notification.to_json()})
