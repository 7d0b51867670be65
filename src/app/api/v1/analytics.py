"""REST endpoints for role-scoped dashboard analytics.

Endpoints:
- GET /analytics                       full analytics for the caller's scope
- GET /unified-data                    paged record sets plus quick analytics
- GET /analytics/callback-creators     top callback creators leaderboard
- GET /analytics/dashboard-stats       headline dashboard counters
- GET /team-leader-analytics           team versus personal breakdown

Every response is marked non-cacheable. Errors use the envelope
``{success: false, error, message, timestamp}``: 400 for invalid parameters,
500 for pipeline failures (with a ``debug`` block on /unified-data).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.app.analytics.errors import DataSourceUnavailableError, ScopeValidationError
from src.app.analytics.schemas import ErrorResponse, RequestContext, UserRole
from src.app.analytics.service import AnalyticsService, clamp_limit, parse_data_types, parse_int
from src.app.api.deps import get_analytics_service
from src.app.config import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["analytics"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Accel-Expires": "0",
}

TEAM_LEADER_VIEWS = ("full", "team", "personal")


# ── Response Helpers ─────────────────────────────────────────────────────────


def _no_store(content: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=NO_STORE_HEADERS)


def _error(
    status_code: int,
    error: str,
    message: str,
    debug: dict[str, Any] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        timestamp=datetime.now(timezone.utc),
        debug=debug,
    ).to_json()
    if debug is None:
        body.pop("debug", None)
    return _no_store(body, status_code=status_code)


def _validation_error(exc: ScopeValidationError) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, str(exc), str(exc))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return the 400 error envelope for malformed query or body values."""
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    logger.info("api.invalid_request", path=request.url.path, errors=len(exc.errors()))
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid request parameters", message)


def _success(data: Any, context: RequestContext) -> dict[str, Any]:
    return {"success": True, "data": data, "timestamp": context.now.isoformat()}


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/analytics")
async def get_analytics(
    user_role: str | None = Query(default=None, alias="userRole"),
    user_id: str | None = Query(default=None, alias="userId"),
    user_name: str | None = Query(default=None, alias="userName"),
    managed_team: str | None = Query(default=None, alias="managedTeam"),
    date_range: str = Query(default="all", alias="dateRange"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    """Scoped deals, callbacks, targets and the analytics block."""
    try:
        context = service.build_context(user_role, user_id, user_name, managed_team, date_range)
    except ScopeValidationError as exc:
        return _validation_error(exc)

    try:
        response = await service.analytics(context)
    except Exception as exc:
        logger.exception("analytics.request_failed", endpoint="analytics", role=user_role, user_id=user_id)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch analytics data", str(exc))

    return _no_store(response.to_json())


@router.get("/unified-data")
async def get_unified_data(
    user_role: str | None = Query(default=None, alias="userRole"),
    user_id: str | None = Query(default=None, alias="userId"),
    user_name: str | None = Query(default=None, alias="userName"),
    managed_team: str | None = Query(default=None, alias="managedTeam"),
    data_types: str | None = Query(default=None, alias="dataTypes"),
    date_range: str = Query(default="all", alias="dateRange"),
    limit: str | None = Query(default=None),
    offset: str | None = Query(default=None),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    """Record sets for the requested ``dataTypes`` with limit/offset paging."""
    try:
        context = service.build_context(user_role, user_id, user_name, managed_team, date_range)
    except ScopeValidationError as exc:
        return _validation_error(exc)

    settings = get_settings()
    requested = parse_data_types(data_types, context.role)
    page_size = clamp_limit(
        parse_int(limit), settings.UNIFIED_DATA_DEFAULT_LIMIT, settings.UNIFIED_DATA_MAX_LIMIT
    )
    page_offset = max(parse_int(offset) or 0, 0)

    try:
        response = await service.unified_data(context, requested, limit=page_size, offset=page_offset)
    except Exception as exc:
        if isinstance(exc, DataSourceUnavailableError):
            logger.error("analytics.precheck_failed", endpoint="unified-data", error=str(exc))
        else:
            logger.exception("analytics.request_failed", endpoint="unified-data")
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to fetch unified data",
            str(exc),
            debug={
                "userRole": user_role,
                "dataTypes": requested,
                "userId": user_id,
                "userName": user_name,
            },
        )

    return _no_store(response.to_json())


@router.get("/analytics/callback-creators")
async def get_callback_creators(
    user_role: str | None = Query(default=UserRole.MANAGER.value, alias="userRole"),
    user_id: str | None = Query(default=None, alias="userId"),
    managed_team: str | None = Query(default=None, alias="managedTeam"),
    date_range: str = Query(default="all", alias="dateRange"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    """Top callback creators within the caller's scope."""
    try:
        context = service.build_context(user_role, user_id, None, managed_team, date_range)
    except ScopeValidationError as exc:
        return _validation_error(exc)

    try:
        leaderboard = await service.callback_creators(context)
    except Exception as exc:
        logger.exception("analytics.request_failed", endpoint="callback-creators")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch top callback creators", str(exc))

    return _no_store(_success(leaderboard.to_json(), context))


@router.get("/analytics/dashboard-stats")
async def get_dashboard_stats(
    user_role: str | None = Query(default=UserRole.MANAGER.value, alias="userRole"),
    user_id: str | None = Query(default=None, alias="userId"),
    managed_team: str | None = Query(default=None, alias="managedTeam"),
    date_range: str = Query(default="all", alias="dateRange"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    """Headline counters: totals, today's activity, overdue callbacks."""
    try:
        context = service.build_context(user_role, user_id, None, managed_team, date_range)
    except ScopeValidationError as exc:
        return _validation_error(exc)

    try:
        stats = await service.dashboard_stats(context)
    except Exception as exc:
        logger.exception("analytics.request_failed", endpoint="dashboard-stats")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch dashboard statistics", str(exc))

    data = stats.to_json()
    data.update(
        {
            "userRole": context.role.value,
            "userId": context.user_id,
            "managedTeam": context.managed_team,
        }
    )
    return _no_store(_success(data, context))


@router.get("/team-leader-analytics")
async def get_team_leader_analytics(
    user_id: str | None = Query(default=None, alias="userId"),
    managed_team: str | None = Query(default=None, alias="managedTeam"),
    date_range: str = Query(default="all", alias="dateRange"),
    view: str = Query(default="full"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    """Team (excluding the leader) and personal analytics for a team leader."""
    if view not in TEAM_LEADER_VIEWS:
        return _validation_error(
            ScopeValidationError(f"view must be one of: {', '.join(TEAM_LEADER_VIEWS)}")
        )
    if not (user_id or "").strip() or not (managed_team or "").strip():
        return _validation_error(ScopeValidationError("userId and managedTeam are required"))

    try:
        context = service.build_context(
            UserRole.TEAM_LEADER.value, user_id, None, managed_team, date_range
        )
    except ScopeValidationError as exc:
        return _validation_error(exc)

    try:
        breakdown = await service.team_leader_analytics(context)
    except Exception as exc:
        logger.exception("analytics.request_failed", endpoint="team-leader-analytics")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch team leader analytics", str(exc))

    if view == "team":
        data = breakdown.team.to_json()
    elif view == "personal":
        data = breakdown.personal.to_json()
        data.pop("members", None)
    else:
        data = breakdown.to_json()
        data["personal"].pop("members", None)

    body = _success(data, context)
    body["filters"] = {
        "userId": context.user_id,
        "managedTeam": context.managed_team,
        "dateRange": context.date_range,
        "view": view,
    }
    return _no_store(body)
