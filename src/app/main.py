"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan wiring for the analytics pipeline and notification store, and the
v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.analytics.fetcher import DataFetcher, SQLRecordSource
from src.app.analytics.schemas import EntityType
from src.app.analytics.service import AnalyticsService
from src.app.config import get_settings
from src.app.core.database import close_db, get_session
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.core.redis import close_redis, get_redis_pool
from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.analytics import request_validation_handler
from src.app.api.v1.router import router as v1_router
from src.app.notifications.store import NotificationStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build the pipeline on startup, close pools on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Notification Store ───────────────────────────────────────────────
    try:
        notification_store = NotificationStore(
            get_redis_pool(), ttl_days=settings.NOTIFICATION_TTL_DAYS
        )
        app.state.notification_store = notification_store
        log.info("notifications.store_initialized", ttl_days=settings.NOTIFICATION_TTL_DAYS)
    except Exception:
        log.warning("notifications.store_init_failed", exc_info=True)
        notification_store = None
        app.state.notification_store = None

    # ── Analytics Pipeline ───────────────────────────────────────────────
    try:
        sql_source = SQLRecordSource(session_factory=get_session)
        sources = {
            EntityType.DEALS.value: sql_source,
            EntityType.CALLBACKS.value: sql_source,
            EntityType.TARGETS.value: sql_source,
            EntityType.USERS.value: sql_source,
        }
        if notification_store is not None:
            sources[EntityType.NOTIFICATIONS.value] = notification_store

        fetcher = DataFetcher(sources, timeout=settings.ANALYTICS_FETCH_TIMEOUT_SECONDS)
        app.state.analytics_service = AnalyticsService(
            fetcher,
            recent_limit=settings.ANALYTICS_RECENT_LIMIT,
            top_agents=settings.ANALYTICS_TOP_AGENTS,
            trend_days=settings.ANALYTICS_TREND_DAYS,
            leaderboard_size=settings.LEADERBOARD_SIZE,
        )
        log.info(
            "analytics.pipeline_initialized",
            entities=sorted(sources),
            fetch_timeout=settings.ANALYTICS_FETCH_TIMEOUT_SECONDS,
        )
    except Exception:
        log.warning("analytics.pipeline_init_failed", exc_info=True)
        app.state.analytics_service = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Sales Dashboard Analytics API",
        version="0.1.0",
        description="Role-scoped analytics and notifications for the sales CRM dashboard",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
