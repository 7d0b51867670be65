"""Analytics service: runs the scope -> fetch -> normalize -> aggregate -> assemble pipeline.

One AnalyticsService is built at startup and shared by all requests. It keeps
no per-request state; every call receives an immutable RequestContext built by
build_context().
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.app.analytics.aggregator import (
    dashboard_stats,
    resolve_agent_names,
    team_leader_breakdown,
    top_callback_creators,
)
from src.app.analytics.assembler import assemble_analytics, quick_analytics
from src.app.analytics.errors import ScopeValidationError
from src.app.analytics.fetcher import DataFetcher
from src.app.analytics.schemas import (
    AnalyticsData,
    AnalyticsResponse,
    DashboardStats,
    EntityType,
    Filters,
    LeaderboardData,
    RequestContext,
    TeamLeaderBreakdown,
    UnifiedDataResponse,
    UnifiedMetadata,
    UserRole,
)
from src.app.analytics.scope import Scope, resolve_scope
from src.app.analytics.windows import DateWindow, resolve_window

logger = structlog.get_logger(__name__)

DEFAULT_DATA_TYPES = (EntityType.DEALS.value, EntityType.CALLBACKS.value, EntityType.TARGETS.value)
KNOWN_DATA_TYPES = frozenset(e.value for e in EntityType)

DEALS = EntityType.DEALS.value
CALLBACKS = EntityType.CALLBACKS.value
TARGETS = EntityType.TARGETS.value
USERS = EntityType.USERS.value
NOTIFICATIONS = EntityType.NOTIFICATIONS.value

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_data_types(raw: str | Iterable[str] | None, role: UserRole) -> list[str]:
    """Requested entity types: defaults applied, unknown names dropped, users manager-only."""
    if raw is None:
        items: Iterable[str] = DEFAULT_DATA_TYPES
    elif isinstance(raw, str):
        items = raw.split(",") if raw.strip() else DEFAULT_DATA_TYPES
    else:
        items = raw

    requested: list[str] = []
    for item in items:
        name = item.strip().lower()
        if name not in KNOWN_DATA_TYPES or name in requested:
            continue
        if name == USERS and role is not UserRole.MANAGER:
            continue
        requested.append(name)
    return requested


def parse_int(raw: str | None) -> int | None:
    """Leading integer of a query value, or None when it does not start with one."""
    if raw is None:
        return None
    match = _LEADING_INT.match(raw)
    return int(match.group(1)) if match else None


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(limit, maximum))


class AnalyticsService:
    """Per-endpoint pipeline orchestration.

    Args:
        fetcher: DataFetcher wired to the record sources.
        recent_limit: Rows in the "recent" tables.
        top_agents: Size of the agent leaderboard chart.
        trend_days: Trailing buckets in the daily charts.
        leaderboard_size: Size of the callback-creator leaderboard.
    """

    def __init__(
        self,
        fetcher: DataFetcher,
        recent_limit: int = 10,
        top_agents: int = 10,
        trend_days: int = 30,
        leaderboard_size: int = 3,
    ) -> None:
        self._fetcher = fetcher
        self._recent_limit = recent_limit
        self._top_agents = top_agents
        self._trend_days = trend_days
        self._leaderboard_size = leaderboard_size

    @property
    def fetcher(self) -> DataFetcher:
        return self._fetcher

    # ── Context ─────────────────────────────────────────────────────────────

    def build_context(
        self,
        role: str | None,
        user_id: str | None = None,
        user_name: str | None = None,
        managed_team: str | None = None,
        date_range: str | None = None,
        now: datetime | None = None,
    ) -> RequestContext:
        """Validate request parameters into a RequestContext.

        Raises:
            ScopeValidationError: missing/unknown role, missing user id for a
                non-manager, or an unknown date range.
        """
        now = now or datetime.now(timezone.utc)
        scope = resolve_scope(role, user_id, managed_team)
        date_range = (date_range or "all").strip().lower() or "all"
        resolve_window(date_range, now)

        return RequestContext(
            role=scope.role,
            user_id=scope.user_id,
            user_name=(user_name or "").strip() or None,
            managed_team=scope.managed_team,
            date_range=date_range,
            now=now,
            recent_limit=self._recent_limit,
            top_agents=self._top_agents,
            trend_days=self._trend_days,
            leaderboard_size=self._leaderboard_size,
        )

    @staticmethod
    def scope_for(context: RequestContext) -> Scope:
        return resolve_scope(context.role, context.user_id, context.managed_team)

    @staticmethod
    def window_for(context: RequestContext) -> DateWindow:
        return resolve_window(context.date_range, context.now)

    @staticmethod
    def filters_for(context: RequestContext) -> Filters:
        return Filters(
            user_role=context.role.value,
            user_id=context.user_id,
            user_name=context.user_name,
            managed_team=context.managed_team,
            date_range=context.date_range,
        )

    # ── /analytics ──────────────────────────────────────────────────────────

    async def analytics(self, context: RequestContext) -> AnalyticsResponse:
        """Scoped deals, callbacks and targets plus the full analytics block."""
        scope = self.scope_for(context)
        result = await self._fetcher.fetch_many(
            (DEALS, CALLBACKS, TARGETS, USERS), scope, self.window_for(context)
        )

        deals = resolve_agent_names(result.get(DEALS), result.get(USERS))
        callbacks = result.get(CALLBACKS)
        targets = result.get(TARGETS)
        payload = assemble_analytics(deals, callbacks, targets, context, endpoint="analytics")

        logger.info(
            "analytics.request_served",
            endpoint="analytics",
            role=context.role.value,
            user_id=context.user_id,
            deals=len(deals),
            callbacks=len(callbacks),
            targets=len(targets),
            failed=result.failed,
        )

        return AnalyticsResponse(
            data=AnalyticsData(
                deals=deals,
                callbacks=callbacks,
                targets=targets,
                analytics=payload,
                filters=self.filters_for(context),
            ),
            timestamp=context.now,
        )

    # ── /unified-data ───────────────────────────────────────────────────────

    async def unified_data(
        self,
        context: RequestContext,
        data_types: list[str],
        limit: int,
        offset: int = 0,
    ) -> UnifiedDataResponse:
        """Paged record sets for the requested types, plus quick analytics.

        Raises:
            DataSourceUnavailableError: the connectivity pre-check failed.
        """
        scope = self.scope_for(context)
        offset = max(offset, 0)
        if data_types:
            await self._fetcher.ping(data_types)

        result = await self._fetcher.fetch_many(
            data_types, scope, self.window_for(context), limit=limit, offset=offset
        )

        data: dict[str, Any] = {}
        for entity in data_types:
            data[entity] = [record.to_json() for record in result.get(entity)]

        if DEALS in data_types and CALLBACKS in data_types:
            quick = quick_analytics(result.get(DEALS), result.get(CALLBACKS), context.now)
            data["analytics"] = quick.to_json() if quick is not None else None

        logger.info(
            "analytics.request_served",
            endpoint="unified-data",
            role=context.role.value,
            user_id=context.user_id,
            data_types=data_types,
            counts={entity: len(result.get(entity)) for entity in data_types},
            failed=result.failed,
        )

        return UnifiedDataResponse(
            data=data,
            metadata=UnifiedMetadata(
                user_role=context.role.value,
                user_id=context.user_id,
                user_name=context.user_name,
                managed_team=context.managed_team,
                data_types=data_types,
                date_range=context.date_range,
                limit=limit,
                offset=offset,
                failed=result.failed,
                timestamp=context.now,
            ),
        )

    # ── Supplementary endpoints ─────────────────────────────────────────────

    async def callback_creators(self, context: RequestContext) -> LeaderboardData:
        result = await self._fetcher.fetch_many(
            (CALLBACKS, USERS), self.scope_for(context), self.window_for(context)
        )
        leaders = top_callback_creators(
            result.get(CALLBACKS), result.get(USERS), limit=context.leaderboard_size
        )
        return LeaderboardData(top_callback_creators=leaders, total_creators=len(leaders))

    async def dashboard_stats(self, context: RequestContext) -> DashboardStats:
        entities = [DEALS, CALLBACKS, TARGETS]
        if self._fetcher.supports(NOTIFICATIONS):
            entities.append(NOTIFICATIONS)
        result = await self._fetcher.fetch_many(entities, self.scope_for(context), self.window_for(context))
        return dashboard_stats(
            result.get(DEALS),
            result.get(CALLBACKS),
            result.get(TARGETS),
            result.get(NOTIFICATIONS),
            context.now,
        )

    async def team_leader_analytics(self, context: RequestContext) -> TeamLeaderBreakdown:
        """Team versus personal breakdown for a team leader.

        Raises:
            ScopeValidationError: the context is not a team leader with a
                managed team.
        """
        if context.role is not UserRole.TEAM_LEADER:
            raise ScopeValidationError("team leader analytics require the team_leader role")
        if not context.managed_team or not context.user_id:
            raise ScopeValidationError("userId and managedTeam are required")

        result = await self._fetcher.fetch_many(
            (DEALS, CALLBACKS, USERS), self.scope_for(context), self.window_for(context)
        )
        deals = resolve_agent_names(result.get(DEALS), result.get(USERS))
        return team_leader_breakdown(
            deals,
            result.get(CALLBACKS),
            result.get(USERS),
            user_id=context.user_id,
            managed_team=context.managed_team,
            recent_limit=context.recent_limit,
        )
