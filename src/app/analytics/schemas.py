"""Pydantic schemas for the analytics pipeline.

Three groups of models live here:

- Canonical records (Deal, Callback, Target, UserRecord, Notification) produced
  by the normalizer. Every alias spelling found upstream is collapsed into
  these field names before any aggregation runs.
- Aggregation output (Overview, rollups, AnalyticsPayload, leaderboard, team
  leader breakdown, dashboard stats).
- Request context and HTTP envelopes.

All models serialize to camelCase (``totalDeals``, ``salesAgentId``) because
that is the shape the dashboard front end consumes.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        """Dump with camelCase aliases and JSON-safe values."""
        return self.model_dump(by_alias=True, mode="json")


# ── Enums ───────────────────────────────────────────────────────────────────


class UserRole(str, Enum):
    """Dashboard roles, from widest to narrowest visibility."""

    MANAGER = "manager"
    TEAM_LEADER = "team_leader"
    SALESMAN = "salesman"


class EntityType(str, Enum):
    """Record collections the fetcher knows how to read."""

    DEALS = "deals"
    CALLBACKS = "callbacks"
    TARGETS = "targets"
    NOTIFICATIONS = "notifications"
    USERS = "users"


class CallbackStatus(str, Enum):
    PENDING = "pending"
    CONTACTED = "contacted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CONVERTED = "converted"


UNKNOWN_AGENT = "Unknown Agent"
UNKNOWN_BUCKET = "Unknown"


# ── Canonical Records ───────────────────────────────────────────────────────


class Deal(CamelModel):
    """A closed or in-progress sale."""

    id: str | None = None
    deal_id: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    amount: float = Field(default=0.0, ge=0.0)
    sales_agent_id: str | None = None
    sales_agent_name: str | None = None
    closing_agent_id: str | None = None
    closing_agent_name: str | None = None
    team: str | None = None
    service_tier: str | None = None
    program_type: str | None = None
    duration_months: int | None = None
    signup_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    status: str | None = None
    stage: str | None = None


class Callback(CamelModel):
    """A scheduled customer follow-up."""

    id: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    sales_agent_id: str | None = None
    sales_agent_name: str | None = None
    team: str | None = None
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    reason: str | None = None
    notes: str | None = None
    status: str = CallbackStatus.PENDING.value
    converted_to_deal: bool = False
    deal_id: str | None = None
    created_by_id: str | None = None
    created_by_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Target(CamelModel):
    """Period-scoped revenue and deal-count goal for one agent."""

    id: str | None = None
    agent_id: str | None = None
    agent_name: str | None = None
    manager_id: str | None = None
    manager_name: str | None = None
    team: str | None = None
    period: str | None = None
    target_amount: float = 0.0
    target_deals: int = 0
    current_amount: float = 0.0
    current_deals: int = 0
    type: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserRecord(CamelModel):
    """Dashboard user as stored in the users table (no credentials)."""

    id: str
    username: str | None = None
    name: str | None = None
    email: str | None = None
    role: str | None = None
    team: str | None = None
    managed_team: str | None = None
    created_at: datetime | None = None


class Notification(CamelModel):
    """Notification document from the document store."""

    id: str
    title: str = ""
    message: str = ""
    type: str = "info"
    priority: str = "medium"
    sender: str | None = None
    sender_name: str | None = None
    recipients: list[str] = Field(default_factory=list)
    read_by: list[str] = Field(default_factory=list)
    is_read: bool = False
    deal_id: str | None = None
    callback_id: str | None = None
    target_id: str | None = None
    sales_agent_id: str | None = None
    team: str | None = None
    created_at: datetime | None = None


# ── Request Context ─────────────────────────────────────────────────────────


class RequestContext(BaseModel):
    """Immutable per-request inputs handed explicitly to every pipeline stage."""

    model_config = ConfigDict(frozen=True)

    role: UserRole
    user_id: str | None = None
    user_name: str | None = None
    managed_team: str | None = None
    date_range: str = "all"
    now: datetime
    recent_limit: int = 10
    top_agents: int = 10
    trend_days: int = 30
    leaderboard_size: int = 3


# ── Aggregation Output ──────────────────────────────────────────────────────


class Overview(CamelModel):
    total_deals: int = 0
    total_revenue: float = 0.0
    average_deal_size: float = 0.0
    total_callbacks: int = 0
    pending_callbacks: int = 0
    completed_callbacks: int = 0
    conversion_rate: float = 0.0


class AgentRollup(CamelModel):
    agent: str
    agent_id: str | None = None
    sales: float = 0.0
    deals: int = 0


class ServiceRollup(CamelModel):
    service: str
    sales: float = 0.0
    deals: int = 0


class TeamRollup(CamelModel):
    team: str
    sales: float = 0.0
    deals: int = 0


class DailyRollup(CamelModel):
    date: str
    sales: float = 0.0
    deals: int = 0


class MonthlyRollup(CamelModel):
    month: str
    sales: float = 0.0
    deals: int = 0


class CustomerRollup(CamelModel):
    customer: str
    sales: float = 0.0
    deals: int = 0


class StatusShare(CamelModel):
    status: str
    count: int = 0
    percentage: float = 0.0


class CallbackDay(CamelModel):
    date: str
    total: int = 0
    completed: int = 0
    pending: int = 0
    conversion_rate: float = 0.0


class Charts(CamelModel):
    top_agents: list[AgentRollup] = Field(default_factory=list)
    service_distribution: list[ServiceRollup] = Field(default_factory=list)
    team_distribution: list[TeamRollup] = Field(default_factory=list)
    daily_trend: list[DailyRollup] = Field(default_factory=list)
    monthly_revenue: list[MonthlyRollup] = Field(default_factory=list)
    deal_status: list[StatusShare] = Field(default_factory=list)
    top_customers: list[CustomerRollup] = Field(default_factory=list)
    callback_performance: list[CallbackDay] = Field(default_factory=list)


class Tables(CamelModel):
    recent_deals: list[Deal] = Field(default_factory=list)
    recent_callbacks: list[Callback] = Field(default_factory=list)


class TargetProgress(CamelModel):
    target_id: str | None = None
    agent: str
    agent_id: str | None = None
    period: str | None = None
    target: float = 0.0
    current: float = 0.0
    percentage: float = 0.0
    achieved: bool = False
    target_deals: int = 0
    current_deals: int = 0


class TargetsSummary(CamelModel):
    total: int = 0
    achieved: int = 0
    progress: list[TargetProgress] = Field(default_factory=list)


class AnalyticsPayload(CamelModel):
    """The stable-shape analytics block returned by /analytics."""

    overview: Overview = Field(default_factory=Overview)
    charts: Charts = Field(default_factory=Charts)
    tables: Tables = Field(default_factory=Tables)
    targets: TargetsSummary = Field(default_factory=TargetsSummary)


class QuickAnalytics(CamelModel):
    overview: Overview
    timestamp: datetime


class CallbackCreator(CamelModel):
    rank: int
    agent_id: str
    user_name: str
    user_role: str = UserRole.SALESMAN.value
    user_team: str = "Unknown Team"
    callback_count: int = 0
    completed_callbacks: int = 0
    pending_callbacks: int = 0
    success_rate: float = 0.0


class LeaderboardData(CamelModel):
    top_callback_creators: list[CallbackCreator] = Field(default_factory=list)
    total_creators: int = 0


class DashboardStats(CamelModel):
    deals: int = 0
    callbacks: int = 0
    notifications: int = 0
    targets: int = 0
    revenue: float = 0.0
    avg_deal_size: int = 0
    today_deals: int = 0
    today_callbacks: int = 0
    pending_callbacks: int = 0
    overdue_callbacks: int = 0
    conversion_rate: int = 0


class SegmentAnalytics(CamelModel):
    total_deals: int = 0
    total_revenue: float = 0.0
    avg_deal_size: float = 0.0
    unique_agents: int = 0
    completed_deals: int = 0
    pending_deals: int = 0
    total_callbacks: int = 0
    pending_callbacks: int = 0
    contacted_callbacks: int = 0
    completed_callbacks: int = 0
    cancelled_callbacks: int = 0
    conversion_rate: float = 0.0


class MemberPerformance(CamelModel):
    id: str
    name: str
    username: str | None = None
    deals_count: int = 0
    total_revenue: float = 0.0
    avg_deal_size: float = 0.0
    callbacks_count: int = 0
    completed_callbacks: int = 0


class Segment(CamelModel):
    analytics: SegmentAnalytics = Field(default_factory=SegmentAnalytics)
    deals: list[Deal] = Field(default_factory=list)
    callbacks: list[Callback] = Field(default_factory=list)
    members: list[MemberPerformance] | None = None


class Contribution(CamelModel):
    revenue_percentage: float = 0.0
    deals_percentage: float = 0.0


class TeamSummary(CamelModel):
    team_name: str
    total_team_revenue: float = 0.0
    total_team_deals: int = 0
    personal_contribution: Contribution = Field(default_factory=Contribution)


class TeamLeaderBreakdown(CamelModel):
    team: Segment
    personal: Segment
    summary: TeamSummary


# ── HTTP Envelopes ──────────────────────────────────────────────────────────


class Filters(CamelModel):
    user_role: str
    user_id: str | None = None
    user_name: str | None = None
    managed_team: str | None = None
    date_range: str = "all"


class AnalyticsData(CamelModel):
    deals: list[Deal] = Field(default_factory=list)
    callbacks: list[Callback] = Field(default_factory=list)
    targets: list[Target] = Field(default_factory=list)
    analytics: AnalyticsPayload = Field(default_factory=AnalyticsPayload)
    filters: Filters


class AnalyticsResponse(CamelModel):
    success: bool = True
    data: AnalyticsData
    timestamp: datetime
    fresh: bool = True


class UnifiedMetadata(CamelModel):
    user_role: str
    user_id: str | None = None
    user_name: str | None = None
    managed_team: str | None = None
    data_types: list[str] = Field(default_factory=list)
    date_range: str = "all"
    limit: int
    offset: int
    failed: list[str] = Field(default_factory=list)
    timestamp: datetime


class UnifiedDataResponse(CamelModel):
    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: UnifiedMetadata


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    message: str
    timestamp: datetime
    debug: dict[str, Any] | None = None
