"""Pure aggregation over normalized, already-scoped record sets.

Nothing in this module performs I/O or reads ambient state: "now" and every
tunable (top-N sizes, trend length) arrive through the RequestContext or as
arguments, so identical input always yields identical output.

Ordering: every ranking sorts by its numeric key descending and breaks ties by
the group label ascending (rollups) or creator key ascending (leaderboard).
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from typing import Any, TypeVar

from src.app.analytics.schemas import (
    UNKNOWN_AGENT,
    UNKNOWN_BUCKET,
    AgentRollup,
    AnalyticsPayload,
    Callback,
    CallbackCreator,
    CallbackDay,
    CallbackStatus,
    Charts,
    Contribution,
    CustomerRollup,
    DailyRollup,
    DashboardStats,
    Deal,
    MemberPerformance,
    MonthlyRollup,
    Notification,
    Overview,
    RequestContext,
    Segment,
    SegmentAnalytics,
    ServiceRollup,
    StatusShare,
    Tables,
    Target,
    TargetProgress,
    TargetsSummary,
    TeamLeaderBreakdown,
    TeamRollup,
    TeamSummary,
    UserRecord,
    UserRole,
)

RecordT = TypeVar("RecordT", bound=Any)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _money(value: float) -> float:
    return round(value, 2)


def _percentage(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _deal_day(deal: Deal) -> date | None:
    if deal.signup_date is not None:
        return deal.signup_date
    if deal.created_at is not None:
        return deal.created_at.date()
    return None


def resolve_agent_names(deals: Sequence[Deal], users: Sequence[UserRecord]) -> list[Deal]:
    """Fill missing sales/closing agent names from ``users``.

    An agent id that matches no user is reported as ``Unknown Agent``. Input
    records are not mutated.
    """
    names = {u.id: u.name or u.username for u in users}
    resolved: list[Deal] = []
    for deal in deals:
        updates: dict[str, str] = {}
        if deal.sales_agent_id and not deal.sales_agent_name:
            updates["sales_agent_name"] = names.get(deal.sales_agent_id) or UNKNOWN_AGENT
        if deal.closing_agent_id and not deal.closing_agent_name:
            updates["closing_agent_name"] = names.get(deal.closing_agent_id) or UNKNOWN_AGENT
        resolved.append(deal.model_copy(update=updates) if updates else deal)
    return resolved


# ── Overview ────────────────────────────────────────────────────────────────


def compute_overview(deals: Sequence[Deal], callbacks: Sequence[Callback]) -> Overview:
    """Scalar KPIs. Averages and rates are 0 when their denominator is 0."""
    total_deals = len(deals)
    total_revenue = sum(deal.amount for deal in deals)
    total_callbacks = len(callbacks)
    pending = sum(1 for cb in callbacks if cb.status == CallbackStatus.PENDING.value)
    completed = sum(1 for cb in callbacks if cb.status == CallbackStatus.COMPLETED.value)

    return Overview(
        total_deals=total_deals,
        total_revenue=_money(total_revenue),
        average_deal_size=_money(total_revenue / total_deals) if total_deals else 0.0,
        total_callbacks=total_callbacks,
        pending_callbacks=pending,
        completed_callbacks=completed,
        conversion_rate=_percentage(completed, total_callbacks),
    )


# ── Rollups ─────────────────────────────────────────────────────────────────


def _rollup(deals: Iterable[Deal], key_fn: Any) -> dict[str, list[float]]:
    """Group deals by label into ``label -> [revenue, count]``."""
    buckets: dict[str, list[float]] = {}
    for deal in deals:
        label = key_fn(deal) or UNKNOWN_BUCKET
        bucket = buckets.setdefault(label, [0.0, 0])
        bucket[0] += deal.amount
        bucket[1] += 1
    return buckets


def _by_revenue(buckets: dict[str, list[float]]) -> list[tuple[str, float, int]]:
    ranked = sorted(buckets.items(), key=lambda item: (-item[1][0], item[0]))
    return [(label, _money(revenue), int(count)) for label, (revenue, count) in ranked]


def rollup_by_agent(deals: Sequence[Deal], limit: int = 10) -> list[AgentRollup]:
    """Revenue per sales agent (name, falling back to id), top ``limit``."""
    agent_ids: dict[str, str | None] = {}
    for deal in deals:
        label = deal.sales_agent_name or deal.sales_agent_id or UNKNOWN_BUCKET
        agent_ids.setdefault(label, deal.sales_agent_id)

    buckets = _rollup(deals, lambda d: d.sales_agent_name or d.sales_agent_id)
    return [
        AgentRollup(agent=label, agent_id=agent_ids.get(label), sales=sales, deals=count)
        for label, sales, count in _by_revenue(buckets)[:limit]
    ]


def rollup_by_service(deals: Sequence[Deal]) -> list[ServiceRollup]:
    buckets = _rollup(deals, lambda d: d.service_tier or d.program_type)
    return [ServiceRollup(service=label, sales=sales, deals=count) for label, sales, count in _by_revenue(buckets)]


def rollup_by_team(deals: Sequence[Deal]) -> list[TeamRollup]:
    buckets = _rollup(deals, lambda d: d.team)
    return [TeamRollup(team=label, sales=sales, deals=count) for label, sales, count in _by_revenue(buckets)]


def daily_trend(deals: Sequence[Deal], days: int = 30) -> list[DailyRollup]:
    """Revenue per calendar day, chronological, trailing ``days`` buckets.

    Deals without a signup or creation date have no day and are left out.
    """
    buckets = _rollup((d for d in deals if _deal_day(d) is not None), lambda d: _deal_day(d).isoformat())
    ordered = sorted(buckets.items())[-days:] if days > 0 else []
    return [DailyRollup(date=day, sales=_money(revenue), deals=int(count)) for day, (revenue, count) in ordered]


def monthly_revenue(deals: Sequence[Deal], months: int = 12) -> list[MonthlyRollup]:
    """Revenue per ``YYYY-MM``, chronological, trailing ``months`` buckets."""
    buckets = _rollup(
        (d for d in deals if _deal_day(d) is not None),
        lambda d: _deal_day(d).strftime("%Y-%m"),
    )
    ordered = sorted(buckets.items())[-months:] if months > 0 else []
    return [MonthlyRollup(month=month, sales=_money(revenue), deals=int(count)) for month, (revenue, count) in ordered]


def deal_status_distribution(deals: Sequence[Deal]) -> list[StatusShare]:
    counts: dict[str, int] = {}
    for deal in deals:
        label = deal.status or deal.stage or UNKNOWN_BUCKET
        counts[label] = counts.get(label, 0) + 1
    total = len(deals)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        StatusShare(status=label, count=count, percentage=round(_percentage(count, total), 1))
        for label, count in ranked
    ]


def top_customers(deals: Sequence[Deal], limit: int = 10) -> list[CustomerRollup]:
    buckets = _rollup(deals, lambda d: d.customer_name)
    return [
        CustomerRollup(customer=label, sales=sales, deals=count)
        for label, sales, count in _by_revenue(buckets)[:limit]
    ]


def callback_performance(callbacks: Sequence[Callback], days: int = 30) -> list[CallbackDay]:
    """Per-day callback outcomes by creation date, trailing ``days`` buckets."""
    per_day: dict[str, list[int]] = {}
    for cb in callbacks:
        day = cb.created_at.date() if cb.created_at else cb.scheduled_date
        if day is None:
            continue
        bucket = per_day.setdefault(day.isoformat(), [0, 0, 0])
        bucket[0] += 1
        if cb.status == CallbackStatus.COMPLETED.value:
            bucket[1] += 1
        elif cb.status == CallbackStatus.PENDING.value:
            bucket[2] += 1

    ordered = sorted(per_day.items())[-days:] if days > 0 else []
    return [
        CallbackDay(
            date=day,
            total=total,
            completed=completed,
            pending=pending,
            conversion_rate=round(_percentage(completed, total), 1),
        )
        for day, (total, completed, pending) in ordered
    ]


# ── Leaderboard ─────────────────────────────────────────────────────────────


def _creator_key(cb: Callback) -> str | None:
    return cb.created_by_id or cb.created_by_name or cb.sales_agent_id or cb.sales_agent_name


def top_callback_creators(
    callbacks: Sequence[Callback],
    users: Sequence[UserRecord] = (),
    limit: int = 3,
) -> list[CallbackCreator]:
    """Rank callback creators by number of callbacks created.

    Creators are identified by creator id, falling back to creator name, then
    the assigned agent's id and name. Name, role and team come from ``users``
    when the creator is a known user.
    """
    users_by_id = {u.id: u for u in users}
    stats: dict[str, dict[str, Any]] = {}
    for cb in callbacks:
        key = _creator_key(cb)
        if key is None:
            continue
        entry = stats.setdefault(
            key,
            {"name": None, "team": None, "total": 0, "completed": 0, "pending": 0},
        )
        entry["total"] += 1
        if cb.status == CallbackStatus.COMPLETED.value:
            entry["completed"] += 1
        elif cb.status == CallbackStatus.PENDING.value:
            entry["pending"] += 1
        # The assigned agent's name only labels keys that fell back to the agent.
        has_creator = bool(cb.created_by_id or cb.created_by_name)
        entry["name"] = entry["name"] or (cb.created_by_name if has_creator else cb.sales_agent_name)
        entry["team"] = entry["team"] or cb.team

    ranked = sorted(stats.items(), key=lambda item: (-item[1]["total"], item[0]))[:limit]

    leaders: list[CallbackCreator] = []
    for rank, (key, entry) in enumerate(ranked, start=1):
        user = users_by_id.get(key)
        name = (user.name or user.username if user else None) or entry["name"] or key
        leaders.append(
            CallbackCreator(
                rank=rank,
                agent_id=key,
                user_name=name,
                user_role=(user.role if user and user.role else UserRole.SALESMAN.value),
                user_team=(user.team if user and user.team else entry["team"]) or "Unknown Team",
                callback_count=entry["total"],
                completed_callbacks=entry["completed"],
                pending_callbacks=entry["pending"],
                success_rate=round(_percentage(entry["completed"], entry["total"]), 1),
            )
        )
    return leaders


# ── Targets ─────────────────────────────────────────────────────────────────


def target_progress(target: Target) -> TargetProgress:
    """Progress of one target. The percentage is not clamped at 100."""
    return TargetProgress(
        target_id=target.id,
        agent=target.agent_name or target.agent_id or UNKNOWN_BUCKET,
        agent_id=target.agent_id,
        period=target.period,
        target=target.target_amount,
        current=target.current_amount,
        percentage=_percentage(target.current_amount, target.target_amount),
        achieved=target.current_amount >= target.target_amount,
        target_deals=target.target_deals,
        current_deals=target.current_deals,
    )


def summarize_targets(targets: Sequence[Target]) -> TargetsSummary:
    progress = [target_progress(t) for t in targets]
    return TargetsSummary(
        total=len(progress),
        achieved=sum(1 for p in progress if p.achieved),
        progress=progress,
    )


# ── Tables ──────────────────────────────────────────────────────────────────


def recent_records(records: Iterable[RecordT], limit: int = 10) -> list[RecordT]:
    """Newest ``limit`` records by created_at; undated records sort last."""
    ordered = sorted(
        records,
        key=lambda r: (r.created_at is not None, r.created_at or _EPOCH),
        reverse=True,
    )
    return ordered[: max(limit, 0)]


# ── Dashboard Stats ─────────────────────────────────────────────────────────


def dashboard_stats(
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
    targets: Sequence[Target],
    notifications: Sequence[Notification],
    now: datetime,
) -> DashboardStats:
    """Headline counters for the dashboard landing page.

    ``conversionRate`` here is deals per callback (percent, rounded), which
    is a different ratio from the overview's completed-callback rate.
    """
    today = now.astimezone(timezone.utc).date()
    revenue = sum(d.amount for d in deals)
    total_deals = len(deals)
    total_callbacks = len(callbacks)

    return DashboardStats(
        deals=total_deals,
        callbacks=total_callbacks,
        notifications=len(notifications),
        targets=len(targets),
        revenue=_money(revenue),
        avg_deal_size=_round_half_up(revenue / total_deals) if total_deals else 0,
        today_deals=sum(1 for d in deals if d.created_at is not None and d.created_at.date() == today),
        today_callbacks=sum(1 for c in callbacks if c.created_at is not None and c.created_at.date() == today),
        pending_callbacks=sum(1 for c in callbacks if c.status == CallbackStatus.PENDING.value),
        overdue_callbacks=sum(
            1
            for c in callbacks
            if c.scheduled_date is not None
            and c.scheduled_date < today
            and c.status != CallbackStatus.COMPLETED.value
        ),
        conversion_rate=_round_half_up(_percentage(total_deals, total_callbacks)),
    )


# ── Team Leader Breakdown ───────────────────────────────────────────────────


def segment_analytics(deals: Sequence[Deal], callbacks: Sequence[Callback]) -> SegmentAnalytics:
    revenue = sum(d.amount for d in deals)
    statuses = [c.status for c in callbacks]
    completed = statuses.count(CallbackStatus.COMPLETED.value)
    return SegmentAnalytics(
        total_deals=len(deals),
        total_revenue=_money(revenue),
        avg_deal_size=_money(revenue / len(deals)) if deals else 0.0,
        unique_agents=len({d.sales_agent_id for d in deals if d.sales_agent_id}),
        completed_deals=sum(1 for d in deals if d.status == "completed"),
        pending_deals=sum(1 for d in deals if d.status == "pending"),
        total_callbacks=len(callbacks),
        pending_callbacks=statuses.count(CallbackStatus.PENDING.value),
        contacted_callbacks=statuses.count(CallbackStatus.CONTACTED.value),
        completed_callbacks=completed,
        cancelled_callbacks=statuses.count(CallbackStatus.CANCELLED.value),
        conversion_rate=_percentage(completed, len(callbacks)),
    )


def member_performance(
    members: Sequence[UserRecord],
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
) -> list[MemberPerformance]:
    """Per-member deal and callback totals, highest revenue first."""
    rows: list[MemberPerformance] = []
    for member in members:
        own_deals = [d for d in deals if d.sales_agent_id == member.id]
        own_callbacks = [c for c in callbacks if c.sales_agent_id == member.id]
        revenue = sum(d.amount for d in own_deals)
        rows.append(
            MemberPerformance(
                id=member.id,
                name=member.name or member.username or member.id,
                username=member.username,
                deals_count=len(own_deals),
                total_revenue=_money(revenue),
                avg_deal_size=_money(revenue / len(own_deals)) if own_deals else 0.0,
                callbacks_count=len(own_callbacks),
                completed_callbacks=sum(1 for c in own_callbacks if c.status == CallbackStatus.COMPLETED.value),
            )
        )
    rows.sort(key=lambda m: (-m.total_revenue, m.name))
    return rows


def team_leader_breakdown(
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
    users: Sequence[UserRecord],
    user_id: str,
    managed_team: str,
    recent_limit: int = 10,
) -> TeamLeaderBreakdown:
    """Split a team leader's view into the team (excluding the leader) and personal records."""
    personal_deals = [d for d in deals if d.sales_agent_id == user_id]
    personal_callbacks = [c for c in callbacks if c.sales_agent_id == user_id]
    team_deals = [d for d in deals if d.team == managed_team and d.sales_agent_id != user_id]
    team_callbacks = [c for c in callbacks if c.team == managed_team and c.sales_agent_id != user_id]
    members = [u for u in users if u.team == managed_team and u.id != user_id]

    team = segment_analytics(team_deals, team_callbacks)
    personal = segment_analytics(personal_deals, personal_callbacks)
    combined_revenue = team.total_revenue + personal.total_revenue
    combined_deals = team.total_deals + personal.total_deals

    return TeamLeaderBreakdown(
        team=Segment(
            analytics=team,
            deals=recent_records(team_deals, recent_limit),
            callbacks=recent_records(team_callbacks, recent_limit),
            members=member_performance(members, team_deals, team_callbacks),
        ),
        personal=Segment(
            analytics=personal,
            deals=recent_records(personal_deals, recent_limit),
            callbacks=recent_records(personal_callbacks, recent_limit),
        ),
        summary=TeamSummary(
            team_name=managed_team,
            total_team_revenue=_money(combined_revenue),
            total_team_deals=combined_deals,
            personal_contribution=Contribution(
                revenue_percentage=_percentage(personal.total_revenue, combined_revenue),
                deals_percentage=_percentage(personal.total_deals, combined_deals),
            ),
        ),
    )


# ── Full Aggregation ────────────────────────────────────────────────────────


def aggregate(
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
    targets: Sequence[Target],
    context: RequestContext,
) -> AnalyticsPayload:
    """Compute overview, charts, tables and target progress for one request."""
    return AnalyticsPayload(
        overview=compute_overview(deals, callbacks),
        charts=Charts(
            top_agents=rollup_by_agent(deals, limit=context.top_agents),
            service_distribution=rollup_by_service(deals),
            team_distribution=rollup_by_team(deals),
            daily_trend=daily_trend(deals, days=context.trend_days),
            monthly_revenue=monthly_revenue(deals),
            deal_status=deal_status_distribution(deals),
            top_customers=top_customers(deals),
            callback_performance=callback_performance(callbacks, days=context.trend_days),
        ),
        tables=Tables(
            recent_deals=recent_records(deals, context.recent_limit),
            recent_callbacks=recent_records(callbacks, context.recent_limit),
        ),
        targets=summarize_targets(targets),
    )
