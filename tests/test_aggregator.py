"""Unit tests for the pure aggregation functions.

Tests cover:
- Overview KPIs, including zero-denominator guards and string amounts
- Rollups by agent, service, team, day and month with deterministic ties
- Callback-creator leaderboard ranking
- Target progress and summary
- Dashboard stats and the team leader breakdown
- Purity: identical input gives identical output
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from src.app.analytics.aggregator import (
    aggregate,
    callback_performance,
    compute_overview,
    daily_trend,
    dashboard_stats,
    deal_status_distribution,
    monthly_revenue,
    recent_records,
    resolve_agent_names,
    rollup_by_agent,
    rollup_by_service,
    rollup_by_team,
    summarize_targets,
    target_progress,
    team_leader_breakdown,
    top_callback_creators,
    top_customers,
)
from src.app.analytics.normalize import normalize_records
from src.app.analytics.schemas import (
    Callback,
    Deal,
    Notification,
    RequestContext,
    Target,
    UserRecord,
    UserRole,
)

from tests.conftest import sample_callbacks, sample_deals, sample_targets, sample_users

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _context(**overrides) -> RequestContext:
    values = {"role": UserRole.MANAGER, "now": NOW}
    values.update(overrides)
    return RequestContext(**values)


def _callbacks(*statuses: str) -> list[Callback]:
    return [Callback(id=f"C{i}", status=s) for i, s in enumerate(statuses)]


# ── Overview ─────────────────────────────────────────────────────────────────


class TestOverview:
    def test_mixed_amount_types(self):
        deals = normalize_records(
            "deals", [{"amount_paid": "100"}, {"amount_paid": 50}, {"amount_paid": "bad"}]
        )

        overview = compute_overview(deals, [])

        assert overview.total_revenue == 150
        assert overview.total_deals == 3
        assert overview.average_deal_size == 50

    def test_no_deals_means_zero_average(self):
        overview = compute_overview([], _callbacks("pending"))
        assert overview.total_deals == 0
        assert overview.average_deal_size == 0

    def test_conversion_rate_is_completed_share(self):
        overview = compute_overview([], _callbacks("completed", "pending", "completed", "cancelled"))
        assert overview.total_callbacks == 4
        assert overview.pending_callbacks == 1
        assert overview.completed_callbacks == 2
        assert overview.conversion_rate == pytest.approx(50.0)

    def test_conversion_rate_zero_without_callbacks(self):
        assert compute_overview([], []).conversion_rate == 0

    @pytest.mark.parametrize(
        "statuses",
        [("completed",), ("pending", "pending"), ("completed", "completed", "pending"), ()],
    )
    def test_conversion_rate_bounds(self, statuses):
        rate = compute_overview([], _callbacks(*statuses)).conversion_rate
        assert 0 <= rate <= 100


# ── Rollups ──────────────────────────────────────────────────────────────────


class TestRollups:
    def test_agent_rollup_sorted_by_revenue(self):
        deals = [
            Deal(sales_agent_id="A", sales_agent_name="Ann", amount=100),
            Deal(sales_agent_id="B", sales_agent_name="Bob", amount=300),
            Deal(sales_agent_id="A", sales_agent_name="Ann", amount=250),
        ]

        rollup = rollup_by_agent(deals)

        assert [(r.agent, r.sales, r.deals) for r in rollup] == [("Ann", 350, 2), ("Bob", 300, 1)]
        assert rollup[0].agent_id == "A"

    def test_agent_rollup_truncates_to_limit(self):
        deals = [Deal(sales_agent_name=f"Agent {i:02d}", amount=i) for i in range(15)]
        rollup = rollup_by_agent(deals, limit=10)
        assert len(rollup) == 10
        assert rollup[0].agent == "Agent 14"

    def test_ties_break_on_label(self):
        deals = [
            Deal(team="Zeta", amount=100),
            Deal(team="Alpha", amount=100),
            Deal(team="Mid", amount=100),
        ]
        assert [r.team for r in rollup_by_team(deals)] == ["Alpha", "Mid", "Zeta"]

    def test_missing_group_field_goes_to_unknown(self):
        deals = [Deal(amount=10), Deal(service_tier="Gold", amount=5)]
        assert [r.service for r in rollup_by_service(deals)] == ["Unknown", "Gold"]
        assert rollup_by_team(deals)[0].team == "Unknown"

    def test_service_falls_back_to_program_type(self):
        assert rollup_by_service([Deal(program_type="Coaching", amount=1)])[0].service == "Coaching"

    def test_daily_trend_chronological_and_trailing(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        deals = [Deal(amount=1, created_at=start + timedelta(days=i)) for i in range(40)]

        trend = daily_trend(deals, days=30)

        assert len(trend) == 30
        assert trend[0].date == "2024-01-11"
        assert trend[-1].date == "2024-02-09"

    def test_daily_trend_prefers_signup_date(self):
        deal = Deal(amount=5, signup_date=date(2024, 3, 1), created_at=datetime(2024, 3, 5, tzinfo=timezone.utc))
        assert daily_trend([deal])[0].date == "2024-03-01"

    def test_monthly_revenue(self):
        deals = [
            Deal(amount=10, created_at=datetime(2024, 5, 3, tzinfo=timezone.utc)),
            Deal(amount=20, created_at=datetime(2024, 5, 20, tzinfo=timezone.utc)),
            Deal(amount=5, created_at=datetime(2024, 6, 1, tzinfo=timezone.utc)),
        ]
        months = monthly_revenue(deals)
        assert [(m.month, m.sales, m.deals) for m in months] == [("2024-05", 30, 2), ("2024-06", 5, 1)]

    def test_status_distribution(self):
        deals = [Deal(status="completed"), Deal(status="completed"), Deal(status="pending"), Deal()]
        shares = deal_status_distribution(deals)
        assert [(s.status, s.count, s.percentage) for s in shares] == [
            ("completed", 2, 50.0),
            ("Unknown", 1, 25.0),
            ("pending", 1, 25.0),
        ]

    def test_top_customers(self):
        deals = [Deal(customer_name="Acme", amount=5), Deal(customer_name="Globex", amount=9)]
        assert [c.customer for c in top_customers(deals, limit=1)] == ["Globex"]

    def test_callback_performance(self):
        day = datetime(2024, 6, 1, 9, tzinfo=timezone.utc)
        callbacks = [
            Callback(status="completed", created_at=day),
            Callback(status="pending", created_at=day),
            Callback(status="pending", scheduled_date=date(2024, 6, 2)),
        ]
        perf = callback_performance(callbacks)
        assert [(p.date, p.total, p.completed, p.pending, p.conversion_rate) for p in perf] == [
            ("2024-06-01", 2, 1, 1, 50.0),
            ("2024-06-02", 1, 0, 1, 0.0),
        ]


# ── Leaderboard ──────────────────────────────────────────────────────────────


class TestLeaderboard:
    def test_top_three_non_increasing(self):
        counts = {"A": 10, "B": 8, "C": 8, "D": 3, "E": 1}
        callbacks = [
            Callback(created_by_id=creator, status="completed" if i % 2 == 0 else "pending")
            for creator, count in counts.items()
            for i in range(count)
        ]

        leaders = top_callback_creators(callbacks, limit=3)

        assert len(leaders) == 3
        assert [l.callback_count for l in leaders] == [10, 8, 8]
        assert [l.rank for l in leaders] == [1, 2, 3]
        assert [l.agent_id for l in leaders] == ["A", "B", "C"]
        assert leaders[0].completed_callbacks == 5
        assert leaders[0].success_rate == 50.0

    def test_creator_falls_back_to_name(self):
        callbacks = [Callback(created_by_name="Walk-in Desk"), Callback(created_by_name="Walk-in Desk")]
        leaders = top_callback_creators(callbacks)
        assert leaders[0].agent_id == "Walk-in Desk"
        assert leaders[0].user_name == "Walk-in Desk"
        assert leaders[0].user_team == "Unknown Team"

    def test_user_details_attached(self):
        users = [UserRecord(id="L1", name="Leo", role="team_leader", team="Alpha")]
        leaders = top_callback_creators([Callback(created_by_id="L1")], users)
        assert leaders[0].user_name == "Leo"
        assert leaders[0].user_role == "team_leader"
        assert leaders[0].user_team == "Alpha"

    def test_creator_name_not_taken_from_assigned_agent(self):
        users = [UserRecord(id="L1", name="Leo Leader", role="team_leader")]
        callbacks = [Callback(created_by_id="L1", sales_agent_id="U1", sales_agent_name="Uma Seller")]

        leaders = top_callback_creators(callbacks, users)

        assert leaders[0].agent_id == "L1"
        assert leaders[0].user_name == "Leo Leader"

    def test_unknown_creator_id_does_not_borrow_agent_name(self):
        leaders = top_callback_creators([Callback(created_by_id="X9", sales_agent_name="Uma Seller")])
        assert leaders[0].user_name == "X9"

    def test_agent_fallback_uses_agent_name(self):
        leaders = top_callback_creators([Callback(sales_agent_id="U1", sales_agent_name="Uma Seller")])
        assert leaders[0].agent_id == "U1"
        assert leaders[0].user_name == "Uma Seller"

    def test_empty(self):
        assert top_callback_creators([]) == []


# ── Targets ──────────────────────────────────────────────────────────────────


class TestTargets:
    def test_half_way(self):
        progress = target_progress(Target(agent_name="Uma", target_amount=100, current_amount=50))
        assert progress.percentage == 50
        assert progress.achieved is False

    def test_met_exactly(self):
        assert target_progress(Target(target_amount=100, current_amount=100)).achieved is True

    def test_zero_target(self):
        progress = target_progress(Target(target_amount=0, current_amount=20))
        assert progress.percentage == 0
        assert progress.achieved is True

    def test_over_achievement_not_clamped(self):
        assert target_progress(Target(target_amount=100, current_amount=150)).percentage == 150

    def test_summary(self):
        summary = summarize_targets(normalize_records("targets", sample_targets()))
        assert summary.total == 2
        assert summary.achieved == 1
        assert [p.agent for p in summary.progress] == ["Uma Seller", "Ursa Seller"]


# ── Tables and names ─────────────────────────────────────────────────────────


class TestRecentAndNames:
    def test_recent_records_newest_first_undated_last(self):
        records = [
            Deal(id="old", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            Deal(id="none"),
            Deal(id="new", created_at=datetime(2024, 6, 1, tzinfo=timezone.utc)),
        ]
        assert [r.id for r in recent_records(records, 10)] == ["new", "old", "none"]
        assert [r.id for r in recent_records(records, 1)] == ["new"]

    def test_resolve_agent_names(self):
        users = [UserRecord(id="U1", name="Uma")]
        deals = [
            Deal(id="1", sales_agent_id="U1", closing_agent_id="GHOST"),
            Deal(id="2", sales_agent_id="U1", sales_agent_name="Kept"),
        ]

        resolved = resolve_agent_names(deals, users)

        assert resolved[0].sales_agent_name == "Uma"
        assert resolved[0].closing_agent_name == "Unknown Agent"
        assert resolved[1].sales_agent_name == "Kept"
        assert deals[0].sales_agent_name is None


# ── Dashboard stats ──────────────────────────────────────────────────────────


class TestDashboardStats:
    def test_counters(self):
        deals = normalize_records("deals", sample_deals())
        callbacks = normalize_records("callbacks", sample_callbacks())
        targets = normalize_records("targets", sample_targets())
        notifications = [Notification(id="N1")]

        stats = dashboard_stats(deals, callbacks, targets, notifications, NOW)

        assert stats.deals == 4
        assert stats.callbacks == 4
        assert stats.targets == 2
        assert stats.notifications == 1
        assert stats.revenue == pytest.approx(2500.5)
        assert stats.avg_deal_size == 625
        assert stats.today_deals == 1
        assert stats.today_callbacks == 1
        assert stats.pending_callbacks == 2
        # Only C2 is scheduled before today and still open.
        assert stats.overdue_callbacks == 1
        assert stats.conversion_rate == 100

    def test_empty(self):
        stats = dashboard_stats([], [], [], [], NOW)
        assert stats.avg_deal_size == 0
        assert stats.conversion_rate == 0


# ── Team leader breakdown ────────────────────────────────────────────────────


class TestTeamLeaderBreakdown:
    def test_team_excludes_leader(self):
        deals = resolve_agent_names(
            normalize_records("deals", sample_deals()), normalize_records("users", sample_users())
        )
        callbacks = normalize_records("callbacks", sample_callbacks())
        users = normalize_records("users", sample_users())

        breakdown = team_leader_breakdown(deals, callbacks, users, user_id="L1", managed_team="Alpha")

        assert breakdown.team.analytics.total_deals == 2
        assert breakdown.team.analytics.total_revenue == pytest.approx(2000.5)
        assert breakdown.team.analytics.unique_agents == 2
        assert breakdown.personal.analytics.total_deals == 1
        assert breakdown.personal.analytics.contacted_callbacks == 1
        assert [m.id for m in breakdown.team.members] == ["U1", "U2"]
        assert breakdown.personal.members is None
        assert breakdown.summary.team_name == "Alpha"
        assert breakdown.summary.total_team_deals == 3
        assert breakdown.summary.personal_contribution.revenue_percentage == 0
        assert breakdown.summary.personal_contribution.deals_percentage == pytest.approx(100 / 3)


# ── Full aggregation ─────────────────────────────────────────────────────────


class TestAggregate:
    def test_shape_and_purity(self):
        deals = normalize_records("deals", sample_deals())
        callbacks = normalize_records("callbacks", sample_callbacks())
        targets = normalize_records("targets", sample_targets())
        context = _context(recent_limit=2)

        first = aggregate(deals, callbacks, targets, context)
        second = aggregate(deals, callbacks, targets, context)

        assert first == second
        payload = first.to_json()
        assert set(payload) == {"overview", "charts", "tables", "targets"}
        assert set(payload["charts"]) == {
            "topAgents",
            "serviceDistribution",
            "teamDistribution",
            "dailyTrend",
            "monthlyRevenue",
            "dealStatus",
            "topCustomers",
            "callbackPerformance",
        }
        assert [d["id"] for d in payload["tables"]["recentDeals"]] == ["D1", "D4"]
        assert len(payload["tables"]["recentCallbacks"]) == 2
        assert payload["overview"]["totalDeals"] == 4

    def test_empty_input(self):
        payload = aggregate([], [], [], _context())
        assert payload.overview.total_deals == 0
        assert payload.overview.average_deal_size == 0
        assert payload.charts.top_agents == []
        assert payload.targets.total == 0
