"""Response assembly with a stable-shape fallback.

The analytics block handed to clients always has the same shape. If the
aggregator raises on unexpected data, a zero-valued payload is substituted,
built only from the raw record counts that were already fetched.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import structlog

from src.app.analytics.aggregator import aggregate, compute_overview
from src.app.analytics.schemas import (
    AnalyticsPayload,
    Callback,
    Deal,
    Overview,
    QuickAnalytics,
    RequestContext,
    Tables,
    Target,
    TargetsSummary,
)
from src.app.core.monitoring import record_aggregation_fallback

logger = structlog.get_logger(__name__)

FALLBACK_SAMPLE_SIZE = 10


def empty_payload(
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
    targets: Sequence[Target],
) -> AnalyticsPayload:
    """Zero KPIs and empty charts, keeping raw counts and the first rows as tables."""
    return AnalyticsPayload(
        overview=Overview(total_deals=len(deals), total_callbacks=len(callbacks)),
        tables=Tables(
            recent_deals=list(deals[:FALLBACK_SAMPLE_SIZE]),
            recent_callbacks=list(callbacks[:FALLBACK_SAMPLE_SIZE]),
        ),
        targets=TargetsSummary(total=len(targets)),
    )


def assemble_analytics(
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
    targets: Sequence[Target],
    context: RequestContext,
    endpoint: str = "analytics",
) -> AnalyticsPayload:
    """Aggregate, or fall back to empty_payload() if aggregation raises."""
    try:
        return aggregate(deals, callbacks, targets, context)
    except Exception:
        logger.exception(
            "analytics.aggregation_failed",
            endpoint=endpoint,
            role=context.role.value,
            deals=len(deals),
            callbacks=len(callbacks),
            targets=len(targets),
        )
        record_aggregation_fallback(endpoint)
        return empty_payload(deals, callbacks, targets)


def quick_analytics(
    deals: Sequence[Deal],
    callbacks: Sequence[Callback],
    now: datetime,
) -> QuickAnalytics | None:
    """Overview-only analytics for /unified-data; None if it cannot be computed."""
    try:
        return QuickAnalytics(overview=compute_overview(deals, callbacks), timestamp=now)
    except Exception:
        logger.exception("analytics.quick_analytics_failed", deals=len(deals), callbacks=len(callbacks))
        record_aggregation_fallback("unified-data")
        return None
