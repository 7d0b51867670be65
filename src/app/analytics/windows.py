"""Symbolic date ranges and the look-back windows they map to.

Provides:
- DateRange: the symbolic values accepted by the analytics endpoints
- DateWindow: inclusive lower bound on record creation time (None = unbounded)
- resolve_window(): turn a request's dateRange string into a DateWindow
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from src.app.analytics.errors import ScopeValidationError


class DateRange(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    ALL = "all"


LOOKBACK_DAYS: dict[DateRange, int] = {
    DateRange.WEEK: 7,
    DateRange.MONTH: 30,
    DateRange.QUARTER: 90,
    DateRange.YEAR: 365,
}


@dataclass(frozen=True)
class DateWindow:
    """Records created at or after ``start`` fall inside the window."""

    start: datetime | None = None

    @property
    def unbounded(self) -> bool:
        return self.start is None

    def contains(self, created_at: datetime | None) -> bool:
        if self.start is None:
            return True
        if created_at is None:
            return False
        return created_at >= self.start


def resolve_window(date_range: str | None, now: datetime) -> DateWindow:
    """Map a dateRange query value onto a DateWindow relative to ``now``.

    ``today`` starts at midnight UTC of the current day. A bare positive
    integer is read as a custom look-back in days.

    Raises:
        ScopeValidationError: for values that are neither symbolic nor numeric.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    value = (date_range or DateRange.ALL.value).strip().lower()

    if value.isdigit():
        days = int(value)
        if days <= 0:
            raise ScopeValidationError(f"dateRange must be a positive number of days, got {value}")
        return DateWindow(start=now - timedelta(days=days))

    try:
        symbolic = DateRange(value)
    except ValueError:
        allowed = ", ".join(r.value for r in DateRange)
        raise ScopeValidationError(f"Unknown dateRange '{date_range}'. Expected one of: {allowed}") from None

    if symbolic is DateRange.ALL:
        return DateWindow()
    if symbolic is DateRange.TODAY:
        return DateWindow(start=now.replace(hour=0, minute=0, second=0, microsecond=0))
    return DateWindow(start=now - timedelta(days=LOOKBACK_DAYS[symbolic]))
