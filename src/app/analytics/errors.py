"""Exception hierarchy for the analytics pipeline.

Only ScopeValidationError and DataSourceUnavailableError ever reach an HTTP
handler. Fetch errors are absorbed by the DataFetcher and aggregation errors
by the assembler.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for analytics pipeline errors."""


class ScopeValidationError(AnalyticsError):
    """Request parameters cannot be turned into a visibility scope (HTTP 400)."""


class FetchError(AnalyticsError):
    """A record source failed to return rows for one entity type."""

    def __init__(self, entity: str, message: str) -> None:
        super().__init__(f"{entity}: {message}")
        self.entity = entity


class FetchTimeoutError(FetchError):
    """A record fetch exceeded its time budget."""

    def __init__(self, entity: str, timeout: float) -> None:
        super().__init__(entity, f"timed out after {timeout:g}s")
        self.timeout = timeout


class DataSourceUnavailableError(AnalyticsError):
    """The connectivity pre-check failed; the request cannot be served (HTTP 500)."""
