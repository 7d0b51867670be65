"""Data fetching: scoped, time-bounded reads of CRM record sets.

Provides:
- RecordSource: ABC every backend implements (SQL tables, notification store,
  in-memory test doubles)
- SQLRecordSource: reads the upstream CRM tables through async SQLAlchemy
- FetchResult: per-entity records plus the list of entities that failed
- DataFetcher: runs fetches concurrently, each bounded by a timeout, and
  degrades any single failure to an empty record set

Failure policy: a timeout or exception while fetching one entity type yields
``[]`` for that entity, a warning log line and a metrics increment. It never
fails the other fetches and never propagates to the caller. The only hard
failure is DataFetcher.ping(), the connectivity pre-check.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel
from sqlalchemy import String, cast, func, literal, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.app.analytics.errors import (
    DataSourceUnavailableError,
    FetchError,
    FetchTimeoutError,
)
from src.app.analytics.models import CallbackRow, DealRow, TargetRow, UserRow
from src.app.analytics.normalize import normalize_records
from src.app.analytics.schemas import UNKNOWN_AGENT, EntityType
from src.app.analytics.scope import Scope
from src.app.analytics.windows import DateWindow
from src.app.core.monitoring import track_fetch

logger = structlog.get_logger(__name__)

# Entity types bounded by the date window. Users and targets are reference
# data and are always read in full.
WINDOWED_ENTITIES = frozenset(
    {EntityType.DEALS.value, EntityType.CALLBACKS.value, EntityType.NOTIFICATIONS.value}
)


# ── Record Source Interface ─────────────────────────────────────────────────


class RecordSource(ABC):
    """Backend that returns raw rows for one entity type.

    Implementations apply the scope themselves, bound the entity types in
    WINDOWED_ENTITIES by the date window, and order rows newest first. Rows
    may use any upstream field spelling; the DataFetcher normalizes them.
    """

    @abstractmethod
    async def fetch_rows(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Return raw rows for ``entity`` visible to ``scope`` inside ``window``."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        ...


# ── SQL Record Source ───────────────────────────────────────────────────────


class SQLRecordSource(RecordSource):
    """Reads deals, callbacks, targets and users from the CRM database.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    entities = frozenset(
        {EntityType.DEALS.value, EntityType.CALLBACKS.value, EntityType.TARGETS.value, EntityType.USERS.value}
    )

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def fetch_rows(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        stmt = self.build_statement(entity, scope, window, limit, offset)
        async for session in self._session_factory():
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]
        return []

    async def ping(self) -> bool:
        async for session in self._session_factory():
            await session.execute(text("SELECT 1"))
            return True
        return False

    def build_statement(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> Any:
        """Build the SELECT for ``entity`` with scope, window, order and paging."""
        if entity == EntityType.DEALS.value:
            model, stmt, clause = DealRow, self._deals_select(), scope.deal_clause(DealRow)
        elif entity == EntityType.CALLBACKS.value:
            model, stmt, clause = CallbackRow, select(CallbackRow.__table__), scope.callback_clause(CallbackRow)
        elif entity == EntityType.TARGETS.value:
            model, stmt, clause = TargetRow, self._targets_select(), scope.target_clause(TargetRow)
        elif entity == EntityType.USERS.value:
            model, stmt, clause = UserRow, select(UserRow.__table__), None
        else:
            raise ValueError(f"SQLRecordSource cannot read entity type: {entity}")

        if clause is not None:
            stmt = stmt.where(clause)
        if window.start is not None and entity in WINDOWED_ENTITIES:
            # Upstream timestamps are naive UTC.
            stmt = stmt.where(model.created_at >= window.start.replace(tzinfo=None))

        stmt = stmt.order_by(model.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return stmt

    @staticmethod
    def _deals_select() -> Any:
        sales_user = aliased(UserRow)
        closing_user = aliased(UserRow)
        return (
            select(
                DealRow.__table__,
                func.coalesce(sales_user.name, DealRow.sales_agent, literal(UNKNOWN_AGENT)).label(
                    "sales_agent_name"
                ),
                func.coalesce(closing_user.name, DealRow.closing_agent, literal(UNKNOWN_AGENT)).label(
                    "closing_agent_name"
                ),
            )
            .outerjoin(sales_user, DealRow.sales_agent_id == sales_user.id)
            .outerjoin(closing_user, DealRow.closing_agent_id == closing_user.id)
        )

    @staticmethod
    def _targets_select() -> Any:
        # Current progress: the agent's deals created in the target's period (YYYY-MM).
        in_period = func.substr(cast(DealRow.created_at, String), 1, 7) == TargetRow.period
        agent_deals = (DealRow.sales_agent_id == TargetRow.agent_id, in_period)
        current_amount = (
            select(func.coalesce(func.sum(DealRow.amount), 0))
            .where(*agent_deals)
            .correlate(TargetRow)
            .scalar_subquery()
        )
        current_deals = (
            select(func.count(DealRow.id))
            .where(*agent_deals)
            .correlate(TargetRow)
            .scalar_subquery()
        )
        return select(
            TargetRow.__table__,
            current_amount.label("current_amount"),
            current_deals.label("current_deals"),
        )


# ── Data Fetcher ────────────────────────────────────────────────────────────


@dataclass
class FetchResult:
    """Normalized records per entity type, plus entities whose fetch failed."""

    records: dict[str, list[Any]] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)

    def get(self, entity: str) -> list[Any]:
        return self.records.get(entity, [])


class DataFetcher:
    """Concurrent, time-bounded fetches with per-entity failure isolation.

    Args:
        sources: Record source per entity type.
        timeout: Seconds each individual fetch may take.
    """

    def __init__(self, sources: Mapping[str, RecordSource], timeout: float = 20.0) -> None:
        self._sources = dict(sources)
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    def supports(self, entity: str) -> bool:
        return entity in self._sources

    def _source_for(self, entity: str) -> RecordSource:
        try:
            return self._sources[entity]
        except KeyError:
            raise FetchError(entity, "no record source configured") from None

    async def _fetch_or_raise(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None,
        offset: int,
    ) -> list[BaseModel]:
        source = self._source_for(entity)
        try:
            async with track_fetch(entity) as tracker:
                rows = await asyncio.wait_for(
                    source.fetch_rows(entity, scope, window, limit, offset),
                    timeout=self._timeout,
                )
                tracker["rows"] = len(rows)
        except asyncio.TimeoutError as exc:
            raise FetchTimeoutError(entity, self._timeout) from exc
        except Exception as exc:
            raise FetchError(entity, str(exc) or type(exc).__name__) from exc

        return normalize_records(entity, rows)

    async def fetch(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        """Fetch one entity type; any failure degrades to an empty list."""
        try:
            return await self._fetch_or_raise(entity, scope, window, limit, offset)
        except FetchTimeoutError as exc:
            logger.warning("analytics.fetch_timeout", entity=entity, timeout=exc.timeout)
        except FetchError as exc:
            logger.warning("analytics.fetch_failed", entity=entity, error=str(exc))
        return []

    async def fetch_many(
        self,
        entities: Iterable[str],
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> FetchResult:
        """Fetch several entity types concurrently.

        Every requested entity appears in the result; failed ones map to an
        empty list and are listed in ``FetchResult.failed``.
        """
        entities = list(dict.fromkeys(entities))
        outcomes = await asyncio.gather(
            *(self._fetch_or_raise(entity, scope, window, limit, offset) for entity in entities),
            return_exceptions=True,
        )

        result = FetchResult()
        for entity, outcome in zip(entities, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, FetchTimeoutError):
                    logger.warning("analytics.fetch_timeout", entity=entity, timeout=outcome.timeout)
                else:
                    logger.warning("analytics.fetch_failed", entity=entity, error=str(outcome))
                result.records[entity] = []
                result.failed.append(entity)
                continue
            result.records[entity] = outcome

        logger.debug(
            "analytics.fetch_complete",
            counts={entity: len(records) for entity, records in result.records.items()},
            failed=result.failed,
        )
        return result

    async def ping(self, entities: Iterable[str] | None = None) -> None:
        """Connectivity pre-check over the sources backing ``entities``.

        Raises:
            DataSourceUnavailableError: a source did not answer in time or
                reported itself unreachable.
        """
        wanted = list(entities) if entities is not None else list(self._sources)
        sources: list[RecordSource] = []
        for entity in wanted:
            source = self._sources.get(entity)
            if source is not None and all(source is not s for s in sources):
                sources.append(source)

        for source in sources:
            try:
                healthy = await asyncio.wait_for(source.ping(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise DataSourceUnavailableError(
                    f"{type(source).__name__} did not answer within {self._timeout:g}s"
                ) from exc
            except Exception as exc:
                raise DataSourceUnavailableError(f"{type(source).__name__}: {exc}") from exc
            if not healthy:
                raise DataSourceUnavailableError(f"{type(source).__name__} is unreachable")
