"""Shared fixtures for the analytics and notification tests.

Provides:
- Sample CRM rows in the mixed upstream spellings (snake_case, camelCase,
  legacy column names)
- InMemoryRecordSource: RecordSource test double applying Scope and DateWindow
- FakeRedis: the subset of redis.asyncio.Redis used by NotificationStore
- A FastAPI app built from the v1 router with services placed on app.state
- An httpx AsyncClient over ASGITransport
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.app.analytics.fetcher import WINDOWED_ENTITIES, DataFetcher, RecordSource
from src.app.analytics.normalize import normalize_records
from src.app.analytics.schemas import EntityType, UserRole
from src.app.analytics.scope import Scope
from src.app.analytics.service import AnalyticsService
from src.app.analytics.windows import DateWindow
from src.app.notifications.store import NotificationStore

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


# ── Sample Data ──────────────────────────────────────────────────────────────


def sample_users() -> list[dict[str, Any]]:
    return [
        {"id": "M1", "username": "maria", "name": "Maria Manager", "role": "manager", "team": None},
        {
            "id": "L1",
            "username": "leo",
            "name": "Leo Leader",
            "role": "team_leader",
            "team": "Alpha",
            "managedTeam": "Alpha",
        },
        {"id": "U1", "username": "uma", "name": "Uma Seller", "role": "salesman", "team": "Alpha"},
        {"id": "U2", "username": "ugo", "name": "Ugo Seller", "role": "salesman", "team": "Alpha"},
        {"id": "U3", "username": "ursa", "name": "Ursa Seller", "role": "salesman", "team": "Beta"},
    ]


def sample_deals() -> list[dict[str, Any]]:
    return [
        {
            "id": "D1",
            "customer_name": "Acme",
            "amount_paid": "1,200.50",
            "SalesAgentID": "U1",
            "ClosingAgentID": "U2",
            "sales_team": "Alpha",
            "service_tier": "Premium",
            "status": "completed",
            "created_at": "2024-06-15T09:00:00Z",
        },
        {
            "id": "D2",
            "customerName": "Globex",
            "amountPaid": 800,
            "salesAgentId": "U2",
            "closingAgentId": "U1",
            "team": "Alpha",
            "serviceTier": "Basic",
            "status": "pending",
            "createdAt": "2024-06-10T10:00:00Z",
        },
        {
            "id": "D3",
            "customer_name": "Initech",
            "amount": 500,
            "sales_agent_id": "U3",
            "closing_agent_id": "U3",
            "team": "Beta",
            "program_type": "Coaching",
            "status": "completed",
            "created_at": datetime(2024, 5, 1, 8, 0),
        },
        {
            "id": "D4",
            "customer_name": "Umbrella",
            "amount_paid": "bad",
            "SalesAgentID": "L1",
            "sales_team": "Alpha",
            "service_tier": "Premium",
            "status": "completed",
            "created_at": "2024-06-14 16:30:00",
        },
    ]


def sample_callbacks() -> list[dict[str, Any]]:
    return [
        {
            "id": "C1",
            "customer_name": "Acme",
            "SalesAgentID": "U1",
            "sales_agent": "Uma Seller",
            "sales_team": "Alpha",
            "status": "completed",
            "created_by_id": "U1",
            "created_by": "Uma Seller",
            "scheduled_date": "2024-06-12",
            "created_at": "2024-06-11T09:00:00Z",
        },
        {
            "id": "C2",
            "customerName": "Hooli",
            "salesAgentId": "U1",
            "team": "Alpha",
            "status": "pending",
            "createdById": "U1",
            "scheduledDate": "2024-06-01",
            "createdAt": "2024-05-30T09:00:00Z",
        },
        {
            "id": "C3",
            "customer_name": "Initech",
            "sales_agent_id": "U3",
            "team": "Beta",
            "status": "Pending",
            "created_by_id": "U3",
            "scheduled_date": "2024-06-20",
            "created_at": "2024-06-15T08:00:00Z",
        },
        {
            "id": "C4",
            "customer_name": "Vandelay",
            "sales_agent_id": "L1",
            "team": "Alpha",
            "status": "contacted",
            "created_by_id": "L1",
            "created_at": "2024-06-13T08:00:00Z",
        },
    ]


def sample_targets() -> list[dict[str, Any]]:
    return [
        {
            "id": "T1",
            "agentId": "U1",
            "agentName": "Uma Seller",
            "managerId": "L1",
            "period": "2024-06",
            "monthlyTarget": 2000,
            "dealsTarget": 4,
            "current_amount": 1200.5,
            "current_deals": 1,
            "created_at": "2024-06-01T00:00:00Z",
        },
        {
            "id": "T2",
            "agent_id": "U3",
            "agent_name": "Ursa Seller",
            "manager_id": "M1",
            "period": "2024-05",
            "target_amount": "500",
            "target_deals": 1,
            "currentAmount": 500,
            "currentDeals": 1,
            "created_at": "2024-05-01T00:00:00Z",
        },
    ]


def sample_rows() -> dict[str, list[dict[str, Any]]]:
    return {
        EntityType.DEALS.value: sample_deals(),
        EntityType.CALLBACKS.value: sample_callbacks(),
        EntityType.TARGETS.value: sample_targets(),
        EntityType.USERS.value: sample_users(),
    }


# ── Test Doubles ─────────────────────────────────────────────────────────────


class InMemoryRecordSource(RecordSource):
    """RecordSource over in-memory rows, filtered like the SQL source.

    Users are returned unscoped; the service decides whether to expose them.
    """

    def __init__(self, rows: Mapping[str, list[dict[str, Any]]]) -> None:
        self._rows = {entity: list(items) for entity, items in rows.items()}
        self.calls: list[tuple[str, Scope, DateWindow, int | None, int]] = []
        self.healthy = True

    async def fetch_rows(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        self.calls.append((entity, scope, window, limit, offset))
        if entity not in self._rows:
            raise ValueError(f"no rows for {entity}")

        records = normalize_records(entity, self._rows[entity])
        if entity != EntityType.USERS.value:
            records = [r for r in records if scope.allows(entity, r)]
        if entity in WINDOWED_ENTITIES:
            records = [r for r in records if window.contains(r.created_at)]
        records.sort(
            key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return [r.model_dump() for r in records[offset:end]]

    async def ping(self) -> bool:
        return self.healthy


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands NotificationStore uses."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.sets: dict[str, set[str]] = {}

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.values[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def mget(self, keys: list[str]) -> list[str | None]:
        return [self.values.get(k) for k in keys]

    async def sadd(self, key: str, *members: str) -> int:
        members_set = self.sets.setdefault(key, set())
        added = sum(1 for member in members if member not in members_set)
        members_set.update(members)
        return added

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def expire(self, key: str, seconds: int) -> bool:
        if key not in self.values and key not in self.sets:
            return False
        self.ttls[key] = seconds
        return True

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda item: (-item[1], item[0]))
        members = [member for member, _ in ordered]
        return members[start:] if end == -1 else members[start : end + 1]

    async def zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if zset.pop(member, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        return True

    def expire_now(self, key: str) -> None:
        """Simulate Redis evicting an expired key."""
        self.values.pop(key, None)
        self.ttls.pop(key, None)
        self.sets.pop(key, None)


class FakePipeline:
    """Buffers FakeRedis commands and runs them in order on execute()."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queued: list[tuple[Any, tuple, dict]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._queued.clear()

    def __getattr__(self, name: str) -> Any:
        command = getattr(self._redis, name)

        def queue(*args: Any, **kwargs: Any) -> FakePipeline:
            self._queued.append((command, args, kwargs))
            return self

        return queue

    async def execute(self) -> list[Any]:
        queued, self._queued = self._queued, []
        return [await command(*args, **kwargs) for command, args, kwargs in queued]


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def manager_scope() -> Scope:
    return Scope(role=UserRole.MANAGER)


@pytest.fixture
def record_source() -> InMemoryRecordSource:
    return InMemoryRecordSource(sample_rows())


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def notification_store(fake_redis: FakeRedis) -> NotificationStore:
    return NotificationStore(fake_redis, ttl_days=90)


@pytest.fixture
def fetcher(record_source: InMemoryRecordSource, notification_store: NotificationStore) -> DataFetcher:
    sources: dict[str, RecordSource] = {
        EntityType.DEALS.value: record_source,
        EntityType.CALLBACKS.value: record_source,
        EntityType.TARGETS.value: record_source,
        EntityType.USERS.value: record_source,
        EntityType.NOTIFICATIONS.value: notification_store,
    }
    return DataFetcher(sources, timeout=1.0)


@pytest.fixture
def analytics_service(fetcher: DataFetcher) -> AnalyticsService:
    return AnalyticsService(fetcher)


def make_app(
    analytics_service: AnalyticsService | None,
    notification_store: NotificationStore | None,
) -> FastAPI:
    """Minimal app: the v1 router with services set on app.state, no lifespan."""
    from fastapi.exceptions import RequestValidationError

    from src.app.api.v1.analytics import request_validation_handler
    from src.app.api.v1.router import router

    app = FastAPI()
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router, prefix="/api/v1")
    app.state.analytics_service = analytics_service
    app.state.notification_store = notification_store
    return app


@pytest_asyncio.fixture
async def client(
    analytics_service: AnalyticsService,
    notification_store: NotificationStore,
) -> AsyncGenerator[AsyncClient, None]:
    app = make_app(analytics_service, notification_store)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
