"""Tests for the Redis notification store and the notification endpoints.

NotificationStore runs against the FakeRedis double from conftest.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError

from src.app.analytics.schemas import UserRole
from src.app.analytics.scope import Scope
from src.app.analytics.windows import DateWindow
from src.app.notifications.schemas import NotificationCreate
from src.app.notifications.store import INDEX_KEY, NotificationStore

from tests.conftest import NOW


def _create(**overrides) -> NotificationCreate:
    values = {"title": "Deal closed", "message": "Acme signed", "recipients": ["U1"]}
    values.update(overrides)
    return NotificationCreate.model_validate(values)


# ── Schema ───────────────────────────────────────────────────────────────────


class TestNotificationCreate:
    def test_recipients_required(self):
        with pytest.raises(ValidationError, match="non-empty recipients"):
            _create(recipients=[])
        with pytest.raises(ValidationError, match="non-empty recipients"):
            _create(recipients=["  ", ""])

    def test_legacy_keys_and_dedupe(self):
        data = NotificationCreate.model_validate(
            {"title": "t", "message": "m", "to": ["U1", "U1", " U2 "], "from": "M1"}
        )
        assert data.recipients == ["U1", "U2"]
        assert data.sender == "M1"


# ── Store ────────────────────────────────────────────────────────────────────


class TestNotificationStore:
    @pytest.mark.asyncio
    async def test_create_sets_ttl_and_index(self, notification_store, fake_redis):
        created = await notification_store.create(_create(), now=NOW)

        key = f"notification:{created.id}"
        assert key in fake_redis.values
        assert fake_redis.ttls[key] == 90 * 86_400
        assert fake_redis.zsets[INDEX_KEY][created.id] == NOW.timestamp()
        assert (await notification_store.get(created.id)) == created

    @pytest.mark.asyncio
    async def test_list_scoped_and_newest_first(self, notification_store):
        older = await notification_store.create(_create(message="old"), now=NOW - timedelta(hours=1))
        newer = await notification_store.create(_create(message="new", recipients=["all"]), now=NOW)
        await notification_store.create(_create(message="hidden", recipients=["U3"]), now=NOW)

        visible = await notification_store.list_for_scope(Scope(role=UserRole.SALESMAN, user_id="U1"))

        assert [n.id for n in visible] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_manager_sees_all(self, notification_store):
        for recipient in ("U1", "U2", "U3"):
            await notification_store.create(_create(recipients=[recipient]))
        assert await notification_store.count_for_scope(Scope(role=UserRole.MANAGER)) == 3

    @pytest.mark.asyncio
    async def test_window_filter(self, notification_store):
        await notification_store.create(_create(message="stale"), now=NOW - timedelta(days=10))
        await notification_store.create(_create(message="fresh"), now=NOW)
        scope = Scope(role=UserRole.SALESMAN, user_id="U1")

        visible = await notification_store.list_for_scope(scope, window=DateWindow(start=NOW - timedelta(days=7)))

        assert [n.message for n in visible] == ["fresh"]

    @pytest.mark.asyncio
    async def test_mark_read_leaves_document_untouched(self, notification_store, fake_redis):
        created = await notification_store.create(_create())
        key = f"notification:{created.id}"
        fake_redis.ttls[key] = 1234
        document = fake_redis.values[key]

        updated = await notification_store.mark_read(created.id, "U1")

        assert updated.is_read is True
        assert updated.read_by == ["U1"]
        assert fake_redis.values[key] == document
        assert fake_redis.ttls[key] == 1234
        assert fake_redis.sets[f"{key}:read_by"] == {"U1"}
        assert fake_redis.ttls[f"{key}:read_by"] == 90 * 86_400
        assert (await notification_store.get(created.id)).read_by == ["U1"]

    @pytest.mark.asyncio
    async def test_concurrent_mark_read_keeps_every_reader(self, notification_store, fake_redis):
        created = await notification_store.create(_create(recipients=["all"]))
        get = fake_redis.get

        async def yielding_get(key):
            value = await get(key)
            await asyncio.sleep(0)
            return value

        fake_redis.get = yielding_get

        await asyncio.gather(
            notification_store.mark_read(created.id, "U1"),
            notification_store.mark_read(created.id, "U2"),
        )

        assert (await notification_store.get(created.id)).read_by == ["U1", "U2"]

    @pytest.mark.asyncio
    async def test_mark_read_does_not_revive_expired_document(self, notification_store, fake_redis):
        created = await notification_store.create(_create())
        key = f"notification:{created.id}"
        get = fake_redis.get

        async def get_then_expire(requested):
            value = await get(requested)
            fake_redis.expire_now(requested)
            return value

        fake_redis.get = get_then_expire

        await notification_store.mark_read(created.id, "U1")

        fake_redis.get = get
        assert key not in fake_redis.values
        assert await notification_store.get(created.id) is None

    @pytest.mark.asyncio
    async def test_mark_read_missing(self, notification_store):
        assert await notification_store.mark_read("nope", "U1") is None

    @pytest.mark.asyncio
    async def test_unread_and_mark_all(self, notification_store):
        scope = Scope(role=UserRole.SALESMAN, user_id="U1")
        await notification_store.create(_create())
        await notification_store.create(_create(recipients=["salesman"]))

        assert await notification_store.count_for_scope(scope, unread_only=True) == 2
        assert await notification_store.mark_all_read("U1", scope) == 2
        assert await notification_store.count_for_scope(scope, unread_only=True) == 0
        assert await notification_store.mark_all_read("U1", scope) == 0

    @pytest.mark.asyncio
    async def test_expired_documents_pruned_from_index(self, notification_store, fake_redis):
        kept = await notification_store.create(_create())
        expired = await notification_store.create(_create())
        fake_redis.expire_now(f"notification:{expired.id}")

        visible = await notification_store.list_for_scope(Scope(role=UserRole.MANAGER))

        assert [n.id for n in visible] == [kept.id]
        assert expired.id not in fake_redis.zsets[INDEX_KEY]

    @pytest.mark.asyncio
    async def test_transient_connection_errors_retried(self, fake_redis):
        store = NotificationStore(fake_redis)
        fake_redis.ping = AsyncMock(side_effect=[RedisConnectionError("reset"), True])

        assert await store.ping() is True
        assert fake_redis.ping.await_count == 2

    @pytest.mark.asyncio
    async def test_record_source_rejects_other_entities(self, notification_store):
        with pytest.raises(ValueError):
            await notification_store.fetch_rows("deals", Scope(role=UserRole.MANAGER), DateWindow())


# ── Endpoints ────────────────────────────────────────────────────────────────


class TestNotificationEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_list(self, client):
        created = await client.post(
            "/api/v1/notifications",
            json={"title": "Callback due", "message": "Call Acme", "recipients": ["U1"], "senderName": "Maria"},
        )

        assert created.status_code == 201
        notification = created.json()["data"]
        assert notification["senderName"] == "Maria"
        assert notification["isRead"] is False

        listed = await client.get("/api/v1/notifications", params={"userRole": "salesman", "userId": "U1"})

        assert listed.status_code == 200
        assert "no-store" in listed.headers["cache-control"]
        body = listed.json()
        assert [n["id"] for n in body["data"]] == [notification["id"]]
        assert body["unreadCount"] == 1

    @pytest.mark.asyncio
    async def test_empty_recipients_is_400(self, client):
        response = await client.post(
            "/api/v1/notifications", json={"title": "t", "message": "m", "recipients": []}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "non-empty recipients" in body["message"]

    @pytest.mark.asyncio
    async def test_list_requires_role(self, client):
        response = await client.get("/api/v1/notifications")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_query_gets_error_envelope(self, client):
        response = await client.get(
            "/api/v1/notifications", params={"userRole": "manager", "limit": "lots"}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Invalid request parameters"
        assert "limit" in body["message"]
        assert "timestamp" in body
        assert "no-store" in response.headers["cache-control"]

    @pytest.mark.asyncio
    async def test_mark_read(self, client, notification_store):
        created = await notification_store.create(_create())

        response = await client.put(f"/api/v1/notifications/{created.id}/read", json={"userId": "U1"})

        assert response.status_code == 200
        assert response.json()["data"]["readBy"] == ["U1"]

    @pytest.mark.asyncio
    async def test_mark_read_not_found(self, client):
        response = await client.put("/api/v1/notifications/missing/read", json={"userId": "U1"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_mark_all_read(self, client, notification_store):
        await notification_store.create(_create())
        await notification_store.create(_create(recipients=["all"]))

        response = await client.put(
            "/api/v1/notifications/read-all", json={"userId": "U1", "userRole": "salesman"}
        )

        assert response.status_code == 200
        assert response.json()["updated"] == 2

    @pytest.mark.asyncio
    async def test_mark_all_read_validation(self, client):
        response = await client.put("/api/v1/notifications/read-all", json={"userId": "U1"})
        assert response.status_code == 400
