"""Redis-backed notification document store.

Layout:
    notification:{id}           JSON document (canonical Notification fields),
                                written once and expiring after the configured TTL
    notification:{id}:read_by   set of user ids that read the notification
    notifications:index         sorted set of ids scored by creation time

Marking read only adds to the read_by set (SADD in a MULTI block), so
concurrent readers never overwrite each other and the document itself is
never rewritten.

Expired documents leave dangling ids in the index; they are pruned lazily
whenever the index is read. Transient Redis connection errors are retried
with exponential backoff.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.app.analytics.fetcher import RecordSource
from src.app.analytics.schemas import EntityType, Notification
from src.app.analytics.scope import Scope
from src.app.analytics.windows import DateWindow
from src.app.notifications.schemas import NotificationCreate

logger = structlog.get_logger(__name__)

INDEX_KEY = "notifications:index"

_redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    reraise=True,
)


def _doc_key(notification_id: str) -> str:
    return f"notification:{notification_id}"


def _read_key(notification_id: str) -> str:
    return f"notification:{notification_id}:read_by"


class NotificationStore(RecordSource):
    """Notification CRUD on Redis, plus the ``notifications`` record source.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        ttl_days: Days a notification document is kept.
    """

    def __init__(self, redis: aioredis.Redis, ttl_days: int = 90) -> None:
        self._redis = redis
        self._ttl_seconds = max(ttl_days, 1) * 86_400

    # ── Low-level Redis access ──────────────────────────────────────────────

    @_redis_retry
    async def _save(self, notification: Notification) -> None:
        await self._redis.set(
            _doc_key(notification.id), notification.model_dump_json(), ex=self._ttl_seconds
        )
        created = notification.created_at or datetime.now(timezone.utc)
        await self._redis.zadd(INDEX_KEY, {notification.id: created.timestamp()})

    @_redis_retry
    async def _load(self, notification_id: str) -> Notification | None:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.get(_doc_key(notification_id))
            pipe.smembers(_read_key(notification_id))
            raw, readers = await pipe.execute()
        if raw is None:
            return None
        return self._parse(notification_id, raw, readers)

    @_redis_retry
    async def _load_all(self) -> list[Notification]:
        """Every stored notification, newest first."""
        ids = await self._redis.zrevrange(INDEX_KEY, 0, -1)
        if not ids:
            return []
        raws = await self._redis.mget([_doc_key(i) for i in ids])

        live: list[tuple[str, str]] = []
        expired: list[str] = []
        for notification_id, raw in zip(ids, raws):
            if raw is None:
                expired.append(notification_id)
            else:
                live.append((notification_id, raw))

        if expired:
            await self._redis.zrem(INDEX_KEY, *expired)
            logger.debug("notifications.index_pruned", count=len(expired))
        if not live:
            return []

        async with self._redis.pipeline(transaction=False) as pipe:
            for notification_id, _ in live:
                pipe.smembers(_read_key(notification_id))
            reader_sets = await pipe.execute()

        notifications: list[Notification] = []
        for (notification_id, raw), readers in zip(live, reader_sets):
            parsed = self._parse(notification_id, raw, readers)
            if parsed is not None:
                notifications.append(parsed)
        return notifications

    @_redis_retry
    async def _add_reader(self, notification_ids: list[str], user_id: str) -> list[bool]:
        """SADD ``user_id`` to each read_by set. True where the user was new."""
        async with self._redis.pipeline(transaction=True) as pipe:
            for notification_id in notification_ids:
                pipe.sadd(_read_key(notification_id), user_id)
                pipe.expire(_read_key(notification_id), self._ttl_seconds)
            results = await pipe.execute()
        return [bool(added) for added in results[::2]]

    @staticmethod
    def _parse(notification_id: str, raw: str, readers: Any = ()) -> Notification | None:
        try:
            notification = Notification.model_validate_json(raw)
        except ValidationError:
            logger.warning("notifications.invalid_document", notification_id=notification_id)
            return None
        return _with_readers(notification, readers)

    # ── CRUD ────────────────────────────────────────────────────────────────

    async def create(self, data: NotificationCreate, now: datetime | None = None) -> Notification:
        """Persist a new notification and return it."""
        notification = Notification(
            id=uuid.uuid4().hex,
            created_at=now or datetime.now(timezone.utc),
            **data.model_dump(),
        )
        await self._save(notification)
        logger.info(
            "notifications.created",
            notification_id=notification.id,
            recipients=len(notification.recipients),
            type=notification.type,
        )
        return notification

    async def get(self, notification_id: str) -> Notification | None:
        return await self._load(notification_id)

    async def list_for_scope(
        self,
        scope: Scope,
        limit: int | None = 50,
        offset: int = 0,
        window: DateWindow | None = None,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Notifications visible to ``scope``, newest first."""
        visible = [
            n
            for n in await self._load_all()
            if scope.allows_notification(n)
            and (window is None or window.contains(n.created_at))
            and not (unread_only and self._is_read_by(n, scope.user_id))
        ]
        end = None if limit is None else offset + limit
        return visible[offset:end]

    async def count_for_scope(self, scope: Scope, unread_only: bool = False) -> int:
        return len(await self.list_for_scope(scope, limit=None, unread_only=unread_only))

    async def mark_read(self, notification_id: str, user_id: str) -> Notification | None:
        """Record that ``user_id`` read the notification. None if it does not exist."""
        notification = await self._load(notification_id)
        if notification is None:
            return None
        if user_id in notification.read_by:
            return notification

        added = await self._add_reader([notification_id], user_id)
        if added[0]:
            logger.info("notifications.marked_read", notification_id=notification_id, user_id=user_id)
        return _with_readers(notification, [user_id])

    async def mark_all_read(self, user_id: str, scope: Scope) -> int:
        """Mark every notification visible to ``scope`` as read by ``user_id``."""
        unread = [
            n.id
            for n in await self.list_for_scope(scope, limit=None)
            if user_id not in n.read_by
        ]
        updated = sum(await self._add_reader(unread, user_id)) if unread else 0
        logger.info("notifications.marked_all_read", user_id=user_id, updated=updated)
        return updated

    @staticmethod
    def _is_read_by(notification: Notification, user_id: str | None) -> bool:
        if user_id is None:
            return notification.is_read
        return user_id in notification.read_by

    # ── RecordSource ────────────────────────────────────────────────────────

    async def fetch_rows(
        self,
        entity: str,
        scope: Scope,
        window: DateWindow,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        if entity != EntityType.NOTIFICATIONS.value:
            raise ValueError(f"NotificationStore cannot read entity type: {entity}")
        notifications = await self.list_for_scope(scope, limit=limit, offset=offset, window=window)
        return [n.model_dump() for n in notifications]

    @_redis_retry
    async def ping(self) -> bool:
        return bool(await self._redis.ping())


def _with_readers(notification: Notification, readers: Any) -> Notification:
    """Merge the read_by set into the document's own read_by list."""
    new = sorted(set(readers or ()) - set(notification.read_by))
    if not new:
        return notification
    return notification.model_copy(
        update={"read_by": [*notification.read_by, *new], "is_read": True}
    )
