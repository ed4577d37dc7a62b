"""Redis-backed persistence for queue state and processed URLs."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, cast

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from mediarelay.shared.exceptions import StoreError
from mediarelay.shared.models import QueueItem

if TYPE_CHECKING:
    from mediarelay.config import Settings

logger = logging.getLogger(__name__)


async def create_redis(settings: Settings) -> aioredis.Redis:
    """Create and return an async Redis client."""
    client: aioredis.Redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return client


class QueueStore:
    """Persist the whole queue as one JSON snapshot under a single key."""

    def __init__(self, redis: aioredis.Redis, key: str) -> None:
        self._redis = redis
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def save(self, items: list[QueueItem]) -> None:
        raw = json.dumps([item.model_dump(mode="json") for item in items])
        try:
            await cast(Any, self._redis).set(self._key, raw)
        except RedisError as exc:
            raise StoreError(f"failed to save queue to {self._key}: {exc}") from exc
        logger.debug("saved %d queue item(s) to %s", len(items), self._key)

    async def load(self) -> list[QueueItem]:
        """Return the persisted queue; malformed entries are dropped."""
        try:
            raw = await cast(Any, self._redis).get(self._key)
        except RedisError as exc:
            raise StoreError(f"failed to load queue from {self._key}: {exc}") from exc
        if not raw:
            return []
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        items: list[QueueItem] = []
        for entry in json.loads(raw):
            try:
                items.append(QueueItem.model_validate(entry))
            except ValidationError as exc:
                logger.warning("skip malformed queue entry: %s", exc)
        return items


class ProcessedUrlStore:
    """Set of source URLs that already went through a successful upload."""

    def __init__(self, redis: aioredis.Redis, key: str) -> None:
        self._redis = redis
        self._key = key

    async def add(self, url: str) -> bool:
        added = cast(int, await cast(Any, self._redis).sadd(self._key, url))
        return added > 0

    async def all(self) -> set[str]:
        members = await cast(Any, self._redis).smembers(self._key)
        return {m.decode("utf-8") if isinstance(m, bytes) else m for m in members}

    async def contains(self, url: str) -> bool:
        return bool(await cast(Any, self._redis).sismember(self._key, url))
