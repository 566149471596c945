"""RedisCacheStorage: SnapshotCacheProtocol backed by Redis string keys.

Values are stored as JSON. A missing key is a successful read of `default`;
connection and decode failures are reported as unsuccessful results, never raised.
"""

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.cr_credits.domain.repository import StorageResult

logger = logging.getLogger(__name__)


class RedisCacheStorage:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def get_item(self, key: str, default: Any = None) -> StorageResult:
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            logger.warning("Cache read failed: key=%s err=%s", key, exc)
            return StorageResult(success=False, data=default)
        if raw is None:
            return StorageResult(success=True, data=default)
        try:
            return StorageResult(success=True, data=json.loads(raw))
        except ValueError:
            logger.warning("Cache entry is not valid JSON: key=%s", key)
            return StorageResult(success=False, data=default)

    async def set_item(self, key: str, value: Any) -> bool:
        try:
            await self._redis.set(key, json.dumps(value))
        except (RedisError, TypeError) as exc:
            logger.warning("Cache write failed: key=%s err=%s", key, exc)
            return False
        return True

    async def remove_item(self, key: str) -> bool:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            logger.warning("Cache delete failed: key=%s err=%s", key, exc)
            return False
        return True
