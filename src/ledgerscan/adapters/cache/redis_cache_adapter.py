from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis_lib
from redis.exceptions import RedisError

from ledgerscan.config.settings import REDIS_URL
from ledgerscan.core.errors import DataSourceError
from ledgerscan.ports.cache_port import CachePort

logger = logging.getLogger(__name__)

# delete the lock only if we still own it
_RELEASE_LOCK = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisCacheAdapter(CachePort):
    def __init__(self, url: str = REDIS_URL, client: Optional[redis_lib.Redis] = None) -> None:
        self._url = url
        self._r = client or redis_lib.from_url(url, decode_responses=True, socket_timeout=3)

    async def close(self) -> None:
        await self._r.aclose()

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self._r.get(key)
        except RedisError as e:
            raise DataSourceError(f"redis GET {key} failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("dropping unreadable cache entry %s", key)
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ttl_sec: Optional[int] = None) -> None:
        try:
            await self._r.set(key, json.dumps(value), ex=ttl_sec)
        except RedisError as e:
            raise DataSourceError(f"redis SET {key} failed: {e}") from e

    async def set_if_absent(self, key: str, value: str, ttl_sec: int) -> bool:
        try:
            return bool(await self._r.set(key, value, nx=True, ex=ttl_sec))
        except RedisError as e:
            raise DataSourceError(f"redis SET NX {key} failed: {e}") from e

    async def release_lock(self, key: str, token: str) -> bool:
        try:
            return bool(await self._r.eval(_RELEASE_LOCK, 1, key, token))
        except RedisError as e:
            raise DataSourceError(f"redis lock release {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._r.delete(key)
        except RedisError as e:
            raise DataSourceError(f"redis DEL {key} failed: {e}") from e
