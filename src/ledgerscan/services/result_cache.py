from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ledgerscan.core.enums import ResultStatus
from ledgerscan.ports.cache_port import CachePort

logger = logging.getLogger(__name__)


@dataclass
class CachedResult:
    status: ResultStatus
    payload: Optional[Dict[str, Any]] = None
    from_cache: bool = False

    @property
    def ready(self) -> bool:
        return self.status is ResultStatus.READY


def lock_key(key: str) -> str:
    return f"lock:{key}"


class ResultCache:
    """
    Read-through cache with a per-key compute lock.

    One caller per key runs `compute`; others get NOT_READY, or poll for the
    result when `wait=True`. The lock is released on every exit path and
    expires on its own if the holder dies. Payloads with `complete: False`
    are handed back but never stored.
    """

    def __init__(
        self,
        cache: CachePort,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self._sleep = sleep
        self._clock = clock

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Dict[str, Any]]],
        ttl_sec: int,
        lock_ttl_sec: int,
        wait: bool = False,
        poll_interval_sec: float = 1.0,
        wait_timeout_sec: Optional[float] = None,
    ) -> CachedResult:
        cached = await self.cache.get_json(key)
        if cached is not None:
            logger.debug("cache hit %s", key)
            return CachedResult(ResultStatus.READY, cached, from_cache=True)

        token = uuid.uuid4().hex
        deadline = None if wait_timeout_sec is None else self._clock() + wait_timeout_sec
        while not await self.cache.set_if_absent(lock_key(key), token, lock_ttl_sec):
            if not wait:
                logger.info("%s is being computed elsewhere", key)
                return CachedResult(ResultStatus.NOT_READY)
            if deadline is not None and self._clock() >= deadline:
                logger.info("gave up waiting for %s", key)
                return CachedResult(ResultStatus.NOT_READY)
            await self._sleep(poll_interval_sec)
            cached = await self.cache.get_json(key)
            if cached is not None:
                return CachedResult(ResultStatus.READY, cached, from_cache=True)

        try:
            payload = await compute()
            if payload.get("complete", True):
                await self.cache.set_json(key, payload, ttl_sec)
            else:
                logger.warning("%s computed from partial data; not caching", key)
            return CachedResult(ResultStatus.READY, payload)
        finally:
            if not await self.cache.release_lock(lock_key(key), token):
                logger.warning("lock for %s expired before release", key)
