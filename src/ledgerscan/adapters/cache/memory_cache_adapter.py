from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Callable, Dict, Optional, Tuple

from ledgerscan.ports.cache_port import CachePort


class MemoryCacheAdapter(CachePort):
    """
    Process-local cache with the same TTL / set-if-absent semantics as the
    Redis adapter. For tests and single-process runs (`--memory-cache`).
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        item = self._data.get(key)
        if item is None:
            return None
        _, expires = item
        if expires is not None and self._clock() >= expires:
            del self._data[key]
            return None
        return item

    def _expiry(self, ttl_sec: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_sec if ttl_sec else None

    async def get_json(self, key: str) -> Optional[Any]:
        item = self._live(key)
        return copy.deepcopy(item[0]) if item is not None else None

    async def set_json(self, key: str, value: Any, ttl_sec: Optional[int] = None) -> None:
        self._data[key] = (copy.deepcopy(value), self._expiry(ttl_sec))

    async def set_if_absent(self, key: str, value: str, ttl_sec: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_sec))
            return True

    async def release_lock(self, key: str, token: str) -> bool:
        async with self._lock:
            item = self._live(key)
            if item is None or item[0] != token:
                return False
            del self._data[key]
            return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
