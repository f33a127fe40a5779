from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class CachePort(ABC):
    """
    Key-value store with TTL and an atomic set-if-absent, used for result
    caching and for the per-key compute lock.
    """

    @abstractmethod
    async def get_json(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    @abstractmethod
    async def set_json(self, key: str, value: Any, ttl_sec: Optional[int] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_sec: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def release_lock(self, key: str, token: str) -> bool:
        """Delete `key` only while it still holds `token`."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError
