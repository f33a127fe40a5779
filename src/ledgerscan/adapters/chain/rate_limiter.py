from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ledgerscan.core.errors import DataSourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """
    Serializes outbound calls to `requests_per_sec`.

    Grants are FIFO: asyncio.Lock wakes waiters in arrival order, so a caller
    that queued first is always granted first.
    """

    def __init__(
        self,
        requests_per_sec: float,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        if requests_per_sec <= 0:
            raise ValueError("requests_per_sec must be > 0")
        self._min_interval = 1.0 / requests_per_sec
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._last_ts: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_ts is not None:
                sleep_for = self._last_ts + self._min_interval - self._clock()
                if sleep_for > 0:
                    await self._sleep(sleep_for)
            self._last_ts = self._clock()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc) -> None:
        return None


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay_sec: float = 0.4

    def delay(self, attempt: int) -> float:
        # linear: 0.4s, 0.8s, ...
        return self.base_delay_sec * attempt


async def with_retries(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    retry_on: Tuple[Type[BaseException], ...] = (DataSourceError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "",
) -> T:
    """
    Run `fn` up to `policy.attempts` times. Errors outside `retry_on`
    propagate on the first occurrence; the last retryable error is re-raised
    once attempts run out.
    """
    attempts = max(1, policy.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt >= attempts:
                raise
            logger.debug("%s attempt %d/%d failed: %s", label or "call", attempt, attempts, e)
            await sleep(policy.delay(attempt))
    raise AssertionError("unreachable")
