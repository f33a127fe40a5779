import asyncio
import unittest

from ledgerscan.adapters.cache.memory_cache_adapter import MemoryCacheAdapter
from ledgerscan.core.enums import ResultStatus
from ledgerscan.core.errors import ComputationError
from ledgerscan.services.result_cache import ResultCache, lock_key


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class MemoryCacheAdapterTests(unittest.IsolatedAsyncioTestCase):
    async def test_ttl_expiry(self) -> None:
        clock = _Clock()
        cache = MemoryCacheAdapter(clock=clock)

        await cache.set_json("k", {"a": 1}, ttl_sec=10)
        self.assertEqual(await cache.get_json("k"), {"a": 1})

        clock.now = 10
        self.assertIsNone(await cache.get_json("k"))

    async def test_set_if_absent_and_owned_release(self) -> None:
        cache = MemoryCacheAdapter(clock=_Clock())

        self.assertTrue(await cache.set_if_absent("lock:k", "me", 60))
        self.assertFalse(await cache.set_if_absent("lock:k", "you", 60))
        self.assertFalse(await cache.release_lock("lock:k", "you"))
        self.assertTrue(await cache.release_lock("lock:k", "me"))
        self.assertTrue(await cache.set_if_absent("lock:k", "you", 60))

    async def test_expired_lock_can_be_taken(self) -> None:
        clock = _Clock()
        cache = MemoryCacheAdapter(clock=clock)

        await cache.set_if_absent("lock:k", "crashed", 60)
        clock.now = 61

        self.assertTrue(await cache.set_if_absent("lock:k", "me", 60))


class ResultCacheTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.store = MemoryCacheAdapter(clock=self.clock)
        self.sleeps = []

        async def sleep(seconds: float) -> None:
            self.sleeps.append(seconds)
            self.clock.now += seconds
            await asyncio.sleep(0)

        self.cache = ResultCache(self.store, sleep=sleep, clock=self.clock)

    async def test_computes_once_then_serves_cache(self) -> None:
        calls = []

        async def compute():
            calls.append(1)
            return {"value": 42, "complete": True}

        first = await self.cache.get_or_compute("holders:v1:x:all", compute, ttl_sec=60, lock_ttl_sec=10)
        second = await self.cache.get_or_compute("holders:v1:x:all", compute, ttl_sec=60, lock_ttl_sec=10)

        self.assertEqual(first.status, ResultStatus.READY)
        self.assertFalse(first.from_cache)
        self.assertTrue(second.from_cache)
        self.assertEqual(second.payload["value"], 42)
        self.assertEqual(len(calls), 1)
        self.assertIsNone(await self.store.get_json(lock_key("holders:v1:x:all")))

    async def test_partial_result_is_returned_but_not_cached(self) -> None:
        async def compute():
            return {"value": 1, "complete": False}

        result = await self.cache.get_or_compute("k", compute, ttl_sec=60, lock_ttl_sec=10)

        self.assertTrue(result.ready)
        self.assertEqual(result.payload["value"], 1)
        self.assertIsNone(await self.store.get_json("k"))

    async def test_lock_released_when_compute_fails(self) -> None:
        async def compute():
            raise ComputationError("no creation block")

        with self.assertRaises(ComputationError):
            await self.cache.get_or_compute("k", compute, ttl_sec=60, lock_ttl_sec=10)

        self.assertTrue(await self.store.set_if_absent(lock_key("k"), "next", 10))

    async def test_contention_returns_not_ready(self) -> None:
        await self.store.set_if_absent(lock_key("k"), "someone-else", 30)

        async def compute():
            raise AssertionError("must not run while locked")

        result = await self.cache.get_or_compute("k", compute, ttl_sec=60, lock_ttl_sec=10)

        self.assertEqual(result.status, ResultStatus.NOT_READY)
        self.assertIsNone(result.payload)

    async def test_wait_polls_until_result_appears(self) -> None:
        await self.store.set_if_absent(lock_key("k"), "someone-else", 30)

        async def other_finishes():
            await asyncio.sleep(0)
            await self.store.set_json("k", {"value": 7}, 60)

        async def compute():
            raise AssertionError("must not run while locked")

        task = asyncio.ensure_future(other_finishes())
        result = await self.cache.get_or_compute("k", compute, ttl_sec=60, lock_ttl_sec=10, wait=True)
        await task

        self.assertTrue(result.ready)
        self.assertTrue(result.from_cache)
        self.assertEqual(result.payload, {"value": 7})

    async def test_wait_gives_up_after_timeout(self) -> None:
        await self.store.set_if_absent(lock_key("k"), "someone-else", 300)

        async def compute():
            raise AssertionError("must not run while locked")

        result = await self.cache.get_or_compute(
            "k", compute, ttl_sec=60, lock_ttl_sec=10, wait=True, poll_interval_sec=1.0, wait_timeout_sec=5,
        )

        self.assertEqual(result.status, ResultStatus.NOT_READY)
        self.assertEqual(len(self.sleeps), 5)


if __name__ == "__main__":
    unittest.main()
