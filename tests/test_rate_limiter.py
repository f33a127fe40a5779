import asyncio
import unittest

from ledgerscan.adapters.chain.rate_limiter import RateLimiter, RetryPolicy, with_retries
from ledgerscan.core.errors import DataSourceError, RangeTooLargeError, RateLimitError


class _FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RateLimiterTests(unittest.IsolatedAsyncioTestCase):
    async def test_spaces_grants_by_min_interval(self) -> None:
        t = _FakeTime()
        rl = RateLimiter(5, clock=t.clock, sleep=t.sleep)

        for _ in range(3):
            await rl.acquire()

        self.assertEqual(len(t.sleeps), 2)
        for s in t.sleeps:
            self.assertAlmostEqual(s, 0.2)
        self.assertAlmostEqual(t.now, 0.4)

    async def test_no_wait_after_idle_gap(self) -> None:
        t = _FakeTime()
        rl = RateLimiter(5, clock=t.clock, sleep=t.sleep)

        await rl.acquire()
        t.now += 10
        await rl.acquire()

        self.assertEqual(t.sleeps, [])

    async def test_grants_are_fifo(self) -> None:
        t = _FakeTime()
        rl = RateLimiter(10, clock=t.clock, sleep=t.sleep)
        order = []

        async def worker(i: int) -> None:
            async with rl:
                order.append(i)

        await asyncio.gather(*(worker(i) for i in range(6)))

        self.assertEqual(order, list(range(6)))

    def test_rejects_non_positive_rate(self) -> None:
        with self.assertRaises(ValueError):
            RateLimiter(0)


class WithRetriesTests(unittest.IsolatedAsyncioTestCase):
    async def test_retries_transient_errors_with_linear_backoff(self) -> None:
        t = _FakeTime()
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RateLimitError("slow down")
            return "ok"

        result = await with_retries(flaky, RetryPolicy(3, 0.4), sleep=t.sleep)

        self.assertEqual(result, "ok")
        self.assertEqual(len(calls), 3)
        self.assertEqual(len(t.sleeps), 2)
        self.assertAlmostEqual(t.sleeps[0], 0.4)
        self.assertAlmostEqual(t.sleeps[1], 0.8)

    async def test_reraises_after_attempts_exhausted(self) -> None:
        t = _FakeTime()
        calls = []

        async def down():
            calls.append(1)
            raise DataSourceError("502")

        with self.assertRaises(DataSourceError):
            await with_retries(down, RetryPolicy(3, 0.4), sleep=t.sleep)
        self.assertEqual(len(calls), 3)

    async def test_non_retryable_error_propagates_immediately(self) -> None:
        t = _FakeTime()
        calls = []

        async def too_big():
            calls.append(1)
            raise RangeTooLargeError("result window is too large")

        with self.assertRaises(RangeTooLargeError):
            await with_retries(too_big, RetryPolicy(3, 0.4), sleep=t.sleep)
        self.assertEqual(len(calls), 1)
        self.assertEqual(t.sleeps, [])


if __name__ == "__main__":
    unittest.main()
