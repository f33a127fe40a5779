import unittest

from ledgerscan.adapters.chain.static_chain_adapter import StaticChainAdapter
from ledgerscan.core.dto import RawErc20Transfer, RawNativeTransfer, RawNftTransfer, TransferEvent
from ledgerscan.core.errors import ComputationError, DataSourceError, RangeTooLargeError
from ledgerscan.core.models import CrawlConfig
from ledgerscan.services.event_crawler import EventCrawler

TOKEN = "0x" + "ab" * 20
WALLET = "0x" + "11" * 20
OTHER = "0x" + "22" * 20
ZERO = "0x" + "00" * 20


async def _no_sleep(_seconds: float) -> None:
    return None


def _ev(block: int, log_index: int = 0, value: int = 100, tx: str = None) -> TransferEvent:
    return TransferEvent(
        tx_hash=tx or f"0x{block:x}{log_index:x}",
        block_number=block,
        log_index=log_index,
        from_address=ZERO,
        to_address=WALLET,
        value_raw=value,
    )


class _RangeLimitedChain(StaticChainAdapter):
    """Refuses any window wider than `max_span` that covers `hot_block`."""

    def __init__(self, hot_block: int, max_span: int, **kw) -> None:
        super().__init__(**kw)
        self.hot_block = hot_block
        self.max_span = max_span

    async def get_logs(self, address, topic0, from_block, to_block, page, offset):
        if from_block <= self.hot_block <= to_block and to_block - from_block + 1 > self.max_span:
            self.calls.append(("tooLarge", from_block, to_block, page))
            raise RangeTooLargeError("query returned more than 10000 results")
        return await super().get_logs(address, topic0, from_block, to_block, page, offset)


class _FailingPageChain(StaticChainAdapter):
    """Every request for one (window start, page) fails."""

    def __init__(self, bad_start: int, bad_page: int, **kw) -> None:
        super().__init__(**kw)
        self.bad = (bad_start, bad_page)
        self.failures = 0

    async def get_logs(self, address, topic0, from_block, to_block, page, offset):
        if (from_block, page) == self.bad:
            self.failures += 1
            raise DataSourceError("HTTP 502")
        return await super().get_logs(address, topic0, from_block, to_block, page, offset)


class EventCrawlerLogTests(unittest.IsolatedAsyncioTestCase):
    def _crawler(self, chain, **cfg) -> EventCrawler:
        return EventCrawler(chain, CrawlConfig(**cfg), sleep=_no_sleep)

    async def test_shrinks_window_and_covers_full_range(self) -> None:
        events = [_ev(10), _ev(250_000), _ev(300_000), _ev(299_999, 3), _ev(450_000), _ev(499_999)]
        chain = _RangeLimitedChain(300_000, 50_000, token_events={TOKEN: events})
        crawler = self._crawler(chain)

        result = await crawler.fetch_range(TOKEN, 0, 499_999)

        self.assertTrue(result.complete)
        self.assertFalse(result.truncated)
        self.assertEqual(result.final_window_size, 50_000)
        self.assertEqual([e.block_number for e in result.events], [10, 250_000, 299_999, 300_000, 450_000, 499_999])
        self.assertEqual(result.windows, 6)

    async def test_shrink_floor_skips_window(self) -> None:
        chain = _RangeLimitedChain(5, 0, token_events={TOKEN: [_ev(5), _ev(15_000)]})
        crawler = self._crawler(chain, window_size=20_000, min_window_size=10_000)

        result = await crawler.fetch_range(TOKEN, 0, 19_999)

        self.assertFalse(result.complete)
        self.assertEqual(result.skipped_windows, [(0, 9_999)])
        self.assertEqual([e.block_number for e in result.events], [15_000])

    async def test_paginates_inside_window(self) -> None:
        events = [_ev(100 + i) for i in range(5)]
        chain = StaticChainAdapter(token_events={TOKEN: events})
        crawler = self._crawler(chain, page_size=2)

        result = await crawler.fetch_range(TOKEN, 0, 1_000)

        self.assertEqual(len(result.events), 5)
        pages = [c[3] for c in chain.calls if c[0] == "getLogs"]
        self.assertEqual(pages, [1, 2, 3])

    async def test_persistent_failure_keeps_partial_pages(self) -> None:
        events = [_ev(100), _ev(101), _ev(102), _ev(250_000)]
        chain = _FailingPageChain(0, 2, token_events={TOKEN: events})
        crawler = self._crawler(chain, page_size=2, retry_attempts=3)

        result = await crawler.fetch_range(TOKEN, 0, 399_999)

        self.assertFalse(result.complete)
        self.assertEqual(chain.failures, 3)
        self.assertEqual(result.skipped_windows, [(0, 199_999)])
        self.assertEqual([e.block_number for e in result.events], [100, 101, 250_000])

    async def test_window_cap_truncates(self) -> None:
        chain = StaticChainAdapter(token_events={TOKEN: [_ev(1), _ev(250_000), _ev(450_000)]})
        crawler = self._crawler(chain, max_windows=2)

        result = await crawler.fetch_range(TOKEN, 0, 599_999)

        self.assertTrue(result.truncated)
        self.assertTrue(result.complete)
        self.assertEqual(result.windows, 2)
        self.assertEqual([e.block_number for e in result.events], [1, 250_000])

    async def test_duplicates_are_collapsed(self) -> None:
        dup = _ev(7, 1, tx="0xdup")
        chain = StaticChainAdapter(token_events={TOKEN: [dup, dup, _ev(3)]})
        crawler = self._crawler(chain)

        result = await crawler.fetch_range(TOKEN, 0, 100)

        self.assertEqual([(e.block_number, e.log_index) for e in result.events], [(3, 0), (7, 1)])

    async def test_bad_range_raises(self) -> None:
        crawler = self._crawler(StaticChainAdapter())
        with self.assertRaises(ComputationError):
            await crawler.fetch_range(TOKEN, 10, 5)
        with self.assertRaises(ComputationError):
            await crawler.fetch_range(TOKEN, -1, 5)


class EventCrawlerHistoryTests(unittest.IsolatedAsyncioTestCase):
    def _chain(self) -> StaticChainAdapter:
        native = [
            RawNativeTransfer("0xa", 10, 1_000, WALLET, OTHER, 10**18),
            RawNativeTransfer("0xb", 20, 2_000, OTHER, WALLET, 5 * 10**17, internal=True),
        ]
        erc20 = [
            RawErc20Transfer("0xb", 20, 2_000, WALLET, OTHER, TOKEN, 500, "TKN", 0, log_index=4),
            RawErc20Transfer("0xc", 30, 3_000, OTHER, WALLET, TOKEN, 700, "TKN", 0),
        ]
        nft = [RawNftTransfer("0xd", 40, 4_000, ZERO, WALLET, OTHER, "1", "Pals")]
        return StaticChainAdapter(
            native_transfers=native,
            erc20_transfers=erc20,
            nft_transfers=nft,
            ts_to_block={1_500: 15},
        )

    async def test_pulls_all_streams(self) -> None:
        crawler = EventCrawler(self._chain(), CrawlConfig(), sleep=_no_sleep)

        history = await crawler.fetch_account_history(WALLET)

        self.assertTrue(history.complete)
        self.assertEqual(len(history.native), 2)
        self.assertTrue(history.native[1].internal)
        self.assertEqual([t.value_raw for t in history.erc20], [500, 700])
        self.assertEqual(history.erc20[0].log_index, 4)
        self.assertEqual(history.erc20[0].token_decimals, 0)
        self.assertEqual(history.nft[0].collection_name, "Pals")

    async def test_window_starts_at_timestamp_block(self) -> None:
        chain = self._chain()
        crawler = EventCrawler(chain, CrawlConfig(), sleep=_no_sleep)

        history = await crawler.fetch_account_history(WALLET, from_timestamp=1_500)

        self.assertEqual([t.tx_hash for t in history.native], ["0xb"])
        self.assertEqual(len(history.erc20), 2)
        starts = {c[1] for c in chain.calls}
        self.assertEqual(starts, {15})

    async def test_page_cap_marks_incomplete(self) -> None:
        crawler = EventCrawler(
            self._chain(),
            CrawlConfig(account_page_size=1, account_max_pages=1),
            sleep=_no_sleep,
        )

        history = await crawler.fetch_account_history(WALLET)

        self.assertFalse(history.complete)
        self.assertEqual(len(history.erc20), 1)


if __name__ == "__main__":
    unittest.main()
