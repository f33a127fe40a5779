import unittest
from unittest import mock
from decimal import Decimal

from ledgerscan.adapters.chain.etherscan_chain_adapter import EtherscanChainAdapter
from ledgerscan.adapters.chain.rate_limiter import RateLimiter
from ledgerscan.adapters.pricing.dexscreener_adapter import DexScreenerAdapter
from ledgerscan.adapters.pricing.price_adapter import PriceAdapter
from ledgerscan.core.dto import DexScreenerPair
from ledgerscan.core.errors import DataSourceError, RangeTooLargeError, RateLimitError

TOKEN = "0x" + "ab" * 20
WETH = "0x" + "ee" * 20
PAIR_A = "0x" + "0a" * 20
PAIR_B = "0x" + "0b" * 20
CURVE = "0x" + "cc" * 20


class EtherscanUnwrapTests(unittest.TestCase):
    def test_ok_status_returns_result(self) -> None:
        self.assertEqual(EtherscanChainAdapter._unwrap({"status": "1", "message": "OK", "result": [1]}), [1])

    def test_empty_markers_are_empty_lists(self) -> None:
        for msg in ("No records found", "No transactions found", "No token transfers found"):
            self.assertEqual(EtherscanChainAdapter._unwrap({"status": "0", "message": msg, "result": []}), [])

    def test_rate_limit(self) -> None:
        with self.assertRaises(RateLimitError):
            EtherscanChainAdapter._unwrap({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})

    def test_range_too_large(self) -> None:
        with self.assertRaises(RangeTooLargeError):
            EtherscanChainAdapter._unwrap({
                "status": "0",
                "message": "NOTOK",
                "result": "Query returned more than 10000 records",
            })

    def test_proxy_jsonrpc(self) -> None:
        self.assertEqual(EtherscanChainAdapter._unwrap({"jsonrpc": "2.0", "id": 1, "result": "0x10"}), "0x10")
        with self.assertRaises(DataSourceError):
            EtherscanChainAdapter._unwrap({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000}})

    def test_other_errors(self) -> None:
        with self.assertRaises(DataSourceError):
            EtherscanChainAdapter._unwrap({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
        with self.assertRaises(DataSourceError):
            EtherscanChainAdapter._unwrap(["not", "a", "dict"])


class _CannedEtherscan(EtherscanChainAdapter):
    def __init__(self, result) -> None:
        super().__init__(api_key="test")
        self.result = result
        self.params = []

    async def _call(self, params):
        self.params.append(params)
        return self.result


class EtherscanParsingTests(unittest.IsolatedAsyncioTestCase):
    async def test_block_by_timestamp(self) -> None:
        chain = _CannedEtherscan("19000000")

        self.assertEqual(await chain.get_block_by_timestamp(1_700_000_000, closest="after"), 19_000_000)
        self.assertEqual(chain.params[0]["closest"], "after")

    async def test_block_by_timestamp_rejects_garbage(self) -> None:
        with self.assertRaises(DataSourceError):
            await _CannedEtherscan("Error! No closest block found").get_block_by_timestamp(1)


class _FakeResponse:
    def __init__(self, status_code, body) -> None:
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


class _FakeSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.urls = []
        self.closed = False

    def get(self, url, timeout=None):
        self.urls.append(url)
        return self.responses.pop(0)

    def close(self) -> None:
        self.closed = True


def _raw_pair(pair, liquidity, chain="base", dex="uniswap", base=TOKEN, **extra):
    p = {
        "chainId": chain,
        "dexId": dex,
        "pairAddress": pair,
        "baseToken": {"address": base, "symbol": "TKN", "name": "Token"},
        "quoteToken": {"address": WETH},
        "priceUsd": "0.5",
        "priceNative": "0.0002",
        "liquidity": {"usd": liquidity},
        "volume": {"h24": 1000},
        "fdv": 900000,
    }
    p.update(extra)
    return p


class DexScreenerAdapterTests(unittest.IsolatedAsyncioTestCase):
    def _adapter(self, *responses) -> DexScreenerAdapter:
        self.session = _FakeSession(*responses)
        return DexScreenerAdapter(
            base_url="https://dex.example/latest/dex",
            chain_id="base",
            max_retries=1,
            rate_limiter=RateLimiter(1000.0),
            session=self.session,
        )

    async def test_pairs_are_filtered_to_chain(self) -> None:
        body = {"pairs": [_raw_pair(PAIR_A, 5000), _raw_pair(PAIR_B, 9000, chain="ethereum")]}
        adapter = self._adapter(_FakeResponse(200, body))

        pairs = await adapter.get_pairs(TOKEN.upper().replace("0X", "0x"))

        self.assertEqual([p.pair_address for p in pairs], [PAIR_A])
        self.assertEqual(pairs[0].price_native, Decimal("0.0002"))
        self.assertEqual(pairs[0].base_symbol, "TKN")
        self.assertFalse(pairs[0].bonding)
        self.assertTrue(self.session.urls[0].endswith(f"/tokens/{TOKEN}"))

    async def test_http_errors_map_to_taxonomy(self) -> None:
        with self.assertRaises(RateLimitError):
            await self._adapter(_FakeResponse(429, {})).get_pairs(TOKEN)
        with self.assertRaises(DataSourceError):
            await self._adapter(_FakeResponse(503, {})).get_pairs(TOKEN)

    def test_launchpad_detection(self) -> None:
        adapter = self._adapter()

        self.assertEqual(adapter._launchpad({"dexId": "moonshot"}), (None, True))
        self.assertEqual(adapter._launchpad({"launchPadPair": CURVE.upper().replace("0X", "0x")}), (CURVE, True))
        self.assertEqual(adapter._launchpad({"moonshot": {"progress": 42.5}}), (None, True))
        self.assertEqual(adapter._launchpad({"moonshot": {"progress": 100}}), (None, False))
        self.assertEqual(adapter._launchpad({"dexId": "uniswap"}), (None, False))

    def test_close_only_closes_owned_session(self) -> None:
        adapter = self._adapter()
        PriceAdapter(adapter).close()
        self.assertFalse(self.session.closed)

        with mock.patch("ledgerscan.adapters.pricing.dexscreener_adapter.requests.Session") as session_cls:
            owned = DexScreenerAdapter(rate_limiter=RateLimiter(1000.0))
            PriceAdapter(owned).close()

        session_cls.return_value.close.assert_called_once_with()


def _pair(addr, liquidity, volume="0", price_usd="1", price_native="0.001", base=TOKEN, **kw):
    return DexScreenerPair(
        chain_id="base",
        dex_id="uniswap",
        pair_address=addr,
        base_token=base,
        quote_token=WETH,
        price_usd=Decimal(price_usd) if price_usd is not None else None,
        price_native=Decimal(price_native) if price_native is not None else None,
        liquidity_usd=Decimal(liquidity),
        volume_24h=Decimal(volume),
        fdv=kw.pop("fdv", Decimal("2000")),
        market_cap=kw.pop("market_cap", None),
        **kw,
    )


class PriceAdapterTests(unittest.TestCase):
    def test_best_pair_by_liquidity_then_volume(self) -> None:
        pairs = [
            _pair(PAIR_A, "100", volume="5"),
            _pair(PAIR_B, "100", volume="9"),
            _pair(CURVE, "500", price_usd=None, price_native=None),
        ]

        self.assertEqual(PriceAdapter.best_pair(TOKEN, pairs).pair_address, PAIR_B)

    def test_token_must_be_base(self) -> None:
        pairs = [_pair(PAIR_A, "100", base=WETH)]

        self.assertIsNone(PriceAdapter.best_pair(TOKEN, pairs))
        self.assertTrue(PriceAdapter.quote_from_pairs(TOKEN, pairs).is_zero)

    def test_quote_collects_every_pool(self) -> None:
        pairs = [
            _pair(PAIR_A, "100", market_cap=Decimal("1500")),
            _pair(PAIR_B, "10", launchpad_pair=CURVE, bonding=True),
        ]

        q = PriceAdapter.quote_from_pairs(TOKEN, pairs)

        self.assertEqual(q.price_native, Decimal("0.001"))
        self.assertEqual(q.market_cap_usd, Decimal("1500"))
        self.assertEqual(q.pair_addresses, (PAIR_A, PAIR_B))
        self.assertEqual(q.launchpad_pair, CURVE)
        self.assertTrue(q.is_bonding_curve)

    def test_market_cap_falls_back_to_fdv(self) -> None:
        q = PriceAdapter.quote_from_pairs(TOKEN, [_pair(PAIR_A, "100")])

        self.assertEqual(q.market_cap_usd, Decimal("2000"))


if __name__ == "__main__":
    unittest.main()
