from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from ledgerscan.adapters.pricing.dexscreener_adapter import DexScreenerAdapter
from ledgerscan.core.addresses import normalize_address
from ledgerscan.core.dto import DexScreenerPair, SpotQuote
from ledgerscan.ports.price_port import PricePort

logger = logging.getLogger(__name__)


class PriceAdapter(PricePort):
    """
    Spot quotes from the most liquid DexScreener pair where the token is the
    base asset. Quotes are cached for the life of the adapter.
    """

    def __init__(self, dexscreener: Optional[DexScreenerAdapter] = None) -> None:
        self._dexscreener = dexscreener or DexScreenerAdapter()
        self._price_cache: Dict[str, SpotQuote] = {}

    def close(self) -> None:
        self._dexscreener.close()

    async def get_spot_quote(self, token_address: str) -> SpotQuote:
        addr = normalize_address(token_address)

        if addr in self._price_cache:
            return self._price_cache[addr]

        pairs = await self._dexscreener.get_pairs(addr)
        quote = self.quote_from_pairs(addr, pairs)
        if quote.is_zero:
            logger.info("no priced pair for %s (%d pairs)", addr, len(pairs))
        self._price_cache[addr] = quote
        return quote

    @staticmethod
    def best_pair(token_address: str, pairs: List[DexScreenerPair]) -> Optional[DexScreenerPair]:
        best = None
        best_key = (Decimal("-1"), Decimal("-1"))
        for p in pairs:
            if p.base_token and p.base_token != token_address:
                continue
            if p.price_usd is None and p.price_native is None:
                continue
            key = (p.liquidity_usd or Decimal("0"), p.volume_24h or Decimal("0"))
            if key > best_key:
                best_key = key
                best = p
        return best

    @classmethod
    def quote_from_pairs(cls, token_address: str, pairs: List[DexScreenerPair]) -> SpotQuote:
        addr = normalize_address(token_address)
        best = cls.best_pair(addr, pairs)
        if best is None:
            return SpotQuote.zero(addr)

        # market cap: prefer marketCap, fall back to fdv
        cap = best.market_cap if best.market_cap and best.market_cap > 0 else (best.fdv or Decimal("0"))
        launchpad_pair = next((p.launchpad_pair for p in pairs if p.launchpad_pair), None)
        return SpotQuote(
            token_address=addr,
            price_native=best.price_native or Decimal("0"),
            price_usd=best.price_usd or Decimal("0"),
            market_cap_usd=cap,
            pair_addresses=tuple(sorted({p.pair_address for p in pairs if p.pair_address})),
            launchpad_pair=launchpad_pair,
            is_bonding_curve=any(p.bonding for p in pairs),
            symbol=best.base_symbol,
            name=best.base_name,
        )
