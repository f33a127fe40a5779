from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, TypeVar

from ledgerscan.adapters.chain.rate_limiter import RetryPolicy, with_retries
from ledgerscan.config import settings
from ledgerscan.core.addresses import BURN_SENTINELS, require_address
from ledgerscan.core.dto import ContractCreation, SpotQuote, TokenMeta
from ledgerscan.core.errors import ComputationError, LedgerScanError
from ledgerscan.io.schemas import dec_to_str, distribution_to_dict, early_holders_to_list
from ledgerscan.ports.chain_data_port import ChainDataPort
from ledgerscan.ports.price_port import PricePort
from ledgerscan.services.distribution import DistributionAnalyzer, early_holders, percent_of
from ledgerscan.services.event_crawler import EventCrawler
from ledgerscan.services.ledger import build_ledger
from ledgerscan.services.result_cache import CachedResult, ResultCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

# upper bound used when the chain head cannot be resolved
FALLBACK_LATEST_BLOCK = 9_223_372_036


def holders_key(token: str) -> str:
    return f"holders:v1:{token}:all"


class HoldersService:
    """
    Token holder snapshot: crawl every Transfer since creation, rebuild
    balances, and summarize concentration. Cached per token.

    Side lookups (creation, head block, supply, meta, quote) are retried
    with the crawler's policy. When one still fails the snapshot is built
    from its fallback, listed under `fallbacks`, and marked incomplete so it
    is never cached.
    """

    def __init__(
        self,
        chain: ChainDataPort,
        price: PricePort,
        cache: ResultCache,
        crawler: Optional[EventCrawler] = None,
        analyzer: Optional[DistributionAnalyzer] = None,
        exclude_addresses: Iterable[str] = settings.HOLDER_EXCLUDE_ADDRESSES,
        early_limit: int = 20,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.chain = chain
        self.price = price
        self.cache = cache
        self.crawler = crawler or EventCrawler(chain, settings.crawl_config())
        self.analyzer = analyzer or DistributionAnalyzer()
        self.exclude_addresses = frozenset(a.lower() for a in exclude_addresses)
        self.early_limit = early_limit
        self._clock = clock
        self._sleep = sleep
        cfg = self.crawler.config
        self._policy = RetryPolicy(cfg.retry_attempts, cfg.retry_delay_sec)

    async def get_holders(self, token: str, wait: bool = False) -> CachedResult:
        addr = require_address(token)
        return await self.cache.get_or_compute(
            holders_key(addr),
            lambda: self.compute(addr),
            ttl_sec=settings.HOLDERS_CACHE_TTL_SEC,
            lock_ttl_sec=settings.HOLDERS_LOCK_TTL_SEC,
            wait=wait,
        )

    async def compute(self, token: str) -> Dict[str, Any]:
        token = require_address(token)
        now = int(self._clock())
        fallbacks: List[str] = []

        meta = await self._lookup(
            "tokeninfo", lambda: self.chain.get_token_meta(token),
            TokenMeta(token_address=token, symbol=None, decimals=None), fallbacks,
        )
        creation: Optional[ContractCreation] = await self._lookup(
            "getcontractcreation", lambda: self.chain.get_contract_creation(token), None, fallbacks,
        )
        creation_block = creation.block_number if creation and creation.block_number else meta.first_block
        if creation_block is None:
            raise ComputationError(f"no creation block for {token}")
        from_block = max(0, creation_block - 1)
        latest = await self._lookup(
            "getblocknobytime", lambda: self.chain.get_block_by_timestamp(now, closest="before"),
            FALLBACK_LATEST_BLOCK, fallbacks,
        )
        to_block = max(from_block, latest)

        crawl = await self.crawler.fetch_range(token, from_block, to_block, meta.decimals)
        ledger = build_ledger(crawl.events)

        supply = await self._lookup(
            "tokensupply", lambda: self.chain.get_total_supply(token), None, fallbacks,
        )
        if supply is None:
            logger.info("no upstream supply for %s; inferring from ledger", token)
        quote = await self._lookup(
            "quote", lambda: self.price.get_spot_quote(token), SpotQuote.zero(token), fallbacks,
        )
        exclude = self.exclusions(token, quote)

        dist = self.analyzer.analyze(
            ledger,
            total_supply=supply,
            exclude=exclude,
            price_usd=quote.price_usd,
            market_cap_usd=quote.market_cap_usd,
            decimals=meta.decimals,
        )

        creator = creation.creator_address if creation else None
        creator_doc = None
        if creator:
            held = ledger.balances.get(creator, 0)
            creator_doc = {
                "address": creator,
                "balance_raw": str(held),
                "percent": dec_to_str(percent_of(held, dist.effective_supply)),
            }

        early = early_holders(crawl.events, ledger, exclude, limit=self.early_limit)
        return {
            "token": token,
            **self._meta_doc(meta, quote),
            "generated_at": now,
            "from_block": from_block,
            "to_block": to_block,
            "complete": crawl.complete and not fallbacks,
            "truncated": crawl.truncated,
            "fallbacks": fallbacks,
            "events": len(crawl.events),
            "price_usd": dec_to_str(quote.price_usd),
            "market_cap_usd": dec_to_str(quote.market_cap_usd),
            "bonding_curve": quote.is_bonding_curve,
            "creator": creator_doc,
            "distribution": distribution_to_dict(dist),
            "early_holders": early_holders_to_list(early),
        }

    def exclusions(self, token: str, quote: SpotQuote) -> Set[str]:
        """Pools and sinks that hold supply without being holders."""
        out: Set[str] = set(BURN_SENTINELS) | set(self.exclude_addresses)
        out.update(quote.pair_addresses)
        if quote.launchpad_pair:
            out.add(quote.launchpad_pair)
        if quote.is_bonding_curve:
            # the token contract is the pool until the curve completes
            out.add(token)
        return out

    @staticmethod
    def _meta_doc(meta: TokenMeta, quote: SpotQuote) -> Dict[str, Any]:
        return {
            "symbol": meta.symbol or quote.symbol,
            "name": meta.name or quote.name,
            "decimals": meta.decimals,
        }

    async def _lookup(
        self,
        label: str,
        fn: Callable[[], Awaitable[T]],
        fallback: T,
        fallbacks: List[str],
    ) -> T:
        try:
            return await with_retries(fn, self._policy, sleep=self._sleep, label=label)
        except LedgerScanError as e:
            logger.warning("%s failed (%s); using fallback, result will not be cached", label, e)
            fallbacks.append(label)
            return fallback
