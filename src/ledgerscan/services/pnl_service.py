from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from ledgerscan.config import settings
from ledgerscan.core.addresses import require_address
from ledgerscan.core.enums import PNL_WINDOWS
from ledgerscan.io.schemas import wallet_pnl_to_dict
from ledgerscan.ports.chain_data_port import ChainDataPort
from ledgerscan.ports.price_port import PricePort
from ledgerscan.services.event_crawler import EventCrawler
from ledgerscan.services.position_accountant import PositionAccountant
from ledgerscan.services.result_cache import CachedResult, ResultCache

logger = logging.getLogger(__name__)


def pnl_key(wallet: str, window: str) -> str:
    return f"pnl:v1:{wallet}:{window}"


class PnlService:
    def __init__(
        self,
        chain: ChainDataPort,
        price: PricePort,
        cache: ResultCache,
        crawler: Optional[EventCrawler] = None,
        accountant: Optional[PositionAccountant] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.chain = chain
        self.price = price
        self.cache = cache
        self.crawler = crawler or EventCrawler(chain, settings.crawl_config())
        self.accountant = accountant or PositionAccountant(settings.accounting_config())
        self._clock = clock

    async def get_pnl(self, wallet: str, window: str = "all", wait: bool = False) -> CachedResult:
        addr = require_address(wallet)
        if window not in PNL_WINDOWS:
            raise ValueError(f"unknown window {window!r}; expected one of {', '.join(PNL_WINDOWS)}")
        return await self.cache.get_or_compute(
            pnl_key(addr, window),
            lambda: self.compute(addr, window),
            ttl_sec=settings.PNL_CACHE_TTL_SEC,
            lock_ttl_sec=settings.PNL_LOCK_TTL_SEC,
            wait=wait,
        )

    async def compute(self, wallet: str, window: str = "all") -> Dict[str, Any]:
        wallet = require_address(wallet)
        now = int(self._clock())
        lookback = PNL_WINDOWS[window]
        since = now - lookback if lookback else 0

        history = await self.crawler.fetch_account_history(wallet, since)
        pnl = await self.accountant.compute(wallet, history, self.price)

        doc = wallet_pnl_to_dict(pnl)
        doc.update(
            window=window,
            generated_at=now,
            native_symbol=self.accountant.config.native_symbol,
        )
        logger.info("pnl %s/%s computed (complete=%s)", wallet, window, pnl.complete)
        return doc
