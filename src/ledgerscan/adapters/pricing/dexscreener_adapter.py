from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from ledgerscan.adapters.chain.rate_limiter import RateLimiter, RetryPolicy, with_retries
from ledgerscan.config import settings
from ledgerscan.core.addresses import normalize_address
from ledgerscan.core.dto import DexScreenerPair
from ledgerscan.core.errors import DataSourceError, RateLimitError

logger = logging.getLogger(__name__)


class DexScreenerAdapter:
    def __init__(
        self,
        base_url: str = settings.DEXSCREENER_BASE_URL,
        requests_per_sec: float = settings.DEXSCREENER_REQUESTS_PER_SEC,
        timeout_sec: int = settings.DEXSCREENER_TIMEOUT_SEC,
        max_retries: int = settings.DEXSCREENER_MAX_RETRIES,
        chain_id: Optional[str] = settings.DEXSCREENER_CHAIN_ID,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_sec
        self._policy = RetryPolicy(attempts=max_retries, base_delay_sec=settings.ETHERSCAN_RETRY_DELAY_SEC)
        self._chain_id = (chain_id or "").lower()
        self._rl = rate_limiter or RateLimiter(requests_per_sec)
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def _get(self, url: str) -> Dict[str, Any]:
        # blocking; runs in a worker thread
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            raise DataSourceError(f"DexScreener request failed: {e!r}") from e
        if resp.status_code == 429:
            raise RateLimitError("HTTP 429 from DexScreener")
        if resp.status_code >= 400:
            raise DataSourceError(f"DexScreener HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise DataSourceError(f"Invalid DexScreener body: {e}") from e
        if not isinstance(data, dict):
            raise DataSourceError(f"Invalid DexScreener response: {data}")
        return data

    async def _call(self, path: str) -> Dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"

        async def once() -> Dict[str, Any]:
            await self._rl.acquire()
            return await asyncio.to_thread(self._get, url)

        return await with_retries(once, self._policy, label=f"dexscreener {path}")

    @staticmethod
    def _dec(val: Any) -> Optional[Decimal]:
        if val is None:
            return None
        try:
            return Decimal(str(val))
        except (InvalidOperation, ValueError):
            return None

    async def get_pairs(self, token_address: str) -> List[DexScreenerPair]:
        data = await self._call(f"tokens/{normalize_address(token_address)}")
        pairs = data.get("pairs") if isinstance(data.get("pairs"), list) else []
        out: List[DexScreenerPair] = []
        for p in pairs:
            if not isinstance(p, dict):
                continue
            chain_id = str(p.get("chainId") or "").lower()
            if self._chain_id and chain_id != self._chain_id:
                continue
            base = p.get("baseToken") or {}
            quote = p.get("quoteToken") or {}
            launchpad_pair, bonding = self._launchpad(p)
            out.append(
                DexScreenerPair(
                    chain_id=chain_id,
                    dex_id=str(p.get("dexId") or ""),
                    pair_address=normalize_address(p.get("pairAddress")),
                    base_token=normalize_address(base.get("address")),
                    quote_token=normalize_address(quote.get("address")),
                    price_usd=self._dec(p.get("priceUsd")),
                    price_native=self._dec(p.get("priceNative")),
                    liquidity_usd=self._dec((p.get("liquidity") or {}).get("usd")),
                    volume_24h=self._dec((p.get("volume") or {}).get("h24")),
                    fdv=self._dec(p.get("fdv")),
                    market_cap=self._dec(p.get("marketCap")),
                    base_symbol=base.get("symbol") or None,
                    base_name=base.get("name") or None,
                    launchpad_pair=launchpad_pair,
                    bonding=bonding,
                )
            )
        logger.debug("dexscreener %s: %d pairs on %s", token_address, len(out), self._chain_id or "any chain")
        return out

    def _launchpad(self, p: Dict[str, Any]):
        """
        Launchpad pool address and whether the token is still on its bonding
        curve (moonshot-style launches, where the token contract itself acts
        as the pool until graduation).
        """
        moon = p.get("moonshot") if isinstance(p.get("moonshot"), dict) else {}
        pair = normalize_address(p.get("launchPadPair") or moon.get("pairAddress")) or None
        progress = self._dec(moon.get("progress")) or Decimal("0")
        bonding = (
            str(p.get("dexId") or "").lower() == "moonshot"
            or pair is not None
            or Decimal("0") < progress < Decimal("100")
        )
        return pair, bonding
