from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ledgerscan.config.settings import (
    ETHERSCAN_API_KEY,
    ETHERSCAN_CHAIN_ID,
    ETHERSCAN_BASE_URL,
    ETHERSCAN_REQUESTS_PER_SEC,
    ETHERSCAN_TIMEOUT_SEC,
)

from ledgerscan.adapters.chain.rate_limiter import RateLimiter
from ledgerscan.core.addresses import normalize_address, parse_int
from ledgerscan.core.errors import DataSourceError, RangeTooLargeError, RateLimitError
from ledgerscan.ports.chain_data_port import ACTION_ERC20, ChainDataPort
from ledgerscan.core.dto import ContractCreation, TokenMeta

logger = logging.getLogger(__name__)

# status "0" messages that mean "nothing here" rather than failure
_EMPTY_MARKERS = ("no records found", "no transactions found", "no token transfers found")
_TOO_LARGE_MARKERS = ("too large", "query returned more than", "exceeds the maximum")


class EtherscanChainAdapter(ChainDataPort):
    """
    Etherscan v2 explorer client. Every request waits on the injected
    RateLimiter; one limiter should be shared by all adapters of a process.

    Requests are single-shot. Retries and window shrinking belong to the
    crawler; this class only maps failures onto the error types.
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        api_key: Optional[str] = ETHERSCAN_API_KEY,
        chain_id: int = ETHERSCAN_CHAIN_ID,
        base_url: str = ETHERSCAN_BASE_URL,
        timeout_sec: float = ETHERSCAN_TIMEOUT_SEC,
    ) -> None:
        self._api_key = api_key
        self._chainid = chain_id
        self._base_url = base_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)

        self._rl = rate_limiter or RateLimiter(ETHERSCAN_REQUESTS_PER_SEC)
        self._session = session
        self._owns_session = session is None

        self._token_meta_cache: Dict[str, TokenMeta] = {}

    async def __aenter__(self) -> "EtherscanChainAdapter":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ---------- internal ----------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _call(self, params: Dict[str, Any]) -> Any:
        req = {k: str(v) for k, v in params.items() if v is not None}
        req["chainid"] = str(self._chainid)
        if self._api_key:
            req["apikey"] = self._api_key

        await self._rl.acquire()
        try:
            async with self._get_session().get(self._base_url, params=req) as resp:
                if resp.status == 400:
                    body = await resp.text()
                    raise RangeTooLargeError(f"HTTP 400 for {params.get('action')}: {body[:200]}")
                if resp.status == 429:
                    raise RateLimitError("HTTP 429 from Etherscan")
                if resp.status >= 400:
                    raise DataSourceError(f"HTTP {resp.status} for {params.get('action')}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DataSourceError(f"Etherscan request failed: {e!r}") from e

        return self._unwrap(data)

    @staticmethod
    def _unwrap(data: Any) -> Any:
        if not isinstance(data, dict):
            raise DataSourceError(f"Invalid Etherscan response: {data!r}")

        result = data.get("result")
        status = str(data.get("status", "1"))
        # proxy module answers JSON-RPC style, without status
        if "jsonrpc" in data:
            if data.get("error"):
                raise DataSourceError(f"Etherscan proxy error: {data['error']}")
            return result
        if status == "1":
            return result

        message = str(data.get("message", ""))
        detail = result if isinstance(result, str) else message
        text = f"{message} {detail}".lower()
        if any(m in text for m in _EMPTY_MARKERS):
            return []
        if "rate limit" in text:
            raise RateLimitError(detail or message)
        if any(m in text for m in _TOO_LARGE_MARKERS):
            raise RangeTooLargeError(detail or message)
        raise DataSourceError(f"Etherscan error: {detail or message or 'unknown'}")

    @staticmethod
    def _list_result(result: Any) -> List[Dict[str, Any]]:
        return [r for r in result if isinstance(r, dict)] if isinstance(result, list) else []

    # ---------- port methods ----------

    async def get_logs(
        self,
        address: str,
        topic0: str,
        from_block: int,
        to_block: int,
        page: int,
        offset: int,
    ) -> List[Dict[str, Any]]:
        result = await self._call({
            "module": "logs",
            "action": "getLogs",
            "address": address,
            "topic0": topic0,
            "fromBlock": from_block,
            "toBlock": to_block,
            "page": page,
            "offset": offset,
        })
        return self._list_result(result)

    async def get_account_records(
        self,
        action: str,
        address: str,
        start_block: int,
        end_block: int,
        page: int,
        offset: int,
        sort: str = "asc",
    ) -> List[Dict[str, Any]]:
        result = await self._call({
            "module": "account",
            "action": action,
            "address": address,
            "startblock": start_block,
            "endblock": end_block,
            "page": page,
            "offset": offset,
            "sort": sort,
        })
        return self._list_result(result)

    async def get_contract_creation(self, address: str) -> Optional[ContractCreation]:
        result = await self._call({
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": address,
        })
        rows = self._list_result(result)
        if not rows:
            return None
        row = rows[0]
        block = parse_int(row.get("blockNumber") or row.get("blocknumber"), 0)
        return ContractCreation(
            contract_address=normalize_address(row.get("contractAddress") or address),
            creator_address=normalize_address(row.get("contractCreator")) or None,
            tx_hash=row.get("txHash") or row.get("transactionHash"),
            block_number=block or None,
        )

    async def get_total_supply(self, token_address: str) -> Optional[int]:
        result = await self._call({
            "module": "stats",
            "action": "tokensupply",
            "contractaddress": token_address,
        })
        supply = parse_int(result, 0)
        return supply or None

    async def get_token_meta(self, token_address: str) -> TokenMeta:
        ta = normalize_address(token_address)
        if ta in self._token_meta_cache:
            return self._token_meta_cache[ta]

        # earliest token transfer carries symbol / decimals / first block
        result = await self._call({
            "module": "account",
            "action": ACTION_ERC20,
            "contractaddress": ta,
            "page": 1,
            "offset": 1,
            "sort": "asc",
        })
        rows = self._list_result(result)
        if not rows:
            meta = TokenMeta(token_address=ta, symbol=None, decimals=None)
        else:
            r = rows[0]
            dec = r.get("tokenDecimal")
            meta = TokenMeta(
                token_address=ta,
                symbol=r.get("tokenSymbol") or None,
                decimals=int(dec) if dec and str(dec).isdigit() else None,
                name=r.get("tokenName") or None,
                first_block=parse_int(r.get("blockNumber"), 0) or None,
            )
        self._token_meta_cache[ta] = meta
        return meta

    async def get_block_by_timestamp(self, unix_ts: int, closest: str = "before") -> int:
        result = await self._call({
            "module": "block",
            "action": "getblocknobytime",
            "timestamp": int(unix_ts),
            "closest": closest,
        })
        if isinstance(result, dict):
            result = result.get("blockNumber") or result.get("BlockNumber")
        block = parse_int(result, -1)
        if block < 0:
            raise DataSourceError(f"Invalid block result: {result!r}")
        return block
