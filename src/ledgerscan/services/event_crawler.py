from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ledgerscan.adapters.chain.rate_limiter import RetryPolicy, with_retries
from ledgerscan.core.addresses import normalize_address, parse_int
from ledgerscan.core.dto import (
    AccountHistory,
    CrawlResult,
    RawErc20Transfer,
    RawNativeTransfer,
    RawNftTransfer,
    TransferEvent,
)
from ledgerscan.core.errors import ComputationError, DataSourceError, RangeTooLargeError
from ledgerscan.core.models import CrawlConfig
from ledgerscan.ports.chain_data_port import (
    ACTION_ERC20,
    ACTION_INTERNAL,
    ACTION_NFT,
    ACTION_NORMAL,
    TRANSFER_TOPIC,
    ChainDataPort,
)
from ledgerscan.services.ledger import order_events, parse_transfer_log

logger = logging.getLogger(__name__)

# endblock used by the explorer for "up to the chain head"
OPEN_END_BLOCK = 999_999_999


class EventCrawler:
    """
    Windowed, paginated crawler over the explorer API.

    - Log crawl: fixed windows, page cursor inside each window, per-page
      retries, window halving on "range too large", hard caps on windows and
      wall time (truncation, not failure).
    - Account history: four ascending streams, fixed page size, page cap.

    Upstream failures are absorbed and reported through `complete=False`.
    """

    def __init__(
        self,
        chain: ChainDataPort,
        config: Optional[CrawlConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.chain = chain
        self.config = config or CrawlConfig()
        self._sleep = sleep
        self._clock = clock
        self._policy = RetryPolicy(self.config.retry_attempts, self.config.retry_delay_sec)

    # -------------------------
    # Transfer logs
    # -------------------------

    async def fetch_range(
        self,
        address: str,
        from_block: int,
        to_block: int,
        decimals: Optional[int] = None,
    ) -> CrawlResult:
        if from_block < 0 or to_block < 0 or from_block > to_block:
            raise ComputationError(f"bad block range {from_block}..{to_block}")

        cfg = self.config
        address = normalize_address(address)
        result = CrawlResult()
        window_size = max(cfg.min_window_size, cfg.window_size)
        started = self._clock()
        start = from_block

        while start <= to_block:
            if result.windows >= cfg.max_windows:
                logger.warning("window cap %d hit at block %d; truncating", cfg.max_windows, start)
                result.truncated = True
                break
            if cfg.time_budget_sec is not None and self._clock() - started > cfg.time_budget_sec:
                logger.warning("time budget %.1fs spent at block %d; truncating", cfg.time_budget_sec, start)
                result.truncated = True
                break

            end = min(start + window_size - 1, to_block)
            try:
                rows = await self._crawl_window(address, start, end)
            except RangeTooLargeError:
                if window_size > cfg.min_window_size:
                    new_size = max(cfg.min_window_size, window_size // 2)
                    logger.warning(
                        "range too large on %d-%d; shrinking window %d -> %d",
                        start, end, window_size, new_size,
                    )
                    window_size = new_size
                    continue  # same start, smaller window
                logger.warning("range too large on %d-%d at minimum window; skipping", start, end)
                result.complete = False
                result.skipped_windows.append((start, end))
                rows = []
            except _WindowFailed as wf:
                logger.warning("getLogs failed on %d-%d: %s; skipping rest of window", start, end, wf.cause)
                result.complete = False
                result.skipped_windows.append((start, end))
                rows = wf.partial

            for raw in rows:
                ev = parse_transfer_log(raw, decimals)
                if ev is not None:
                    result.events.append(ev)

            result.windows += 1
            start = end + 1

        result.events = order_events(result.events)
        result.final_window_size = window_size
        logger.info(
            "crawled %s blocks %d-%d: %d events, %d windows (complete=%s truncated=%s)",
            address, from_block, to_block, len(result.events), result.windows,
            result.complete, result.truncated,
        )
        return result

    async def _crawl_window(self, address: str, start: int, end: int) -> List[Dict[str, Any]]:
        """
        All pages of one window. RangeTooLargeError escapes so the caller can
        shrink; any other persistent failure is wrapped with the pages already
        fetched.
        """
        page_size = self.config.page_size
        rows: List[Dict[str, Any]] = []
        page = 1
        while True:
            try:
                batch = await with_retries(
                    lambda: self.chain.get_logs(address, TRANSFER_TOPIC, start, end, page, page_size),
                    self._policy,
                    sleep=self._sleep,
                    label=f"logs {start}-{end} p{page}",
                )
            except DataSourceError as e:
                raise _WindowFailed(rows, e) from e
            if not batch:
                break
            rows.extend(batch)
            if len(batch) < page_size:
                break  # last page of this window
            page += 1
        return rows

    # -------------------------
    # Account history
    # -------------------------

    async def fetch_account_history(self, address: str, from_timestamp: int = 0) -> AccountHistory:
        address = normalize_address(address)
        history = AccountHistory(address=address, from_timestamp=int(from_timestamp or 0))

        start_block = 0
        if history.from_timestamp > 0:
            try:
                start_block = await with_retries(
                    lambda: self.chain.get_block_by_timestamp(history.from_timestamp, closest="after"),
                    self._policy,
                    sleep=self._sleep,
                    label="getblocknobytime",
                )
            except DataSourceError as e:
                logger.warning("block lookup for ts %d failed (%s); scanning from genesis", history.from_timestamp, e)
                start_block = 0

        for action in (ACTION_NORMAL, ACTION_INTERNAL, ACTION_ERC20, ACTION_NFT):
            rows, ok = await self._pull_stream(action, address, start_block)
            if not ok:
                history.complete = False
            for r in rows:
                if parse_int(r.get("timeStamp")) < history.from_timestamp:
                    continue
                if str(r.get("isError", "0")) == "1":
                    continue
                if action in (ACTION_NORMAL, ACTION_INTERNAL):
                    history.native.append(_native_from_row(r, internal=(action == ACTION_INTERNAL)))
                elif action == ACTION_ERC20:
                    history.erc20.append(_erc20_from_row(r))
                else:
                    history.nft.append(_nft_from_row(r))

        logger.info(
            "history %s since %d: %d native, %d erc20, %d nft (complete=%s)",
            address, history.from_timestamp, len(history.native), len(history.erc20),
            len(history.nft), history.complete,
        )
        return history

    async def _pull_stream(self, action: str, address: str, start_block: int):
        cfg = self.config
        out: List[Dict[str, Any]] = []
        page = 1
        while True:
            try:
                batch = await with_retries(
                    lambda: self.chain.get_account_records(
                        action, address, start_block, OPEN_END_BLOCK, page, cfg.account_page_size, "asc",
                    ),
                    self._policy,
                    sleep=self._sleep,
                    label=f"{action} p{page}",
                )
            except (DataSourceError, RangeTooLargeError) as e:
                logger.warning("%s for %s failed on page %d: %s", action, address, page, e)
                return out, False
            if not batch:
                break
            out.extend(batch)
            if len(batch) < cfg.account_page_size:
                break
            if page >= cfg.account_max_pages:
                logger.warning("%s page cap %d hit for %s", action, cfg.account_max_pages, address)
                return out, False
            page += 1
        return out, True


class _WindowFailed(Exception):
    def __init__(self, partial: List[Dict[str, Any]], cause: Exception) -> None:
        super().__init__(str(cause))
        self.partial = partial
        self.cause = cause


def _addr(r: Dict[str, Any], key: str) -> str:
    return normalize_address(r.get(key))


def _native_from_row(r: Dict[str, Any], internal: bool) -> RawNativeTransfer:
    return RawNativeTransfer(
        tx_hash=str(r.get("hash") or ""),
        block_number=parse_int(r.get("blockNumber")),
        timestamp=parse_int(r.get("timeStamp")),
        from_address=_addr(r, "from"),
        to_address=_addr(r, "to"),
        value_wei=parse_int(r.get("value")),
        internal=internal,
    )


def _erc20_from_row(r: Dict[str, Any]) -> RawErc20Transfer:
    dec = r.get("tokenDecimal")
    return RawErc20Transfer(
        tx_hash=str(r.get("hash") or ""),
        block_number=parse_int(r.get("blockNumber")),
        timestamp=parse_int(r.get("timeStamp")),
        from_address=_addr(r, "from"),
        to_address=_addr(r, "to"),
        token_address=_addr(r, "contractAddress"),
        value_raw=parse_int(r.get("value")),
        token_symbol=r.get("tokenSymbol") or None,
        token_decimals=int(dec) if dec and str(dec).isdigit() else None,
        log_index=parse_int(r.get("logIndex")),
    )


def _nft_from_row(r: Dict[str, Any]) -> RawNftTransfer:
    return RawNftTransfer(
        tx_hash=str(r.get("hash") or ""),
        block_number=parse_int(r.get("blockNumber")),
        timestamp=parse_int(r.get("timeStamp")),
        from_address=_addr(r, "from"),
        to_address=_addr(r, "to"),
        contract_address=_addr(r, "contractAddress"),
        token_id=str(r.get("tokenID") or ""),
        collection_name=r.get("tokenName") or None,
    )
