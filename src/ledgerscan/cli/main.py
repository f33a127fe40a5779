from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from ledgerscan.config import settings
from ledgerscan.core.enums import PNL_WINDOWS
from ledgerscan.core.errors import LedgerScanError
from ledgerscan.io.output_writer import write_summary_json
from ledgerscan.services.holders_service import HoldersService
from ledgerscan.services.pnl_service import PnlService
from ledgerscan.services.result_cache import CachedResult, ResultCache

from ledgerscan.adapters.cache.memory_cache_adapter import MemoryCacheAdapter
from ledgerscan.adapters.cache.redis_cache_adapter import RedisCacheAdapter
from ledgerscan.adapters.chain.etherscan_chain_adapter import EtherscanChainAdapter
from ledgerscan.adapters.pricing.price_adapter import PriceAdapter

logger = logging.getLogger("ledgerscan")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ledgerscan", description="ERC-20 holder snapshots and wallet PnL")
    p.add_argument("--out", default=None, help="Write the JSON document to this folder instead of stdout")
    p.add_argument("--memory-cache", action="store_true", help="Use an in-process cache instead of Redis")
    p.add_argument("--wait", action="store_true", help="Wait for a computation already running elsewhere")
    p.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING...)")

    sub = p.add_subparsers(dest="command", required=True)
    h = sub.add_parser("holders", help="Holder distribution for a token")
    h.add_argument("token", help="Token contract address")

    w = sub.add_parser("pnl", help="Realized / unrealized PnL for a wallet")
    w.add_argument("wallet", help="Wallet address")
    w.add_argument("--window", choices=list(PNL_WINDOWS), default="all", help="Lookback window")
    return p


async def _run(args: argparse.Namespace) -> CachedResult:
    cache_adapter = MemoryCacheAdapter() if args.memory_cache else RedisCacheAdapter(settings.REDIS_URL)
    cache = ResultCache(cache_adapter)
    price = PriceAdapter()
    try:
        async with EtherscanChainAdapter() as chain:
            if args.command == "holders":
                return await HoldersService(chain, price, cache).get_holders(args.token, wait=args.wait)
            return await PnlService(chain, price, cache).get_pnl(args.wallet, args.window, wait=args.wait)
    finally:
        price.close()
        if isinstance(cache_adapter, RedisCacheAdapter):
            await cache_adapter.close()


def main() -> int:
    args = build_arg_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Etherscan key should come from env or settings file
    if not os.getenv("ETHERSCAN_API_KEY"):
        print("Missing ETHERSCAN_API_KEY environment variable", file=sys.stderr)
        return 2

    try:
        result = asyncio.run(_run(args))
    except (LedgerScanError, ValueError) as exc:
        print(f"Error: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1

    if not result.ready:
        print("Not ready: another run is computing this result, try again shortly", file=sys.stderr)
        return 3

    doc = result.payload or {}
    if args.out:
        subject = args.token if args.command == "holders" else f"{args.wallet}_{args.window}"
        path = write_summary_json(doc, args.out, f"{args.command}_{subject.lower()}.json")
        print(f"Wrote: {path}")
    else:
        json.dump(doc, sys.stdout, indent=2)
        sys.stdout.write("\n")
    if not doc.get("complete", True):
        logger.warning("result built from partial upstream data; it was not cached")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
