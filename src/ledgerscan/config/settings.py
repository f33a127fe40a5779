from decimal import Decimal
import os
from dotenv import load_dotenv

from ledgerscan.core.models import AccountingConfig, CrawlConfig

load_dotenv()


def _csv_set(raw: str) -> frozenset:
    return frozenset(p.strip().lower() for p in raw.split(",") if p.strip())


# ---- Etherscan (v2 multichain endpoint) ----
ETHERSCAN_API_KEY = os.environ.get("ETHERSCAN_API_KEY")
ETHERSCAN_CHAIN_ID = int(os.environ.get("ETHERSCAN_CHAIN_ID", "1"))     # Ethereum mainnet
ETHERSCAN_BASE_URL = os.environ.get("ETHERSCAN_BASE_URL", "https://api.etherscan.io/v2/api")

ETHERSCAN_REQUESTS_PER_SEC = float(os.environ.get("ETHERSCAN_RPS", "5"))
ETHERSCAN_TIMEOUT_SEC = float(os.environ.get("ETHERSCAN_TIMEOUT_SEC", "25"))
ETHERSCAN_MAX_RETRIES = 3
ETHERSCAN_RETRY_DELAY_SEC = 0.4
ETHERSCAN_PAGE_SIZE = 1000

# ---- Log crawl ----
CRAWL_WINDOW_BLOCKS = int(os.environ.get("CRAWL_WINDOW_BLOCKS", "200000"))
CRAWL_MIN_WINDOW_BLOCKS = 10_000
CRAWL_MAX_WINDOWS = int(os.environ.get("CRAWL_MAX_WINDOWS", "500"))
CRAWL_TIME_BUDGET_SEC = float(os.environ.get("CRAWL_TIME_BUDGET_SEC", "0")) or None
ACCOUNT_MAX_PAGES = int(os.environ.get("ACCOUNT_MAX_PAGES", "20"))

# ---- DexScreener ----
DEXSCREENER_BASE_URL = "https://api.dexscreener.com/latest/dex"
DEXSCREENER_REQUESTS_PER_SEC = 1.0
DEXSCREENER_TIMEOUT_SEC = 15
DEXSCREENER_MAX_RETRIES = 3
DEXSCREENER_CHAIN_ID = os.environ.get("DEXSCREENER_CHAIN_ID", "ethereum")

# ---- Cache ----
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
HOLDERS_CACHE_TTL_SEC = 6 * 60 * 60
HOLDERS_LOCK_TTL_SEC = 180
PNL_CACHE_TTL_SEC = 120
PNL_LOCK_TTL_SEC = 60

# ----- Accounting ------

NATIVE_SYMBOL = os.environ.get("NATIVE_SYMBOL", "ETH")
NATIVE_DECIMALS = 18

# WETH on mainnet. Lowercase.
WRAPPED_NATIVE_ADDRESS = os.environ.get(
    "WRAPPED_NATIVE_ADDRESS", "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
).lower()

# Routers / forwarders whose transfers settle a swap elsewhere. Lowercase.
ROUTER_ADDRESSES = _csv_set(os.environ.get("ROUTER_ADDRESSES", "")) or frozenset({
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # Uniswap V2 Router02
    "0x3fc91a3afd70395cd496c647d5a6cc9d4b2b7fad",  # Uniswap Universal Router
    "0x1111111254eeb25477b68fb85ed929f73a960582",  # 1inch v5
})

# extra addresses never counted as holders (team vaults, lockers...)
HOLDER_EXCLUDE_ADDRESSES = _csv_set(os.environ.get("HOLDER_EXCLUDE_ADDRESSES", ""))

NEAR_BLOCK_OFFSET = int(os.environ.get("NEAR_BLOCK_OFFSET", "2"))
DUST_TOKEN_UNITS = Decimal(os.environ.get("DUST_TOKEN_UNITS", "5"))
DUST_USD = Decimal(os.environ.get("DUST_USD", "1"))


def crawl_config() -> CrawlConfig:
    return CrawlConfig(
        window_size=CRAWL_WINDOW_BLOCKS,
        min_window_size=CRAWL_MIN_WINDOW_BLOCKS,
        page_size=ETHERSCAN_PAGE_SIZE,
        max_windows=CRAWL_MAX_WINDOWS,
        time_budget_sec=CRAWL_TIME_BUDGET_SEC,
        account_page_size=ETHERSCAN_PAGE_SIZE,
        account_max_pages=ACCOUNT_MAX_PAGES,
        retry_attempts=ETHERSCAN_MAX_RETRIES,
        retry_delay_sec=ETHERSCAN_RETRY_DELAY_SEC,
    )


def accounting_config() -> AccountingConfig:
    return AccountingConfig(
        wrapped_native=WRAPPED_NATIVE_ADDRESS,
        routers=ROUTER_ADDRESSES,
        native_decimals=NATIVE_DECIMALS,
        native_symbol=NATIVE_SYMBOL,
        near_block_offset=NEAR_BLOCK_OFFSET,
        dust_token_units=DUST_TOKEN_UNITS,
        dust_usd=DUST_USD,
    )
