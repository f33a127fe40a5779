from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class TransferEvent:
    tx_hash: str
    block_number: int
    log_index: int
    from_address: str
    to_address: str
    value_raw: int          # token amount in raw units
    token_decimals: Optional[int] = None

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class RawNativeTransfer:
    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: str
    value_wei: int          # native value in wei (raw)
    internal: bool = False


@dataclass(frozen=True)
class RawErc20Transfer:
    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: str
    token_address: str
    value_raw: int          # token amount in raw units (before decimals)
    token_symbol: Optional[str] = None
    token_decimals: Optional[int] = None
    log_index: int = 0


@dataclass(frozen=True)
class RawNftTransfer:
    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: str
    contract_address: str
    token_id: str
    collection_name: Optional[str] = None


@dataclass(frozen=True)
class TokenMeta:
    token_address: str
    symbol: Optional[str]
    decimals: Optional[int]
    name: Optional[str] = None
    first_block: Optional[int] = None


@dataclass(frozen=True)
class ContractCreation:
    contract_address: str
    creator_address: Optional[str]
    tx_hash: Optional[str]
    block_number: Optional[int]


@dataclass(frozen=True)
class DexScreenerPair:
    chain_id: str
    dex_id: str
    pair_address: str
    base_token: str
    quote_token: str
    price_usd: Optional[Decimal]
    price_native: Optional[Decimal]
    liquidity_usd: Optional[Decimal]
    volume_24h: Optional[Decimal]
    fdv: Optional[Decimal]
    market_cap: Optional[Decimal]
    base_symbol: Optional[str] = None
    base_name: Optional[str] = None
    launchpad_pair: Optional[str] = None
    bonding: bool = False


@dataclass(frozen=True)
class SpotQuote:
    token_address: str
    price_native: Decimal = Decimal("0")    # token price in the chain's base asset
    price_usd: Decimal = Decimal("0")
    market_cap_usd: Decimal = Decimal("0")
    pair_addresses: Tuple[str, ...] = ()
    launchpad_pair: Optional[str] = None
    is_bonding_curve: bool = False
    symbol: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def zero(cls, token_address: str) -> "SpotQuote":
        return cls(token_address=token_address.lower())

    @property
    def is_zero(self) -> bool:
        return self.price_native <= 0 and self.price_usd <= 0


@dataclass
class CrawlResult:
    events: List[TransferEvent] = field(default_factory=list)
    complete: bool = True
    truncated: bool = False
    windows: int = 0
    skipped_windows: List[Tuple[int, int]] = field(default_factory=list)
    final_window_size: int = 0


@dataclass
class AccountHistory:
    address: str
    from_timestamp: int = 0
    native: List[RawNativeTransfer] = field(default_factory=list)
    erc20: List[RawErc20Transfer] = field(default_factory=list)
    nft: List[RawNftTransfer] = field(default_factory=list)
    complete: bool = True
