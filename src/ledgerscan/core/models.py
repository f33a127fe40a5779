from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from ledgerscan.core.enums import HolderStatus, LegSource, TradeSide



# Configuration models

@dataclass(frozen=True)
class CrawlConfig:
    """
    Knobs for the windowed log crawl and the account-history pulls.
    """

    window_size: int = 200_000
    min_window_size: int = 10_000
    page_size: int = 1000
    max_windows: int = 500
    time_budget_sec: Optional[float] = None    # None = unbounded

    account_page_size: int = 1000
    account_max_pages: int = 20

    retry_attempts: int = 3
    retry_delay_sec: float = 0.4


@dataclass(frozen=True)
class AccountingConfig:

    wrapped_native: str = ""
    routers: FrozenSet[str] = frozenset()
    native_decimals: int = 18
    native_symbol: str = "ETH"

    near_block_offset: int = 2
    dust_token_units: Decimal = Decimal("5")
    dust_usd: Decimal = Decimal("1")
    ranked_limit: int = 5

    @property
    def base_assets(self) -> FrozenSet[str]:
        return frozenset({self.wrapped_native}) if self.wrapped_native else frozenset()



# Ledger / distribution models

@dataclass
class BalanceLedger:
    balances: Dict[str, int] = field(default_factory=dict)
    burned_raw: int = 0

    @property
    def total_positive(self) -> int:
        return sum(v for v in self.balances.values() if v > 0)

    @property
    def inferred_supply(self) -> int:
        return self.total_positive + self.burned_raw


@dataclass(frozen=True)
class HolderRow:
    address: str
    balance_raw: int
    percent_of_supply: Decimal


@dataclass
class Band:
    label: str
    count: int = 0
    pct: Decimal = Decimal("0")       # share of holders in this band
    value_usd: Decimal = Decimal("0")


@dataclass(frozen=True)
class EarlyHolder:
    address: str
    first_received_raw: int
    current_raw: int
    status: HolderStatus


@dataclass
class Distribution:
    holder_count: int
    total_supply: int
    effective_supply: int
    burned_raw: int
    burned_pct: Decimal
    top_holders: List[HolderRow]
    top10_combined_pct: Decimal
    gini: Decimal
    pct_bands: List[Band]
    value_bands: List[Band]
    real_holders: int = 0
    micro_holders: int = 0
    excluded: List[str] = field(default_factory=list)



# Wallet / PnL models

@dataclass
class TokenLeg:
    inflow: int = 0
    outflow: int = 0
    senders: Set[str] = field(default_factory=set)
    recipients: Set[str] = field(default_factory=set)
    decimals: Optional[int] = None
    symbol: Optional[str] = None

    @property
    def net(self) -> int:
        return self.inflow - self.outflow


@dataclass
class TxLegAggregate:
    tx_hash: str
    block_number: int = 0
    timestamp: int = 0
    first_log_index: int = 0
    native_delta: int = 0      # wallet perspective, wei
    wrapped_delta: int = 0     # wallet perspective, wei
    tokens: Dict[str, TokenLeg] = field(default_factory=dict)

    @property
    def net_base(self) -> int:
        # wrap-then-swap nets out here instead of being counted twice
        return self.native_delta + self.wrapped_delta

    def moved_tokens(self) -> List[str]:
        return [t for t, leg in self.tokens.items() if leg.net != 0]


@dataclass
class BlockFlows:
    """
    Per-block net base-asset flow of the hashes that the primary rule did not
    already settle. A block's flow funds at most one movement.
    """

    net_by_block: Dict[int, int] = field(default_factory=dict)
    consumed: Set[int] = field(default_factory=set)

    @classmethod
    def from_legs(
        cls,
        legs: Iterable[TxLegAggregate],
        claimed_hashes: Iterable[str] = (),
    ) -> "BlockFlows":
        claimed = set(claimed_hashes)
        out: Dict[int, int] = {}
        for leg in legs:
            if leg.tx_hash in claimed:
                continue
            if leg.net_base == 0:
                continue
            out[leg.block_number] = out.get(leg.block_number, 0) + leg.net_base
        return cls(net_by_block=out)

    def available(self, block_number: int) -> int:
        if block_number in self.consumed:
            return 0
        return self.net_by_block.get(block_number, 0)

    def consume(self, block_number: int) -> None:
        self.consumed.add(block_number)


@dataclass(frozen=True)
class TokenMove:
    tx_hash: str
    token_address: str
    quantity: int              # always positive
    inbound: bool
    block_number: int
    timestamp: int
    log_index: int
    counterparties: FrozenSet[str]
    intermediaries: FrozenSet[str]
    price_native: Decimal = Decimal("0")
    decimals: Optional[int] = None
    native_decimals: int = 18

    @property
    def via_intermediary(self) -> bool:
        return bool(self.counterparties & self.intermediaries)


@dataclass(frozen=True)
class ResolvedLeg:
    side: TradeSide
    base_amount: int           # wei paid (buy) or received (sell)
    source: LegSource
    block_number: Optional[int] = None   # block whose flow was consumed


@dataclass
class TokenPositionState:
    remaining_qty: int = 0
    remaining_cost_basis: int = 0
    realized_pnl: int = 0
    gross_bought: int = 0
    gross_sold: int = 0
    airdrop_qty: int = 0

    base_spent: int = 0
    base_received: int = 0
    buys: int = 0
    sells: int = 0
    airdrop_count: int = 0
    disposed_qty: int = 0

    def apply_buy(self, qty: int, cost: int) -> None:
        qty, cost = max(0, qty), max(0, cost)
        self.remaining_qty += qty
        self.remaining_cost_basis += cost
        self.gross_bought += qty
        self.base_spent += cost
        self.buys += 1

    def apply_sell(self, qty: int, proceeds: int) -> int:
        """Weighted-average-cost disposal. Returns the realized PnL of this sale."""
        proceeds = max(0, proceeds)
        sold = min(max(0, qty), self.remaining_qty)
        cost_of_sold = self._cost_of(sold)
        pnl = proceeds - cost_of_sold

        self.realized_pnl += pnl
        self.remaining_qty -= sold
        self.remaining_cost_basis = max(0, self.remaining_cost_basis - cost_of_sold)
        if self.remaining_qty == 0:
            self.remaining_cost_basis = 0
        self.gross_sold += max(0, qty)
        self.base_received += proceeds
        self.sells += 1
        return pnl

    def apply_airdrop(self, qty: int) -> None:
        qty = max(0, qty)
        self.remaining_qty += qty
        self.airdrop_qty += qty
        self.airdrop_count += 1

    def apply_disposal(self, qty: int) -> None:
        # transfer out with no proceeds: basis leaves with the units, nothing realized
        gone = min(max(0, qty), self.remaining_qty)
        cost_of_gone = self._cost_of(gone)
        self.remaining_qty -= gone
        self.remaining_cost_basis = max(0, self.remaining_cost_basis - cost_of_gone)
        if self.remaining_qty == 0:
            self.remaining_cost_basis = 0
        self.disposed_qty += max(0, qty)

    def _cost_of(self, qty: int) -> int:
        if qty <= 0 or self.remaining_qty <= 0:
            return 0
        # multiply before dividing: exact floor of basis * qty / held
        return (self.remaining_cost_basis * qty) // self.remaining_qty


@dataclass
class TokenPnl:
    token_address: str
    symbol: Optional[str]
    decimals: int
    state: TokenPositionState
    price_native: Decimal = Decimal("0")
    price_usd: Decimal = Decimal("0")
    realized_native: Decimal = Decimal("0")
    unrealized_native: Decimal = Decimal("0")
    remaining_tokens: Decimal = Decimal("0")
    value_native: Decimal = Decimal("0")
    value_usd: Decimal = Decimal("0")
    airdrop_usd: Decimal = Decimal("0")
    quote_error: Optional[str] = None


@dataclass(frozen=True)
class NftAirdrop:
    contract_address: str
    collection_name: Optional[str]
    count: int


@dataclass
class WalletPnl:
    wallet: str
    since_ts: int
    tokens: List[TokenPnl] = field(default_factory=list)
    realized_native: Decimal = Decimal("0")
    unrealized_native: Decimal = Decimal("0")
    base_in_native: Decimal = Decimal("0")
    base_out_native: Decimal = Decimal("0")
    airdrop_usd: Decimal = Decimal("0")
    native_usd: Decimal = Decimal("0")
    open_positions: List[TokenPnl] = field(default_factory=list)
    top_gains: List[TokenPnl] = field(default_factory=list)
    top_losses: List[TokenPnl] = field(default_factory=list)
    airdrops: List[TokenPnl] = field(default_factory=list)
    nft_airdrops: List[NftAirdrop] = field(default_factory=list)
    classified: Dict[str, int] = field(default_factory=dict)   # "side:source" -> count
    complete: bool = True
