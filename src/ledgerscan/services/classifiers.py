from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Callable, Iterable, List, Optional, Set

from ledgerscan.core.enums import LegSource, TradeSide
from ledgerscan.core.models import AccountingConfig, BlockFlows, ResolvedLeg, TokenMove, TxLegAggregate

# (tx legs, block flows, token move) -> resolved leg, or None to fall through
Classifier = Callable[[TxLegAggregate, BlockFlows, TokenMove], Optional[ResolvedLeg]]


def _side(move: TokenMove) -> TradeSide:
    return TradeSide.BUY if move.inbound else TradeSide.SELL


def _settles(move: TokenMove, net_base: int) -> bool:
    # a buy is paid for (base leaves the wallet), a sell is paid out
    return net_base < 0 if move.inbound else net_base > 0


def primary_rule(tx: TxLegAggregate, blocks: BlockFlows, move: TokenMove) -> Optional[ResolvedLeg]:
    """The hash moved exactly one non-base token and its own base leg settles it."""
    moved = tx.moved_tokens()
    if len(moved) != 1 or moved[0] != move.token_address:
        return None
    if not _settles(move, tx.net_base):
        return None
    return ResolvedLeg(_side(move), abs(tx.net_base), LegSource.TX, tx.block_number)


def claimed_hashes(legs: Iterable[TxLegAggregate]) -> Set[str]:
    """Hashes the primary rule settles on their own; kept out of block flows."""
    out: Set[str] = set()
    for tx in legs:
        moved = tx.moved_tokens()
        if len(moved) != 1:
            continue
        inbound = tx.tokens[moved[0]].net > 0
        if (inbound and tx.net_base < 0) or (not inbound and tx.net_base > 0):
            out.add(tx.tx_hash)
    return out


def _block_leg(blocks: BlockFlows, move: TokenMove, block: int, source: LegSource) -> Optional[ResolvedLeg]:
    net = blocks.available(block)
    if not _settles(move, net):
        return None
    blocks.consume(block)
    return ResolvedLeg(_side(move), abs(net), source, block)


def same_block_rule(tx: TxLegAggregate, blocks: BlockFlows, move: TokenMove) -> Optional[ResolvedLeg]:
    """Router-mediated trade settled by another hash in the same block."""
    if not move.via_intermediary:
        return None
    return _block_leg(blocks, move, move.block_number, LegSource.BLOCK)


def near_block_rule(max_offset: int = 2) -> Classifier:
    """
    Same as the block rule but looks at neighbouring blocks, nearest first
    and earlier before later at equal distance (-1, +1, -2, +2, ...).
    """
    offsets: List[int] = []
    for d in range(1, max(0, max_offset) + 1):
        offsets.extend((-d, d))

    def rule(tx: TxLegAggregate, blocks: BlockFlows, move: TokenMove) -> Optional[ResolvedLeg]:
        if not move.via_intermediary:
            return None
        for off in offsets:
            block = move.block_number + off
            if block < 0:
                continue
            leg = _block_leg(blocks, move, block, LegSource.NEAR_BLOCK)
            if leg is not None:
                return leg
        return None

    rule.__name__ = f"near_block_rule_{max_offset}"
    return rule


def oracle_value_wei(quantity: int, decimals: int, price_native: Decimal, native_decimals: int = 18) -> int:
    """qty / 10^decimals * price, in base-asset wei, rounded down."""
    if quantity <= 0 or price_native <= 0:
        return 0
    with localcontext() as ctx:
        ctx.prec = 80
        wei = Decimal(quantity) * price_native * (Decimal(10) ** (native_decimals - decimals))
        return int(wei.to_integral_value(rounding=ROUND_DOWN))


def oracle_rule(tx: TxLegAggregate, blocks: BlockFlows, move: TokenMove) -> Optional[ResolvedLeg]:
    """No on-chain settlement found: value a pool/router trade at spot."""
    if not move.via_intermediary or move.price_native <= 0 or move.decimals is None:
        return None
    value = oracle_value_wei(move.quantity, move.decimals, move.price_native, move.native_decimals)
    if value <= 0:
        return None
    return ResolvedLeg(_side(move), value, LegSource.ORACLE)


def fallback_leg(move: TokenMove) -> ResolvedLeg:
    # unpaid inflow is a zero-cost lot; unpaid outflow leaves without proceeds
    side = TradeSide.AIRDROP if move.inbound else TradeSide.DISPOSAL
    return ResolvedLeg(side, 0, LegSource.UNRESOLVED)


def default_cascade(config: Optional[AccountingConfig] = None) -> List[Classifier]:
    cfg = config or AccountingConfig()
    return [
        primary_rule,
        same_block_rule,
        near_block_rule(cfg.near_block_offset),
        oracle_rule,
    ]


def classify(
    cascade: Iterable[Classifier],
    tx: TxLegAggregate,
    blocks: BlockFlows,
    move: TokenMove,
) -> ResolvedLeg:
    for rule in cascade:
        leg = rule(tx, blocks, move)
        if leg is not None:
            return leg
    return fallback_leg(move)
