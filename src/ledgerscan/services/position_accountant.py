from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ledgerscan.core.addresses import normalize_address
from ledgerscan.core.dto import AccountHistory, SpotQuote
from ledgerscan.core.enums import TradeSide
from ledgerscan.core.models import (
    AccountingConfig,
    BlockFlows,
    NftAirdrop,
    TokenLeg,
    TokenMove,
    TokenPnl,
    TokenPositionState,
    TxLegAggregate,
    WalletPnl,
)
from ledgerscan.ports.price_port import PricePort
from ledgerscan.services.classifiers import Classifier, claimed_hashes, classify, default_cascade

logger = logging.getLogger(__name__)


def build_tx_legs(wallet: str, history: AccountHistory, wrapped_native: str = "") -> Dict[str, TxLegAggregate]:
    """
    Fold a wallet's history into one aggregate per transaction hash, all
    deltas from the wallet's point of view.
    """
    me = normalize_address(wallet)
    wrapped = normalize_address(wrapped_native)
    legs: Dict[str, TxLegAggregate] = {}

    def leg_for(tx_hash: str, block: int, ts: int) -> TxLegAggregate:
        agg = legs.get(tx_hash)
        if agg is None:
            agg = TxLegAggregate(tx_hash=tx_hash, block_number=block, timestamp=ts, first_log_index=-1)
            legs[tx_hash] = agg
        return agg

    for t in history.native:
        if t.value_wei <= 0:
            continue
        agg = leg_for(t.tx_hash, t.block_number, t.timestamp)
        if normalize_address(t.to_address) == me:
            agg.native_delta += t.value_wei
        if normalize_address(t.from_address) == me:
            agg.native_delta -= t.value_wei

    for t in history.erc20:
        agg = leg_for(t.tx_hash, t.block_number, t.timestamp)
        if agg.first_log_index < 0 or t.log_index < agg.first_log_index:
            agg.first_log_index = t.log_index
        frm = normalize_address(t.from_address)
        to = normalize_address(t.to_address)
        token = normalize_address(t.token_address)

        if wrapped and token == wrapped:
            if to == me:
                agg.wrapped_delta += t.value_raw
            if frm == me:
                agg.wrapped_delta -= t.value_raw
            continue

        tl = agg.tokens.get(token)
        if tl is None:
            tl = TokenLeg(decimals=t.token_decimals, symbol=t.token_symbol)
            agg.tokens[token] = tl
        if to == me:
            tl.inflow += t.value_raw
            tl.senders.add(frm)
        if frm == me:
            tl.outflow += t.value_raw
            tl.recipients.add(to)

    for agg in legs.values():
        if agg.first_log_index < 0:
            agg.first_log_index = 0
    return legs


def nft_airdrops(wallet: str, history: AccountHistory, legs: Dict[str, TxLegAggregate]) -> List[NftAirdrop]:
    """NFT inflows the wallet did not pay base asset for, counted per collection."""
    me = normalize_address(wallet)
    counts: Dict[str, int] = {}
    names: Dict[str, Optional[str]] = {}
    for t in history.nft:
        if normalize_address(t.to_address) != me:
            continue
        leg = legs.get(t.tx_hash)
        if leg is not None and leg.net_base < 0:
            continue  # paid mint or purchase
        c = normalize_address(t.contract_address)
        counts[c] = counts.get(c, 0) + 1
        names.setdefault(c, t.collection_name)
    out = [NftAirdrop(c, names.get(c), n) for c, n in counts.items()]
    out.sort(key=lambda a: (-a.count, a.contract_address))
    return out


def _scale(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


class PositionAccountant:
    """
    Average-cost PnL engine.

    Token movements are replayed in chronological order; each is settled by
    the first classifier in the cascade that can explain it, and otherwise
    booked as a zero-cost airdrop (inflow) or a zero-proceeds disposal
    (outflow).
    """

    def __init__(
        self,
        config: Optional[AccountingConfig] = None,
        cascade: Optional[Sequence[Classifier]] = None,
    ) -> None:
        self.config = config or AccountingConfig()
        self.cascade = list(cascade) if cascade is not None else default_cascade(self.config)

    # -------------------------
    # Replay
    # -------------------------

    def token_moves(
        self,
        legs: Iterable[TxLegAggregate],
        quotes: Dict[str, SpotQuote],
    ) -> List[Tuple[TxLegAggregate, TokenMove]]:
        cfg = self.config
        out: List[Tuple[TxLegAggregate, TokenMove]] = []
        for tx in legs:
            for token, tl in tx.tokens.items():
                net = tl.net
                if net == 0 or token in cfg.base_assets:
                    continue
                inbound = net > 0
                q = quotes.get(token) or SpotQuote.zero(token)
                out.append((tx, TokenMove(
                    tx_hash=tx.tx_hash,
                    token_address=token,
                    quantity=abs(net),
                    inbound=inbound,
                    block_number=tx.block_number,
                    timestamp=tx.timestamp,
                    log_index=tx.first_log_index,
                    counterparties=frozenset(tl.senders if inbound else tl.recipients),
                    intermediaries=frozenset(cfg.routers) | {token} | frozenset(q.pair_addresses),
                    price_native=q.price_native,
                    decimals=tl.decimals,
                    native_decimals=cfg.native_decimals,
                )))
        out.sort(key=lambda p: (p[1].timestamp, p[1].block_number, p[1].log_index, p[1].tx_hash, p[1].token_address))
        return out

    def replay(
        self,
        legs: Dict[str, TxLegAggregate],
        quotes: Optional[Dict[str, SpotQuote]] = None,
    ) -> Tuple[Dict[str, TokenPositionState], Dict[str, int]]:
        """Pure: same legs and quotes give the same states."""
        quotes = quotes or {}
        blocks = BlockFlows.from_legs(legs.values(), claimed_hashes(legs.values()))
        states: Dict[str, TokenPositionState] = {}
        classified: Dict[str, int] = {}

        for tx, move in self.token_moves(legs.values(), quotes):
            state = states.setdefault(move.token_address, TokenPositionState())
            leg = classify(self.cascade, tx, blocks, move)
            key = f"{leg.side.value}:{leg.source.value}"
            classified[key] = classified.get(key, 0) + 1

            if leg.side is TradeSide.BUY:
                state.apply_buy(move.quantity, leg.base_amount)
            elif leg.side is TradeSide.SELL:
                state.apply_sell(move.quantity, leg.base_amount)
            elif leg.side is TradeSide.AIRDROP:
                state.apply_airdrop(move.quantity)
            else:
                state.apply_disposal(move.quantity)
        return states, classified

    # -------------------------
    # Full computation
    # -------------------------

    async def compute(self, wallet: str, history: AccountHistory, price_port: PricePort) -> WalletPnl:
        cfg = self.config
        wallet = normalize_address(wallet)
        legs = build_tx_legs(wallet, history, cfg.wrapped_native)

        meta: Dict[str, TokenLeg] = {}
        for tx in legs.values():
            for token, tl in tx.tokens.items():
                known = meta.get(token)
                if known is None or (known.decimals is None and tl.decimals is not None):
                    meta[token] = tl

        wanted = sorted(meta)
        if cfg.wrapped_native:
            wanted.append(cfg.wrapped_native)
        quotes, errors = await self._quotes(price_port, wanted)

        states, classified = self.replay(legs, quotes)
        native_quote = quotes.get(cfg.wrapped_native) or SpotQuote.zero(cfg.wrapped_native or "")

        result = WalletPnl(
            wallet=wallet,
            since_ts=history.from_timestamp,
            native_usd=native_quote.price_usd,
            classified=classified,
            complete=history.complete,
        )
        for token, state in states.items():
            tl = meta.get(token) or TokenLeg()
            q = quotes.get(token) or SpotQuote.zero(token)
            result.tokens.append(self.token_pnl(token, tl, state, q, errors.get(token)))
        result.tokens.sort(key=lambda t: t.token_address)

        self.summarize(result, states)
        result.nft_airdrops = nft_airdrops(wallet, history, legs)
        logger.info(
            "pnl %s: %d tokens, realized=%s unrealized=%s %s",
            wallet, len(result.tokens), result.realized_native, result.unrealized_native, cfg.native_symbol,
        )
        return result

    async def _quotes(
        self,
        price_port: PricePort,
        tokens: Sequence[str],
    ) -> Tuple[Dict[str, SpotQuote], Dict[str, str]]:
        async def one(token: str) -> Tuple[str, SpotQuote, Optional[str]]:
            try:
                return token, await price_port.get_spot_quote(token), None
            except Exception as e:
                logger.warning("quote for %s failed: %s; valuing at zero", token, e)
                return token, SpotQuote.zero(token), str(e) or type(e).__name__

        quotes: Dict[str, SpotQuote] = {}
        errors: Dict[str, str] = {}
        for token, quote, err in await asyncio.gather(*(one(t) for t in tokens)):
            quotes[token] = quote
            if err is not None:
                errors[token] = err
        return quotes, errors

    def token_pnl(
        self,
        token: str,
        tl: TokenLeg,
        state: TokenPositionState,
        quote: SpotQuote,
        quote_error: Optional[str] = None,
    ) -> TokenPnl:
        nd = self.config.native_decimals
        dec = tl.decimals if tl.decimals is not None else 18
        remaining = _scale(state.remaining_qty, dec)
        value_native = remaining * quote.price_native
        unrealized = Decimal("0")
        if state.remaining_qty > 0 and quote.price_native > 0:
            unrealized = value_native - _scale(state.remaining_cost_basis, nd)
        return TokenPnl(
            token_address=token,
            symbol=tl.symbol or quote.symbol,
            decimals=dec,
            state=state,
            price_native=quote.price_native,
            price_usd=quote.price_usd,
            realized_native=_scale(state.realized_pnl, nd),
            unrealized_native=unrealized,
            remaining_tokens=remaining,
            value_native=value_native,
            value_usd=remaining * quote.price_usd,
            airdrop_usd=_scale(state.airdrop_qty, dec) * quote.price_usd,
            quote_error=quote_error,
        )

    def is_open(self, t: TokenPnl) -> bool:
        cfg = self.config
        if t.token_address in cfg.base_assets or t.state.remaining_qty <= 0:
            return False
        return t.remaining_tokens > cfg.dust_token_units and t.value_usd >= cfg.dust_usd

    def is_closed(self, t: TokenPnl) -> bool:
        # quantity only; an unpriced bag is still held
        return t.state.remaining_qty <= 0 or t.remaining_tokens <= self.config.dust_token_units

    def summarize(self, result: WalletPnl, states: Dict[str, TokenPositionState]) -> None:
        nd = self.config.native_decimals
        limit = self.config.ranked_limit

        result.realized_native = sum((t.realized_native for t in result.tokens), Decimal("0"))
        result.unrealized_native = sum((t.unrealized_native for t in result.tokens), Decimal("0"))
        result.base_in_native = _scale(sum(s.base_received for s in states.values()), nd)
        result.base_out_native = _scale(sum(s.base_spent for s in states.values()), nd)
        result.airdrop_usd = sum((t.airdrop_usd for t in result.tokens), Decimal("0"))

        result.open_positions = sorted(
            (t for t in result.tokens if self.is_open(t)),
            key=lambda t: (-t.value_usd, t.token_address),
        )
        closed = [t for t in result.tokens if self.is_closed(t) and t.state.sells > 0]
        result.top_gains = sorted(
            (t for t in closed if t.realized_native > 0),
            key=lambda t: (-t.realized_native, t.token_address),
        )[:limit]
        result.top_losses = sorted(
            (t for t in closed if t.realized_native < 0),
            key=lambda t: (t.realized_native, t.token_address),
        )[:limit]
        result.airdrops = sorted(
            (t for t in result.tokens if t.state.airdrop_qty > 0),
            key=lambda t: (-t.airdrop_usd, t.token_address),
        )
