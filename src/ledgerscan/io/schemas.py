from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from ledgerscan.core.models import Band, Distribution, EarlyHolder, TokenPnl, WalletPnl


def dec_to_str(x: Optional[Decimal]) -> Optional[str]:
    # keep as string for JSON precision safety
    if x is None:
        return None
    return format(x, "f")


def _int_to_str(x: Optional[int]) -> Optional[str]:
    # raw token units overflow JS numbers
    return str(x) if x is not None else None


def _bands(bands: List[Band]) -> List[Dict[str, Any]]:
    return [
        {
            "label": b.label,
            "count": b.count,
            "pct": dec_to_str(b.pct),
            "value_usd": dec_to_str(b.value_usd),
        }
        for b in bands
    ]


def distribution_to_dict(d: Distribution) -> Dict[str, Any]:
    return {
        "holder_count": d.holder_count,
        "total_supply": _int_to_str(d.total_supply),
        "effective_supply": _int_to_str(d.effective_supply),
        "burned_raw": _int_to_str(d.burned_raw),
        "burned_pct": dec_to_str(d.burned_pct),
        "top_holders": [
            {
                "address": h.address,
                "balance_raw": _int_to_str(h.balance_raw),
                "percent": dec_to_str(h.percent_of_supply),
            }
            for h in d.top_holders
        ],
        "top10_combined_pct": dec_to_str(d.top10_combined_pct),
        "gini": dec_to_str(d.gini),
        "pct_bands": _bands(d.pct_bands),
        "value_bands": _bands(d.value_bands),
        "real_holders": d.real_holders,
        "micro_holders": d.micro_holders,
        "excluded": list(d.excluded),
    }


def early_holders_to_list(rows: List[EarlyHolder]) -> List[Dict[str, Any]]:
    return [
        {
            "address": r.address,
            "first_received_raw": _int_to_str(r.first_received_raw),
            "current_raw": _int_to_str(r.current_raw),
            "status": r.status.value,
        }
        for r in rows
    ]


def token_pnl_to_dict(t: TokenPnl) -> Dict[str, Any]:
    s = t.state
    return {
        "token_address": t.token_address,
        "symbol": t.symbol,
        "decimals": t.decimals,
        "remaining_qty_raw": _int_to_str(s.remaining_qty),
        "remaining_cost_basis_wei": _int_to_str(s.remaining_cost_basis),
        "realized_pnl_wei": _int_to_str(s.realized_pnl),
        "gross_bought_raw": _int_to_str(s.gross_bought),
        "gross_sold_raw": _int_to_str(s.gross_sold),
        "airdrop_qty_raw": _int_to_str(s.airdrop_qty),
        "buys": s.buys,
        "sells": s.sells,
        "airdrops": s.airdrop_count,
        "price_native": dec_to_str(t.price_native),
        "price_usd": dec_to_str(t.price_usd),
        "realized_native": dec_to_str(t.realized_native),
        "unrealized_native": dec_to_str(t.unrealized_native),
        "remaining_tokens": dec_to_str(t.remaining_tokens),
        "value_native": dec_to_str(t.value_native),
        "value_usd": dec_to_str(t.value_usd),
        "airdrop_usd": dec_to_str(t.airdrop_usd),
        "quote_error": t.quote_error,
    }


def wallet_pnl_to_dict(p: WalletPnl) -> Dict[str, Any]:
    return {
        "wallet": p.wallet,
        "since_ts": p.since_ts,
        "complete": p.complete,
        "totals": {
            "realized_native": dec_to_str(p.realized_native),
            "unrealized_native": dec_to_str(p.unrealized_native),
            "base_in_native": dec_to_str(p.base_in_native),
            "base_out_native": dec_to_str(p.base_out_native),
            "airdrop_usd": dec_to_str(p.airdrop_usd),
            "native_usd": dec_to_str(p.native_usd),
        },
        "tokens": [token_pnl_to_dict(t) for t in p.tokens],
        # derived views reference tokens by address
        "open_positions": [t.token_address for t in p.open_positions],
        "top_gains": [t.token_address for t in p.top_gains],
        "top_losses": [t.token_address for t in p.top_losses],
        "airdrops": [t.token_address for t in p.airdrops],
        "nft_airdrops": [
            {"contract_address": n.contract_address, "collection_name": n.collection_name, "count": n.count}
            for n in p.nft_airdrops
        ],
        "classified": dict(sorted(p.classified.items())),
    }
