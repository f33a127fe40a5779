from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

from ledgerscan.core.addresses import BURN_SENTINELS, parse_int, topic_to_address
from ledgerscan.core.dto import TransferEvent
from ledgerscan.core.models import BalanceLedger


def parse_transfer_log(raw: Dict[str, Any], decimals: Optional[int] = None) -> Optional[TransferEvent]:
    """
    Explorer getLogs row -> TransferEvent. Returns None for anything that is
    not a 3-topic ERC-20 Transfer (ERC-721 Transfers index the token id too).
    """
    topics = raw.get("topics") or []
    if len(topics) != 3:
        return None
    return TransferEvent(
        tx_hash=str(raw.get("transactionHash") or ""),
        block_number=parse_int(raw.get("blockNumber")),
        log_index=parse_int(raw.get("logIndex")),
        from_address=topic_to_address(topics[1]),
        to_address=topic_to_address(topics[2]),
        value_raw=parse_int(raw.get("data")),
        token_decimals=decimals,
    )


def order_events(events: Iterable[TransferEvent]) -> List[TransferEvent]:
    """Dedupe by (tx_hash, log_index) and sort by (block_number, log_index)."""
    seen: Set[tuple] = set()
    out: List[TransferEvent] = []
    for e in events:
        k = (e.tx_hash, e.log_index, e.block_number)
        if k in seen:
            continue
        seen.add(k)
        out.append(e)
    out.sort(key=lambda e: e.sort_key)
    return out


def build_ledger(
    events: Iterable[TransferEvent],
    sentinels: Iterable[str] = BURN_SENTINELS,
) -> BalanceLedger:
    """
    Replay Transfer events into balances plus a burned counter.

    Mints come from a sentinel so nothing is debited; transfers into a
    sentinel leave circulation and count as burned. Non-positive balances
    are pruned at the end. Pure: the same event set gives the same ledger
    whatever order the pages arrived in.
    """
    dead = {s.lower() for s in sentinels}
    balances: Dict[str, int] = {}
    burned = 0

    for e in order_events(events):
        frm = e.from_address.lower()
        to = e.to_address.lower()
        val = e.value_raw
        if frm not in dead:
            balances[frm] = balances.get(frm, 0) - val
        if to not in dead:
            balances[to] = balances.get(to, 0) + val
        else:
            burned += val

    return BalanceLedger(
        balances={a: v for a, v in balances.items() if v > 0},
        burned_raw=burned,
    )
