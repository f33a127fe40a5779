from __future__ import annotations

from decimal import Decimal
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ledgerscan.core.addresses import BURN_SENTINELS
from ledgerscan.core.dto import TransferEvent
from ledgerscan.core.enums import HolderStatus
from ledgerscan.core.models import BalanceLedger, Band, Distribution, EarlyHolder, HolderRow
from ledgerscan.services.ledger import order_events

FOUR_DP = Decimal("0.0001")
TWO_DP = Decimal("0.01")

# (label, exclusive upper bound in percent of supply); None = overflow band
PCT_BANDS: Tuple[Tuple[str, Optional[Decimal]], ...] = (
    ("<0.01%", Decimal("0.01")),
    ("<0.05%", Decimal("0.05")),
    ("<0.10%", Decimal("0.10")),
    ("<0.50%", Decimal("0.50")),
    ("<1.00%", Decimal("1.00")),
    ("≥1.00%", None),
)

# market-cap tier -> five USD boundaries -> six value bands
VALUE_TIERS: Tuple[Tuple[Optional[int], Tuple[int, ...]], ...] = (
    (100_000, (10, 25, 50, 100, 250)),
    (300_000, (10, 50, 100, 250, 500)),
    (1_000_000, (25, 100, 250, 500, 1000)),
    (3_000_000, (50, 250, 500, 1000, 2500)),
    (None, (100, 500, 1000, 2500, 5000)),
)

REAL_HOLDER_USD = Decimal("10")


def percent_of(balance: int, supply: int) -> Decimal:
    """floor(balance * 1e6 / supply) / 1e4, computed on integers."""
    if supply <= 0:
        return Decimal("0").quantize(FOUR_DP)
    return Decimal((balance * 1_000_000) // supply).scaleb(-4)


def gini(balances: Iterable[int]) -> Decimal:
    """
    Gini over the share distribution: discrete Lorenz curve by trapezoids,
    G = 1 - 2 * area, exact rational arithmetic, clamped to [0, 1].
    """
    vals = sorted(b for b in balances if b > 0)
    n = len(vals)
    if n <= 1:
        return Decimal("0").quantize(FOUR_DP)
    total = sum(vals)

    cum = 0
    trapezoids = 0
    for v in vals:
        prev = cum
        cum += v
        trapezoids += prev + cum
    # area = trapezoids / (2 * n * total)
    g = 1 - Fraction(trapezoids, n * total)
    g = min(Fraction(1), max(Fraction(0), g))
    return (Decimal(g.numerator) / Decimal(g.denominator)).quantize(FOUR_DP)


def value_boundaries(market_cap_usd: Decimal) -> Tuple[int, ...]:
    for cap_limit, bounds in VALUE_TIERS:
        if cap_limit is None or market_cap_usd < cap_limit:
            return bounds
    return VALUE_TIERS[-1][1]


def _value_labels(bounds: Sequence[int]) -> List[str]:
    labels = [f"<${bounds[0]:,}"]
    for lo, hi in zip(bounds, bounds[1:]):
        labels.append(f"${lo:,}-${hi:,}")
    labels.append(f"${bounds[-1]:,}+")
    return labels


def _band_pcts(bands: List[Band], holders: int) -> None:
    for b in bands:
        b.pct = (Decimal(b.count * 100) / Decimal(holders)).quantize(TWO_DP) if holders else Decimal("0")


class DistributionAnalyzer:
    """
    Holder concentration analytics over a balance ledger.

    Excluded addresses (pools, the token during bonding, burn sentinels)
    are dropped before anything is ranked or bucketed; percentages are taken
    against the supply those holders can actually own.
    """

    def __init__(self, top_n: int = 20, concentration_n: int = 10) -> None:
        self.top_n = top_n
        self.concentration_n = concentration_n

    def analyze(
        self,
        ledger: BalanceLedger,
        total_supply: Optional[int] = None,
        exclude: Iterable[str] = (),
        price_usd: Decimal = Decimal("0"),
        market_cap_usd: Decimal = Decimal("0"),
        decimals: Optional[int] = None,
    ) -> Distribution:
        excluded: Set[str] = {a.lower() for a in exclude} | set(BURN_SENTINELS)
        supply = total_supply if total_supply and total_supply > 0 else ledger.inferred_supply

        included: Dict[str, int] = {}
        excluded_sum = 0
        for addr, bal in ledger.balances.items():
            if bal <= 0:
                continue
            if addr in excluded:
                excluded_sum += bal
            else:
                included[addr] = bal
        included_sum = sum(included.values())
        effective = max(supply - excluded_sum, included_sum)

        ranked = sorted(included.items(), key=lambda kv: (-kv[1], kv[0]))
        rows = [HolderRow(a, b, percent_of(b, effective)) for a, b in ranked]

        top10 = sum((r.percent_of_supply for r in rows[: self.concentration_n]), Decimal("0"))

        values = self._usd_values(included, supply, price_usd, market_cap_usd, decimals)
        real = sum(1 for v in values.values() if v >= REAL_HOLDER_USD)

        return Distribution(
            holder_count=len(rows),
            total_supply=supply,
            effective_supply=effective,
            burned_raw=ledger.burned_raw,
            burned_pct=percent_of(ledger.burned_raw, supply),
            top_holders=rows[: self.top_n],
            top10_combined_pct=top10.quantize(FOUR_DP),
            gini=gini(included.values()),
            pct_bands=self.percent_bands(rows),
            value_bands=self.value_bands(values, market_cap_usd),
            real_holders=real,
            micro_holders=len(values) - real,
            excluded=sorted(a for a in excluded if a in ledger.balances),
        )

    # -------------------------
    # Histograms
    # -------------------------

    @staticmethod
    def percent_bands(rows: Sequence[HolderRow]) -> List[Band]:
        bands = [Band(label) for label, _ in PCT_BANDS]
        for r in rows:
            idx = len(PCT_BANDS) - 1
            for i, (_, upper) in enumerate(PCT_BANDS):
                if upper is not None and r.percent_of_supply < upper:
                    idx = i
                    break
            bands[idx].count += 1
        _band_pcts(bands, len(rows))
        return bands

    @staticmethod
    def value_bands(values: Dict[str, Decimal], market_cap_usd: Decimal) -> List[Band]:
        if not any(v > 0 for v in values.values()):
            return []
        bounds = value_boundaries(market_cap_usd)
        bands = [Band(label) for label in _value_labels(bounds)]
        for v in values.values():
            idx = len(bounds)
            for i, hi in enumerate(bounds):
                if v < hi:
                    idx = i
                    break
            bands[idx].count += 1
            bands[idx].value_usd += v
        for b in bands:
            b.value_usd = b.value_usd.quantize(TWO_DP)
        _band_pcts(bands, len(values))
        return bands

    @staticmethod
    def _usd_values(
        included: Dict[str, int],
        supply: int,
        price_usd: Decimal,
        market_cap_usd: Decimal,
        decimals: Optional[int],
    ) -> Dict[str, Decimal]:
        if decimals is not None and price_usd > 0:
            scale = Decimal(10) ** decimals
            return {a: Decimal(b) / scale * price_usd for a, b in included.items()}
        if market_cap_usd > 0 and supply > 0:
            # decimals unknown: value each holder as their share of the cap
            return {a: market_cap_usd * Decimal(b) / Decimal(supply) for a, b in included.items()}
        return {}


def early_holders(
    events: Iterable[TransferEvent],
    ledger: BalanceLedger,
    exclude: Iterable[str] = (),
    limit: int = 20,
) -> List[EarlyHolder]:
    """First distinct recipients, and whether they still hold what they got."""
    skip = {a.lower() for a in exclude} | set(BURN_SENTINELS)
    first: Dict[str, int] = {}
    for e in order_events(events):
        to = e.to_address.lower()
        if to in skip or to in first:
            continue
        first[to] = e.value_raw
        if len(first) >= limit:
            break

    out: List[EarlyHolder] = []
    for addr, received in first.items():
        current = ledger.balances.get(addr, 0)
        if current <= 0:
            status = HolderStatus.SOLD_ALL
        elif current > received:
            status = HolderStatus.BOUGHT_MORE
        elif current < received:
            status = HolderStatus.SOLD_SOME
        else:
            status = HolderStatus.HOLD
        out.append(EarlyHolder(addr, received, max(0, current), status))
    return out
