"""
Volume Aggregation

Sums traded volume per period across all trades returned by one fetch.
"""

from collections.abc import Iterable

from utils.schemas import TradeRecord

# Hourly periods in a regular trading day; 23 and 25 occur on DST changes
EXPECTED_PERIODS = 24


def aggregate_trades(trades: Iterable[TradeRecord] | None) -> dict[int, float]:
    """
    Aggregate trade volumes by period.

    Volumes sharing a period are added together, across and within trades.
    Plain float accumulation is used, so very large cumulative volumes lose
    precision in the last digits.

    Args:
        trades: Trades from the trading service, may be None

    Returns:
        Mapping of period -> aggregated volume, ordered by ascending period
    """
    totals: dict[int, float] = {}
    if trades is None:
        return totals

    for trade in trades:
        for p in trade.periods:
            if p.period in totals:
                totals[p.period] += p.volume
            else:
                totals[p.period] = p.volume

    return dict(sorted(totals.items()))
