"""Display metrics derived from stock summaries and a live price map."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from .accounting import (
    ZERO,
    CurrencyStats,
    StockSummary,
    aggregate_currency_stats,
    normalize_price_map,
)
from .currency import Currency


@dataclass(frozen=True)
class PositionView:
    """A StockSummary with its market value and paper gain attached."""

    summary: StockSummary
    market_value: Decimal | None
    unrealized_pl: Decimal | None

    @property
    def is_closed(self) -> bool:
        return self.summary.is_closed

    @property
    def unrealized_pl_percent(self) -> Decimal | None:
        """Return the unrealized gain as a percentage of cost basis."""
        if self.unrealized_pl is None or self.summary.total_invested <= 0:
            return None
        return self.unrealized_pl / self.summary.total_invested * 100


@dataclass(frozen=True)
class AllocationSlice:
    """One open position's share of its currency's priced holdings."""

    symbol: str
    currency: Currency
    market_value: Decimal
    fraction: Decimal

    @property
    def percent(self) -> Decimal:
        return self.fraction * 100


@dataclass(frozen=True)
class PortfolioView:
    positions: list[PositionView]
    allocation: list[AllocationSlice]
    stats: dict[Currency, CurrencyStats]
    percent_return: dict[Currency, Decimal]


def percent_return(stats: CurrencyStats) -> Decimal:
    """Unrealized P/L as a percentage of cost basis, or 0 with no cost basis."""
    if stats.total_cost_basis > 0:
        return stats.total_unrealized_pl / stats.total_cost_basis * 100
    return ZERO


def position_view(summary: StockSummary) -> PositionView:
    if summary.is_closed or summary.current_price is None:
        return PositionView(summary=summary, market_value=None, unrealized_pl=None)

    market_value = summary.current_price * summary.total_shares
    return PositionView(
        summary=summary,
        market_value=market_value,
        unrealized_pl=market_value - summary.total_invested,
    )


def allocation_breakdown(positions: Iterable[PositionView]) -> list[AllocationSlice]:
    """Split each currency's priced open holdings into fractions.

    Closed and unpriced positions are left out. Fractions are relative to the
    currency's own total, so they add up to one within each currency.
    """
    priced = [p for p in positions if p.market_value is not None and p.market_value > 0]

    currency_totals: dict[Currency, Decimal] = defaultdict(Decimal)
    for position in priced:
        currency_totals[position.summary.currency] += position.market_value

    return [
        AllocationSlice(
            symbol=position.summary.symbol,
            currency=position.summary.currency,
            market_value=position.market_value,
            fraction=position.market_value / currency_totals[position.summary.currency],
        )
        for position in priced
    ]


def enrich(summaries: Iterable[StockSummary], prices: Mapping[str, Any] | None = None) -> PortfolioView:
    """Attach market values to summaries and build dashboard aggregates.

    Args:
        summaries: Output of ``compute_summaries``.
        prices: Optional live prices keyed by symbol. Entries here take
            precedence over the price already carried by a summary.

    Returns:
        A PortfolioView with one PositionView per summary, the allocation
        breakdown, per-currency stats, and per-currency percent return.
    """
    price_map = normalize_price_map(prices)
    priced_summaries = [
        s.with_price(price_map[s.symbol]) if s.symbol in price_map else s
        for s in summaries
    ]

    positions = [position_view(s) for s in priced_summaries]
    stats = aggregate_currency_stats(priced_summaries)

    return PortfolioView(
        positions=positions,
        allocation=allocation_breakdown(positions),
        stats=stats,
        percent_return={currency: percent_return(s) for currency, s in stats.items()},
    )
