"""Average-cost portfolio accounting.

Transactions are grouped per instrument and currency, replayed in date order
through a running average-cost state, and summarized into one StockSummary per
group plus one CurrencyStats record per currency. Everything here is a pure
function of its inputs; nothing is cached or mutated between calls.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping

from .currency import Currency
from .transactions import Transaction, TransactionType, coerce_decimal, normalize_symbol

# Net holdings below this are treated as a fully closed position.
CLOSE_OUT_EPSILON = Decimal("0.000001")

ZERO = Decimal("0")


class SortKey(Enum):
    """Ordering applied to the emitted summaries."""

    SYMBOL = "symbol"
    NAME = "name"


@dataclass(frozen=True)
class StockSummary:
    """Derived holdings for one instrument in one currency."""

    symbol: str
    name: str
    currency: Currency
    total_shares: Decimal
    avg_cost: Decimal
    current_price: Decimal | None
    total_invested: Decimal
    realized_pl: Decimal
    transactions: tuple[Transaction, ...] = ()

    @property
    def is_closed(self) -> bool:
        """True once every share has been sold."""
        return self.total_shares == 0

    def with_price(self, price: Decimal | None) -> "StockSummary":
        return replace(self, current_price=price)


@dataclass(frozen=True)
class CurrencyStats:
    """Portfolio totals for a single currency."""

    total_value: Decimal = ZERO
    total_cost_basis: Decimal = ZERO
    total_realized_pl: Decimal = ZERO
    total_unrealized_pl: Decimal = ZERO


@dataclass(frozen=True)
class PortfolioSummary:
    summaries: list[StockSummary]
    stats: dict[Currency, CurrencyStats]


def normalize_price_map(prices: Mapping[Any, Any] | None) -> dict[str, Decimal]:
    """Key a price map by normalized symbol, dropping unusable prices.

    Prices that are missing, non-numeric, or not strictly positive are left
    out so the symbol reads as "price unknown".
    """
    normalized: dict[str, Decimal] = {}
    for symbol, raw_price in (prices or {}).items():
        if raw_price is None:
            continue
        price = coerce_decimal(raw_price)
        if price.is_finite() and price > 0:
            normalized[normalize_symbol(symbol)] = price
    return normalized


def group_transactions(
    transactions: Iterable[Transaction],
) -> dict[tuple[str, Currency], list[Transaction]]:
    """Partition transactions by (normalized symbol, currency), each group date sorted.

    A symbol traded in both USD and CAD produces two groups; the amounts are
    never blended into one cost basis. Sorting is stable, so trades on the
    same day keep their insertion order.
    """
    groups: dict[tuple[str, Currency], list[Transaction]] = defaultdict(list)
    for txn in transactions:
        groups[(normalize_symbol(txn.symbol), txn.currency)].append(txn)

    for txns in groups.values():
        txns.sort(key=lambda t: t.date)
    return dict(groups)


def replay_group(
    transactions: Iterable[Transaction],
    error_out_negative_quantity: bool = False,
) -> tuple[Decimal, Decimal, Decimal]:
    """Replay date-ordered trades through the running average-cost state.

    Args:
        transactions: Trades for a single instrument, already in date order.
        error_out_negative_quantity: If True, raise when a sale leaves fewer
            than zero shares. Otherwise overselling is allowed and the
            position simply closes out at zero afterwards.

    Returns:
        A ``(shares_held, total_cost, realized_pl)`` tuple after the close-out
        clamp has been applied.

    Raises:
        ValueError: If error_out_negative_quantity is True and holdings go
            negative.
    """
    shares_held = ZERO
    total_cost = ZERO
    realized_pl = ZERO

    for txn in transactions:
        shares = coerce_decimal(txn.shares)
        price = coerce_decimal(txn.price)
        if not (shares.is_finite() and price.is_finite()):
            continue

        if txn.transaction_type == TransactionType.BUY:
            shares_held += shares
            total_cost += shares * price

        elif txn.transaction_type == TransactionType.SELL:
            avg = total_cost / shares_held if shares_held > 0 else ZERO
            cost_of_sold = shares * avg
            realized_pl += shares * price - cost_of_sold
            shares_held -= shares
            total_cost -= cost_of_sold

            if error_out_negative_quantity and shares_held <= -CLOSE_OUT_EPSILON:
                raise ValueError(
                    f"Negative quantity detected: {txn.symbol} = {shares_held} "
                    f"after transaction: {txn}"
                )

    if shares_held < CLOSE_OUT_EPSILON:
        shares_held = ZERO
        total_cost = ZERO

    return shares_held, total_cost, realized_pl


def aggregate_currency_stats(summaries: Iterable[StockSummary]) -> dict[Currency, CurrencyStats]:
    """Sum per-instrument summaries into one CurrencyStats per currency.

    Positions without a live price (or with no shares left) are valued at
    their cost basis, which is zero for a closed position.
    """
    totals: dict[Currency, dict[str, Decimal]] = {}

    for summary in summaries:
        bucket = totals.setdefault(summary.currency, defaultdict(Decimal))
        bucket["total_cost_basis"] += summary.total_invested
        bucket["total_realized_pl"] += summary.realized_pl

        if summary.current_price is not None and summary.total_shares > 0:
            market_value = summary.total_shares * summary.current_price
            bucket["total_value"] += market_value
            bucket["total_unrealized_pl"] += market_value - summary.total_invested
        else:
            bucket["total_value"] += summary.total_invested

    return {
        currency: CurrencyStats(
            total_value=bucket["total_value"],
            total_cost_basis=bucket["total_cost_basis"],
            total_realized_pl=bucket["total_realized_pl"],
            total_unrealized_pl=bucket["total_unrealized_pl"],
        )
        for currency, bucket in totals.items()
    }


def sort_summaries(summaries: Iterable[StockSummary], sort_by: SortKey = SortKey.SYMBOL) -> list[StockSummary]:
    if sort_by == SortKey.NAME:
        return sorted(summaries, key=lambda s: (s.name.casefold(), s.symbol, s.currency.value))
    return sorted(summaries, key=lambda s: (s.symbol, s.currency.value))


def compute_summaries(
    transactions: Iterable[Transaction],
    prices: Mapping[str, Any] | None = None,
    sort_by: SortKey = SortKey.SYMBOL,
    error_out_negative_quantity: bool = False,
) -> PortfolioSummary:
    """Compute per-instrument summaries and per-currency totals.

    Args:
        transactions: Every recorded trade, in insertion order.
        prices: Live prices keyed by symbol. May be partial or empty;
            instruments without a price are valued at cost.
        sort_by: Ordering of the returned summaries.
        error_out_negative_quantity: If True, raise ValueError when any
            instrument is sold below zero shares.

    Returns:
        A PortfolioSummary with one StockSummary per (symbol, currency) group
        and one CurrencyStats per currency present in the transactions.

    Raises:
        TypeError: If ``transactions`` is None.
        ValueError: If error_out_negative_quantity is True and holdings go
            negative.
    """
    if transactions is None:
        raise TypeError("transactions must be an iterable of Transaction, not None")

    price_map = normalize_price_map(prices)
    summaries: list[StockSummary] = []

    for (symbol, currency), txns in group_transactions(transactions).items():
        shares_held, total_cost, realized_pl = replay_group(txns, error_out_negative_quantity)

        summaries.append(
            StockSummary(
                symbol=symbol,
                name=txns[0].name or symbol,
                currency=currency,
                total_shares=shares_held,
                avg_cost=total_cost / shares_held if shares_held > 0 else ZERO,
                current_price=price_map.get(symbol),
                total_invested=total_cost,
                realized_pl=realized_pl,
                transactions=tuple(txns),
            )
        )

    return PortfolioSummary(
        summaries=sort_summaries(summaries, sort_by),
        stats=aggregate_currency_stats(summaries),
    )
