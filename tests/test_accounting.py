"""Tests for the average-cost accounting engine."""

from datetime import date
from decimal import Decimal

import pytest

from tradetrack.accounting import (
    CLOSE_OUT_EPSILON,
    CurrencyStats,
    SortKey,
    compute_summaries,
    replay_group,
)
from tradetrack.currency import Currency
from tradetrack.transactions import Transaction, TransactionType, create_transaction


def buy(day, symbol, shares, price, currency="USD", name=None):
    return create_transaction(f"2024-01-{day:02d}", "BUY", symbol, shares, price, currency=currency, name=name)


def sell(day, symbol, shares, price, currency="USD", name=None):
    return create_transaction(f"2024-01-{day:02d}", "SELL", symbol, shares, price, currency=currency, name=name)


def only(result, symbol):
    matches = [s for s in result.summaries if s.symbol == symbol]
    assert len(matches) == 1
    return matches[0]


def test_average_cost_after_two_buys():
    """Buying 10@100 then 10@200 averages to 150 over 20 shares."""
    result = compute_summaries([buy(1, "AAPL", 10, 100), buy(2, "AAPL", 10, 200)], {})
    aapl = only(result, "AAPL")

    assert aapl.total_shares == Decimal("20")
    assert aapl.avg_cost == Decimal("150")
    assert aapl.total_invested == Decimal("3000")
    assert aapl.realized_pl == Decimal("0")
    assert aapl.current_price is None
    assert not aapl.is_closed


def test_realized_pl_on_partial_sell():
    """Selling 5@180 from a 150 average realizes 5 * (180 - 150)."""
    result = compute_summaries([
        buy(1, "AAPL", 10, 100),
        buy(2, "AAPL", 10, 200),
        sell(3, "AAPL", 5, 180),
    ])
    aapl = only(result, "AAPL")

    assert aapl.realized_pl == Decimal("150")
    assert aapl.total_shares == Decimal("15")
    assert aapl.total_invested == Decimal("2250")
    assert aapl.avg_cost == Decimal("150")


def test_transactions_replayed_in_date_order():
    """Insertion order does not matter when dates differ."""
    result = compute_summaries([
        sell(3, "AAPL", 5, 180),
        buy(2, "AAPL", 10, 200),
        buy(1, "AAPL", 10, 100),
    ])
    aapl = only(result, "AAPL")

    assert aapl.realized_pl == Decimal("150")
    assert [t.date for t in aapl.transactions] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]


def test_same_day_trades_keep_insertion_order():
    """Trades on the same date are replayed in the order they were recorded."""
    bought_first = compute_summaries([buy(1, "XYZ", 10, 100), sell(1, "XYZ", 10, 120)])
    assert only(bought_first, "XYZ").realized_pl == Decimal("200")

    # Selling before the buy happens against an empty position (average cost 0)
    sold_first = compute_summaries([sell(1, "XYZ", 10, 120), buy(1, "XYZ", 10, 100)])
    xyz = only(sold_first, "XYZ")
    assert xyz.realized_pl == Decimal("1200")
    assert xyz.total_shares == 0
    assert xyz.total_invested == 0


def test_malformed_transactions_are_skipped():
    """Non-numeric shares or prices leave the running state untouched."""
    result = compute_summaries([
        buy(1, "AAPL", 10, 100),
        buy(2, "AAPL", "ten", 100),
        buy(3, "AAPL", 5, float("nan")),
        sell(4, "AAPL", None, 500),
    ])
    aapl = only(result, "AAPL")

    assert aapl.total_shares == Decimal("10")
    assert aapl.total_invested == Decimal("1000")
    assert aapl.realized_pl == Decimal("0")
    assert len(aapl.transactions) == 4


def test_close_out_clears_division_residue():
    """A fully sold position reports exactly zero shares and zero cost."""
    result = compute_summaries([
        buy(1, "SHOP", 1, 10),
        buy(2, "SHOP", 2, 20),
        sell(3, "SHOP", 3, 30),
    ])
    shop = only(result, "SHOP")

    assert shop.total_shares == Decimal("0")
    assert shop.total_invested == Decimal("0")
    assert shop.avg_cost == Decimal("0")
    assert shop.is_closed
    assert abs(shop.realized_pl - Decimal("40")) < Decimal("1e-20")


def test_close_out_within_epsilon():
    result = compute_summaries([buy(1, "TD", 1, 80), sell(2, "TD", Decimal("0.9999995"), 90)])
    td = only(result, "TD")

    assert Decimal("1") - Decimal("0.9999995") < CLOSE_OUT_EPSILON
    assert td.total_shares == 0
    assert td.total_invested == 0


def test_oversell_is_permitted_by_default():
    """Selling more than held realizes against the held average and closes out."""
    result = compute_summaries([buy(1, "AMD", 5, 10), sell(2, "AMD", 8, 12)])
    amd = only(result, "AMD")

    assert amd.realized_pl == Decimal("16")
    assert amd.total_shares == 0
    assert amd.total_invested == 0


def test_oversell_raises_when_requested():
    with pytest.raises(ValueError, match="Negative quantity detected"):
        compute_summaries(
            [buy(1, "AMD", 5, 10), sell(2, "AMD", 8, 12)],
            error_out_negative_quantity=True,
        )


def test_full_sell_does_not_raise_when_strict():
    result = compute_summaries(
        [buy(1, "AMD", 5, 10), sell(2, "AMD", 5, 12)],
        error_out_negative_quantity=True,
    )
    assert only(result, "AMD").realized_pl == Decimal("10")


def test_symbols_grouped_by_normalized_key():
    """Directly constructed transactions with unnormalized symbols group together."""
    raw = Transaction(
        id="raw-1",
        date=date(2024, 1, 5),
        transaction_type=TransactionType.BUY,
        symbol="  aapl ",
        shares=Decimal("5"),
        price=Decimal("100"),
    )
    result = compute_summaries([buy(1, "AAPL", 5, 100), raw], {"aapl": 110})

    assert len(result.summaries) == 1
    aapl = only(result, "AAPL")
    assert aapl.total_shares == Decimal("10")
    assert aapl.current_price == Decimal("110")


def test_live_price_valuation():
    result = compute_summaries(
        [buy(1, "AAPL", 10, 100), buy(2, "AAPL", 10, 200)],
        {"AAPL": Decimal("160")},
    )
    usd = result.stats[Currency.USD]

    assert usd.total_value == Decimal("3200")
    assert usd.total_cost_basis == Decimal("3000")
    assert usd.total_unrealized_pl == Decimal("200")
    assert usd.total_realized_pl == Decimal("0")


def test_missing_price_falls_back_to_cost_basis():
    result = compute_summaries([buy(1, "AAPL", 10, 100)], {"MSFT": 300})
    usd = result.stats[Currency.USD]

    assert only(result, "AAPL").current_price is None
    assert usd.total_value == Decimal("1000")
    assert usd.total_unrealized_pl == Decimal("0")


@pytest.mark.parametrize("bad_price", [0, -5, "n/a", None, float("nan")])
def test_unusable_prices_read_as_unknown(bad_price):
    result = compute_summaries([buy(1, "AAPL", 10, 100)], {"AAPL": bad_price})
    assert only(result, "AAPL").current_price is None


def test_closed_position_contributes_realized_pl_only():
    result = compute_summaries(
        [buy(1, "NFLX", 2, 400), sell(2, "NFLX", 2, 450)],
        {"NFLX": 500},
    )
    usd = result.stats[Currency.USD]

    assert usd.total_realized_pl == Decimal("100")
    assert usd.total_value == Decimal("0")
    assert usd.total_unrealized_pl == Decimal("0")
    assert usd.total_cost_basis == Decimal("0")


def test_currency_isolation():
    """USD holdings never appear in CAD totals and vice versa."""
    result = compute_summaries(
        [
            buy(1, "AAPL", 10, 100, currency="USD"),
            buy(1, "TD.TO", 20, 80, currency="CAD"),
            sell(2, "TD.TO", 10, 90, currency="CAD"),
        ],
        {"AAPL": 110, "TD.TO": 85},
    )

    assert set(result.stats) == {Currency.USD, Currency.CAD}
    assert result.stats[Currency.USD] == CurrencyStats(
        total_value=Decimal("1100"),
        total_cost_basis=Decimal("1000"),
        total_realized_pl=Decimal("0"),
        total_unrealized_pl=Decimal("100"),
    )
    assert result.stats[Currency.CAD] == CurrencyStats(
        total_value=Decimal("850"),
        total_cost_basis=Decimal("800"),
        total_realized_pl=Decimal("100"),
        total_unrealized_pl=Decimal("50"),
    )


def test_mixed_currency_symbol_splits_into_sub_summaries():
    """A symbol recorded in two currencies is tracked as two positions."""
    result = compute_summaries([
        buy(1, "SHOP", 10, 100, currency="USD"),
        buy(2, "SHOP", 10, 130, currency="CAD"),
    ])

    shop = [s for s in result.summaries if s.symbol == "SHOP"]
    assert [(s.currency, s.total_invested) for s in shop] == [
        (Currency.CAD, Decimal("1300")),
        (Currency.USD, Decimal("1000")),
    ]
    assert result.stats[Currency.USD].total_cost_basis == Decimal("1000")
    assert result.stats[Currency.CAD].total_cost_basis == Decimal("1300")


def test_mixed_currency_symbol_shares_one_quote():
    """Prices are keyed by symbol only, so both sub-positions read the same quote."""
    result = compute_summaries(
        [buy(1, "SHOP", 10, 100, currency="USD"), buy(2, "SHOP", 10, 130, currency="CAD")],
        {"SHOP": 110},
    )

    assert [(s.currency, s.current_price) for s in result.summaries] == [
        (Currency.CAD, Decimal("110")),
        (Currency.USD, Decimal("110")),
    ]
    assert result.stats[Currency.USD].total_value == Decimal("1100")
    assert result.stats[Currency.CAD].total_value == Decimal("1100")


def test_name_is_first_seen_in_date_order():
    result = compute_summaries([
        buy(2, "BNS", 1, 60, name="Scotiabank"),
        buy(1, "BNS", 1, 60, name="Bank of Nova Scotia"),
        buy(1, "RY", 1, 120),
    ])
    assert only(result, "BNS").name == "Bank of Nova Scotia"
    assert only(result, "RY").name == "RY"


def test_sort_order_policy():
    txns = [
        buy(1, "MSFT", 1, 1, name="microsoft"),
        buy(1, "AAPL", 1, 1, name="Zeta Apple"),
        buy(1, "GOOG", 1, 1, name="Alphabet"),
    ]
    by_symbol = compute_summaries(txns)
    by_name = compute_summaries(txns, sort_by=SortKey.NAME)

    assert [s.symbol for s in by_symbol.summaries] == ["AAPL", "GOOG", "MSFT"]
    assert [s.symbol for s in by_name.summaries] == ["GOOG", "MSFT", "AAPL"]


def test_determinism():
    """The same inputs always produce identical output."""
    txns = [
        buy(1, "AAPL", 10, 100),
        sell(3, "AAPL", 3, 150),
        buy(2, "TD.TO", 7, 80, currency="CAD"),
        buy(2, "TD.TO", "bad", 80, currency="CAD"),
    ]
    prices = {"AAPL": 140}

    assert compute_summaries(txns, prices) == compute_summaries(txns, prices)


def test_empty_inputs():
    result = compute_summaries([], None)
    assert result.summaries == []
    assert result.stats == {}


def test_none_transactions_is_a_contract_violation():
    with pytest.raises(TypeError):
        compute_summaries(None)  # type: ignore[arg-type]


def test_replay_group_returns_clamped_state():
    shares, cost, realized = replay_group([buy(1, "X", 4, 25), sell(2, "X", 1, 30)])
    assert (shares, cost, realized) == (Decimal("3"), Decimal("75"), Decimal("5"))
