#!/usr/bin/env python3
"""Report subcommand - Display holdings, currency totals, and allocation."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import pricingdata
from ..accounting import SortKey
from ..aggregator import PortfolioView
from ..currency import format_money
from .common import add_session_arguments, open_session


def register_subcommand(subparsers):
    """Register the report subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "report",
        help="Display portfolio holdings report",
        description="Display per-stock holdings, realized and unrealized P/L, and per-currency totals.",
    )
    add_session_arguments(parser)
    parser.add_argument(
        "--sort",
        choices=[key.value for key in SortKey],
        default=SortKey.SYMBOL.value,
        help="Order holdings by symbol or by name (default: symbol)",
    )
    parser.add_argument(
        "--no-prices",
        action="store_true",
        help="Skip the live price lookup and use cached prices only",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Refetch prices even for symbols priced earlier",
    )
    parser.add_argument(
        "--details",
        action="store_true",
        help="List the transactions behind each holding",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print price fetching progress to stderr",
    )
    parser.set_defaults(func=run)


def _signed(amount, currency) -> str:
    text = format_money(amount, currency)
    if amount > 0:
        return f"[green]+{text}[/green]"
    if amount < 0:
        return f"[red]{text}[/red]"
    return text


def holdings_table(view: PortfolioView, details: bool = False) -> Table:
    table = Table(title="Holdings")
    table.add_column("Symbol", style="cyan", justify="left")
    table.add_column("Name", justify="left")
    table.add_column("Shares", style="magenta", justify="right")
    table.add_column("Avg Cost", justify="right")
    table.add_column("Total Cost", style="yellow", justify="right")
    table.add_column("Current Price", justify="right")
    table.add_column("Market Value", style="green", justify="right")
    table.add_column("Unrealized P/L", justify="right")
    table.add_column("Realized P/L", justify="right")

    for position in view.positions:
        stock = position.summary
        currency = stock.currency

        if position.is_closed:
            table.add_row(
                f"[dim]{stock.symbol}[/dim] [blue](closed)[/blue]",
                f"[dim]{stock.name}[/dim]",
                "0",
                "-",
                "-",
                "[dim]Finalized[/dim]",
                "[dim]Finalized[/dim]",
                "N/A",
                _signed(stock.realized_pl, currency),
            )
        else:
            table.add_row(
                stock.symbol,
                stock.name,
                f"{stock.total_shares:,f}",
                format_money(stock.avg_cost, currency),
                format_money(stock.total_invested, currency),
                format_money(stock.current_price, currency) if stock.current_price is not None else "-",
                format_money(position.market_value, currency) if position.market_value is not None else "-",
                _signed(position.unrealized_pl, currency) if position.unrealized_pl is not None else "-",
                _signed(stock.realized_pl, currency),
            )

        if details:
            for txn in stock.transactions:
                table.add_row(
                    "",
                    f"[dim]{txn.date.isoformat()} {txn.transaction_type.value} {txn.account or ''} {txn.exchange}[/dim]",
                    f"[dim]{txn.shares:,f}[/dim]",
                    f"[dim]{format_money(txn.price, currency) if txn.price.is_finite() else 'n/a'}[/dim]",
                    "", "", "", "", "",
                )

    return table


def stats_table(view: PortfolioView) -> Table:
    table = Table(title="Totals by Currency")
    table.add_column("Currency", style="cyan", justify="left")
    table.add_column("Value", style="green", justify="right")
    table.add_column("Unrealized P/L", justify="right")
    table.add_column("Return", justify="right")
    table.add_column("Realized P/L", justify="right")
    table.add_column("Cost Basis", style="yellow", justify="right")

    for currency, stats in sorted(view.stats.items(), key=lambda x: x[0].value):
        pct = view.percent_return[currency]
        pct_str = f"[green]+{pct:.1f}%[/green]" if pct >= 0 else f"[red]{pct:.1f}%[/red]"
        table.add_row(
            currency.value,
            format_money(stats.total_value, currency),
            _signed(stats.total_unrealized_pl, currency),
            pct_str,
            _signed(stats.total_realized_pl, currency),
            format_money(stats.total_cost_basis, currency),
        )
    return table


def allocation_table(view: PortfolioView) -> Table:
    table = Table(title="Allocation")
    table.add_column("Symbol", style="cyan", justify="left")
    table.add_column("Currency", justify="left")
    table.add_column("Market Value", style="green", justify="right")
    table.add_column("Weight", justify="right")

    for slice_ in sorted(view.allocation, key=lambda s: (s.currency.value, -s.fraction)):
        table.add_row(
            slice_.symbol,
            slice_.currency.value,
            format_money(slice_.market_value, slice_.currency),
            f"{slice_.percent:.1f}%",
        )
    return table


def run(args):
    """Display the holdings, totals, and allocation tables.

    Args:
        args: Parsed argparse namespace.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    pricingdata.verbose = args.verbose
    console = Console()
    session = open_session(args, live_prices=not args.no_prices)

    try:
        if not args.no_prices:
            result = session.refresh_prices(manual=args.refresh)
            if result.error:
                console.print(f"[yellow]Prices: {result.error}[/yellow]")

        if not session.transactions:
            console.print("No transactions recorded yet. Add one with 'tradetrack add'.")
            return 0

        view = session.view(SortKey(args.sort))
        console.print(holdings_table(view, details=args.details))
        console.print(stats_table(view))
        if view.allocation:
            console.print(allocation_table(view))

        if session.price_sources:
            sources = "\n".join(f"{s.title}: {s.uri}" for s in session.price_sources)
            console.print(Panel(sources, title="Price Sources"))
    finally:
        session.end()

    return 0
