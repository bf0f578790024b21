#!/usr/bin/env python3
"""Subcommands for recording, listing, editing, and deleting transactions."""

from datetime import date

from rich.console import Console
from rich.table import Table

from ..currency import Currency, format_money
from .common import add_session_arguments, open_session


def register_subcommands(subparsers):
    """Register the add, list, edit and delete subcommands.

    Args:
        subparsers: The argparse subparsers action to add the commands to.
    """
    add_parser = subparsers.add_parser(
        "add",
        help="Record a buy or sell",
        description="Record a single trade. Symbols and labels are upper-cased automatically.",
    )
    add_session_arguments(add_parser)
    add_parser.add_argument("type", help="BUY or SELL")
    add_parser.add_argument("symbol", help="Ticker symbol, e.g. AAPL or TD.TO")
    add_parser.add_argument("shares", help="Number of shares")
    add_parser.add_argument("price", help="Price per share")
    add_parser.add_argument("--date", "-d", default=None, help="Trade date YYYY-MM-DD (default: today)")
    add_parser.add_argument(
        "--currency",
        "-c",
        default="USD",
        choices=[c.value for c in Currency],
        help="Currency of the price (default: USD)",
    )
    add_parser.add_argument("--name", default=None, help="Company name")
    add_parser.add_argument("--account", default=None, help="Account, e.g. TFSA or RRSP")
    add_parser.add_argument("--exchange", default=None, help="Exchange, e.g. NASDAQ or TSX")
    add_parser.set_defaults(func=run_add)

    list_parser = subparsers.add_parser(
        "list",
        help="List recorded transactions",
        description="List every recorded transaction with its id.",
    )
    add_session_arguments(list_parser)
    list_parser.add_argument("--symbol", "-s", default=None, help="Only show this symbol")
    list_parser.set_defaults(func=run_list)

    edit_parser = subparsers.add_parser(
        "edit",
        help="Edit a transaction",
        description="Change fields of a recorded transaction by id.",
    )
    add_session_arguments(edit_parser)
    edit_parser.add_argument("id", help="Transaction id (see 'tradetrack list')")
    edit_parser.add_argument("--type", dest="new_type", default=None, help="BUY or SELL")
    edit_parser.add_argument("--symbol", default=None)
    edit_parser.add_argument("--shares", default=None)
    edit_parser.add_argument("--price", default=None)
    edit_parser.add_argument("--date", "-d", default=None)
    edit_parser.add_argument("--currency", "-c", default=None, choices=[c.value for c in Currency])
    edit_parser.add_argument("--name", default=None)
    edit_parser.add_argument("--account", default=None)
    edit_parser.add_argument("--exchange", default=None)
    edit_parser.set_defaults(func=run_edit)

    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete a transaction",
        description="Delete a recorded transaction by id.",
    )
    add_session_arguments(delete_parser)
    delete_parser.add_argument("id", help="Transaction id (see 'tradetrack list')")
    delete_parser.set_defaults(func=run_delete)


def run_add(args):
    session = open_session(args)
    try:
        txn = session.add_transaction(
            transaction_date=args.date or date.today(),
            transaction_type=args.type,
            symbol=args.symbol,
            shares=args.shares,
            price=args.price,
            currency=args.currency,
            name=args.name,
            account=args.account,
            exchange=args.exchange,
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    finally:
        session.end()

    if not (txn.shares.is_finite() and txn.price.is_finite()):
        print("Warning: shares or price is not a number; this trade will be ignored in reports.")
    print(f"Recorded {txn.transaction_type.value} {txn.shares} {txn.symbol} @ "
          f"{txn.price} {txn.currency.value} (id {txn.id})")
    return 0


def run_list(args):
    session = open_session(args)
    transactions = session.transactions
    session.end()

    if args.symbol:
        wanted = args.symbol.upper().strip()
        transactions = [t for t in transactions if t.symbol == wanted]

    table = Table(title="Transactions")
    table.add_column("Id", style="dim", justify="left")
    table.add_column("Date", justify="left")
    table.add_column("Type", justify="left")
    table.add_column("Symbol", style="cyan", justify="left")
    table.add_column("Shares", style="magenta", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Account", justify="left")
    table.add_column("Exchange", justify="left")

    for txn in sorted(transactions, key=lambda t: t.date):
        priced = txn.shares.is_finite() and txn.price.is_finite()
        table.add_row(
            txn.id,
            txn.date.isoformat(),
            txn.transaction_type.value,
            txn.symbol,
            f"{txn.shares:,f}",
            format_money(txn.price, txn.currency) if txn.price.is_finite() else "n/a",
            format_money(txn.total, txn.currency) if priced else "n/a",
            txn.account,
            txn.exchange,
        )

    Console().print(table)
    return 0


def run_edit(args):
    changes = {
        "transaction_type": args.new_type,
        "symbol": args.symbol,
        "shares": args.shares,
        "price": args.price,
        "date": args.date,
        "currency": args.currency,
        "name": args.name,
        "account": args.account,
        "exchange": args.exchange,
    }
    changes = {field: value for field, value in changes.items() if value is not None}
    if not changes:
        print("Error: nothing to change")
        return 1

    session = open_session(args)
    try:
        txn = session.update_transaction(args.id, **changes)
    except KeyError:
        print(f"Error: no transaction with id '{args.id}'")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    finally:
        session.end()

    print(f"Updated {txn.id}: {txn.transaction_type.value} {txn.shares} {txn.symbol} @ {txn.price}")
    return 0


def run_delete(args):
    session = open_session(args)
    try:
        txn = session.delete_transaction(args.id)
    except KeyError:
        print(f"Error: no transaction with id '{args.id}'")
        return 1
    finally:
        session.end()

    print(f"Deleted {txn.transaction_type.value} {txn.shares} {txn.symbol} ({txn.id})")
    return 0
