#!/usr/bin/env python3
"""Data management subcommands: import, export, prices, and clear."""

import os
import warnings
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .. import pricingdata
from ..storage import (
    load_transactions_from_excel,
    load_transactions_from_json,
    save_transactions_to_excel,
    save_transactions_to_json,
)
from .common import add_session_arguments, open_session

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


def register_subcommands(subparsers):
    """Register the import, export, prices and clear subcommands.

    Args:
        subparsers: The argparse subparsers action to add the commands to.
    """
    import_parser = subparsers.add_parser(
        "import",
        help="Import transactions from a JSON backup or Excel file",
        description="Append transactions from a JSON backup or an Excel workbook.",
    )
    add_session_arguments(import_parser)
    import_parser.add_argument("filename", help="Path to a .json or .xlsx file")
    import_parser.add_argument(
        "--ignore-warnings",
        action="store_true",
        help="Hide warnings about skipped rows",
    )
    import_parser.set_defaults(func=run_import)

    export_parser = subparsers.add_parser(
        "export",
        help="Export transactions to a JSON backup or Excel file",
        description="Write the raw transaction list to a .json backup or an .xlsx workbook.",
    )
    add_session_arguments(export_parser)
    export_parser.add_argument("filename", help="Destination .json or .xlsx path")
    export_parser.set_defaults(func=run_export)

    prices_parser = subparsers.add_parser(
        "prices",
        help="Fetch and cache live prices",
        description="Look up current prices for every symbol in the portfolio and cache them.",
    )
    add_session_arguments(prices_parser)
    prices_parser.add_argument("--verbose", action="store_true", help="Print fetching progress to stderr")
    prices_parser.set_defaults(func=run_prices)

    clear_parser = subparsers.add_parser(
        "clear",
        help="Delete all stored transactions and prices for a user",
        description="Delete all stored transactions and cached prices for a user. This cannot be undone.",
    )
    add_session_arguments(clear_parser)
    clear_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    clear_parser.set_defaults(func=run_clear)


def run_import(args):
    if args.ignore_warnings:
        warnings.filterwarnings("ignore", category=UserWarning)

    if not os.path.exists(args.filename):
        print(f"Error: file not found: {args.filename}")
        return 1

    try:
        if Path(args.filename).suffix.lower() in EXCEL_SUFFIXES:
            imported = load_transactions_from_excel(args.filename)
        else:
            imported = load_transactions_from_json(args.filename)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    session = open_session(args)
    try:
        added = session.bulk_import(imported)
    finally:
        session.end()

    print(f"Imported {len(added)} transaction(s) from {args.filename}")
    return 0


def run_export(args):
    session = open_session(args)
    transactions = session.transactions
    session.end()

    if Path(args.filename).suffix.lower() in EXCEL_SUFFIXES:
        save_transactions_to_excel(transactions, args.filename)
    else:
        save_transactions_to_json(transactions, args.filename)

    print(f"Exported {len(transactions)} transaction(s) to {args.filename}")
    return 0


def run_prices(args):
    pricingdata.verbose = args.verbose
    session = open_session(args, live_prices=True)
    try:
        result = session.refresh_prices(manual=True)
        prices = dict(session.prices)
    finally:
        session.end()

    if result.error:
        print(f"Error: {result.error}")
        return 1

    table = Table(title="Current Prices")
    table.add_column("Symbol", style="cyan", justify="left")
    table.add_column("Price", style="green", justify="right")
    for symbol in sorted(prices):
        table.add_row(symbol, f"{prices[symbol]:,.2f}")
    Console().print(table)

    missing = sorted(set(result.requested) - set(result.prices))
    if missing:
        print(f"No price found for: {', '.join(missing)}")
    return 0


def run_clear(args):
    session = open_session(args)
    if not args.yes:
        answer = input(
            f"Delete all {len(session.transactions)} transaction(s) for '{session.user_id}'? "
            "This cannot be undone. [y/N] "
        )
        if answer.strip().lower() not in ("y", "yes"):
            session.end()
            print("Aborted.")
            return 1

    session.clear()
    session.end()
    print(f"Cleared all data for '{session.user_id}'")
    return 0
