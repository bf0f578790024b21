"""Argument and session helpers shared by the CLI subcommands."""

import os

from dotenv import load_dotenv

load_dotenv()

from ..pricingdata import YFinancePriceLookupManager
from ..session import PortfolioSession
from ..storage import JsonFileTransactionRepository, default_data_dir

DEFAULT_USER = "default"


def add_session_arguments(parser):
    """Add ``--user`` and ``--data-dir`` options to a subcommand parser."""
    parser.add_argument(
        "--user",
        "-u",
        default=None,
        help="User whose transactions to use (default: $TRADETRACK_USER or 'default')",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory holding transaction files (default: $TRADETRACK_DATA_DIR or ~/.tradetrack)",
    )


def open_session(args, live_prices: bool = False) -> PortfolioSession:
    """Build and start a PortfolioSession from parsed CLI arguments.

    Args:
        args: Parsed namespace with ``user`` and ``data_dir`` attributes.
        live_prices: If True, attach a yfinance price lookup.
    """
    user_id = args.user or os.getenv("TRADETRACK_USER") or DEFAULT_USER
    repository = JsonFileTransactionRepository(args.data_dir or default_data_dir())
    price_lookup = YFinancePriceLookupManager() if live_prices else None

    session = PortfolioSession(repository, user_id=user_id, price_lookup=price_lookup)
    return session.start()
