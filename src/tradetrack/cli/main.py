#!/usr/bin/env python3
"""Main entry point for the TradeTrack CLI."""

import argparse
import sys

TRADETRACK_BANNER = " TradeTrack — average-cost portfolio tracker"

INVESTING_WARNING = (
    " \033[33m⚠  Figures are derived from the transactions you record and from\n"
    "    delayed market data. Verify them before acting on them.\033[0m"
)


def main(argv=None):
    """Parse CLI arguments and dispatch to the appropriate subcommand.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="tradetrack",
        description="TradeTrack - track equity trades and average-cost portfolio metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tradetrack add buy AAPL 10 150 --date 2024-01-15     Record a purchase
  tradetrack report                                    Show holdings and totals
  tradetrack report --sort name --no-prices            Sort by name, skip price lookup
  tradetrack import statement.xlsx                     Import a spreadsheet
  tradetrack export backup.json                        Write a JSON backup
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        help="Available commands",
    )

    # Import subcommand modules and register them
    from .report import register_subcommand as register_report
    from .transactions import register_subcommands as register_transactions
    from .data import register_subcommands as register_data
    from .version import register_subcommand as register_version

    register_report(subparsers)
    register_transactions(subparsers)
    register_data(subparsers)
    register_version(subparsers)

    args = parser.parse_args(argv)

    # If no command specified, show help
    if args.command is None:
        print(TRADETRACK_BANNER)
        print(INVESTING_WARNING)
        print()
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
