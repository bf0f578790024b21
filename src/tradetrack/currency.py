from enum import Enum
from typing import Any


class Currency(Enum):
    """Currencies a transaction can be recorded in.

    Amounts in different currencies are tracked side by side and are never
    converted into one another.
    """

    USD = "USD"
    CAD = "CAD"


DEFAULT_CURRENCY = Currency.USD

# Display prefixes used by the CLI tables.
CURRENCY_SYMBOLS = {
    Currency.USD: "$",
    Currency.CAD: "C$",
}


def parse_currency(value: Any, default: Currency = DEFAULT_CURRENCY) -> Currency:
    """Parse a currency code leniently.

    Args:
        value: A Currency, a currency code such as "cad " or "USD", or None.
        default: Currency returned for missing or unrecognized input.

    Returns:
        The matching Currency, or ``default`` if the value is empty or unknown.
    """
    if isinstance(value, Currency):
        return value
    if value is None:
        return default

    code = str(value).upper().strip()
    if code in ("C$", "CA$"):
        return Currency.CAD
    try:
        return Currency(code)
    except ValueError:
        return default


def format_money(amount, currency: Currency) -> str:
    """Format an amount with its currency prefix, e.g. ``-C$1,234.50``."""
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_SYMBOLS[currency]}{abs(amount):,.2f}"
