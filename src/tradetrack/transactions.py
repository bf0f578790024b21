"""Transaction records, field normalization, and the editable transaction log."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Iterator

from .currency import Currency, DEFAULT_CURRENCY, parse_currency

UNKNOWN_SYMBOL = "UNKNOWN"
UNKNOWN_EXCHANGE = "UNKNOWN"


class TransactionType(Enum):
    """Enumeration of supported trade types."""

    BUY = "BUY"
    SELL = "SELL"


def _normalize_label(value: Any, sentinel: str) -> str:
    if value is None:
        return sentinel
    text = str(value).upper().strip()
    return text or sentinel


def normalize_symbol(value: Any) -> str:
    """Return the canonical grouping key for a ticker symbol.

    Symbols are upper-cased and trimmed. Missing or blank input maps to
    ``UNKNOWN`` rather than raising. Applying this twice is a no-op.
    """
    return _normalize_label(value, UNKNOWN_SYMBOL)


def normalize_exchange(value: Any) -> str:
    """Return the canonical exchange label (``UNKNOWN`` when missing)."""
    return _normalize_label(value, UNKNOWN_EXCHANGE)


def normalize_account(value: Any) -> str:
    """Return the canonical account label (empty when missing)."""
    return _normalize_label(value, "")


def normalize_transaction_type(value: Any) -> TransactionType:
    """Map free-form trade type input onto BUY or SELL.

    Anything mentioning SELL is a sale; everything else, including missing
    input, is treated as a purchase.
    """
    if isinstance(value, TransactionType):
        return value
    text = _normalize_label(value, TransactionType.BUY.value)
    if TransactionType.SELL.value in text:
        return TransactionType.SELL
    return TransactionType.BUY


def coerce_decimal(value: Any) -> Decimal:
    """Convert a share count or price to Decimal.

    Non-numeric, NaN or infinite input comes back as ``Decimal("NaN")`` so
    the accounting replay can skip the transaction instead of failing.
    """
    if value is None or isinstance(value, bool):
        return Decimal("NaN")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return Decimal("NaN")
    return result if result.is_finite() else Decimal("NaN")


def parse_transaction_date(value: Any) -> date:
    """Parse a trade date.

    Args:
        value: A date, a datetime, or an ISO formatted string such as
            ``2024-01-15`` or ``2024-01-15T10:30:00``.

    Returns:
        The calendar date of the trade.

    Raises:
        ValueError: If the value cannot be interpreted as a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return datetime.fromisoformat(text).date()
    raise ValueError(f"Unsupported transaction date: {value!r}")


def new_transaction_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Transaction:
    """A single immutable buy or sell of an instrument."""

    id: str
    date: date
    transaction_type: TransactionType
    symbol: str
    shares: Decimal
    price: Decimal
    currency: Currency = DEFAULT_CURRENCY
    name: str = ""
    account: str = ""
    exchange: str = UNKNOWN_EXCHANGE

    @property
    def total(self) -> Decimal:
        """Gross value of the trade (shares x price) in its own currency."""
        return self.shares * self.price

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the portable JSON backup shape.

        Shares and price are written as decimal strings so no precision is lost.
        """
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "type": self.transaction_type.value,
            "symbol": self.symbol,
            "name": self.name,
            "shares": str(self.shares) if self.shares.is_finite() else None,
            "price": str(self.price) if self.price.is_finite() else None,
            "account": self.account,
            "exchange": self.exchange,
            "currency": self.currency.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        """Build a normalized Transaction from a backup or import record.

        Records without an ``id`` get a fresh one.

        Raises:
            ValueError: If the record has no usable date.
        """
        return create_transaction(
            transaction_date=data.get("date"),
            transaction_type=data.get("type", data.get("transaction_type")),
            symbol=data.get("symbol"),
            shares=data.get("shares"),
            price=data.get("price"),
            currency=data.get("currency"),
            name=data.get("name"),
            account=data.get("account"),
            exchange=data.get("exchange"),
            transaction_id=data.get("id") or None,
        )


def create_transaction(
    transaction_date: Any,
    transaction_type: Any,
    symbol: Any,
    shares: Any,
    price: Any,
    currency: Any = None,
    name: Any = None,
    account: Any = None,
    exchange: Any = None,
    transaction_id: str | None = None,
) -> Transaction:
    """Create a Transaction with every field normalized.

    This is the single write-time entry point: symbols, labels, trade type and
    currency are canonicalized here exactly as the accounting engine does when
    it groups, so grouping stays stable across saves and reloads.

    Raises:
        ValueError: If ``transaction_date`` cannot be parsed.
    """
    normalized_symbol = normalize_symbol(symbol)
    display_name = str(name).strip() if name is not None else ""

    return Transaction(
        id=transaction_id or new_transaction_id(),
        date=parse_transaction_date(transaction_date),
        transaction_type=normalize_transaction_type(transaction_type),
        symbol=normalized_symbol,
        shares=coerce_decimal(shares),
        price=coerce_decimal(price),
        currency=parse_currency(currency),
        name=display_name,
        account=normalize_account(account),
        exchange=normalize_exchange(exchange),
    )


def renormalize(transaction: Transaction) -> Transaction:
    """Return ``transaction`` with all fields passed through normalization again."""
    return create_transaction(
        transaction_date=transaction.date,
        transaction_type=transaction.transaction_type,
        symbol=transaction.symbol,
        shares=transaction.shares,
        price=transaction.price,
        currency=transaction.currency,
        name=transaction.name,
        account=transaction.account,
        exchange=transaction.exchange,
        transaction_id=transaction.id,
    )


class TransactionLog:
    """Insertion-ordered collection of transactions, editable by id.

    Insertion order is preserved because it is the tie-breaker when two
    trades share the same date.
    """

    def __init__(self, transactions: Iterable[Transaction] | None = None):
        self._transactions: list[Transaction] = []
        for txn in transactions or []:
            self.add(txn)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(self._transactions)

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, transaction_id: object) -> bool:
        return any(t.id == transaction_id for t in self._transactions)

    def __repr__(self):
        return f"TransactionLog(count={len(self._transactions)})"

    @property
    def transactions(self) -> list[Transaction]:
        """A copy of the transactions in insertion order."""
        return list(self._transactions)

    def _index_of(self, transaction_id: str) -> int:
        for index, txn in enumerate(self._transactions):
            if txn.id == transaction_id:
                return index
        raise KeyError(f"Unknown transaction id: {transaction_id}")

    def get(self, transaction_id: str) -> Transaction:
        return self._transactions[self._index_of(transaction_id)]

    def add(self, transaction: Transaction) -> Transaction:
        """Append a transaction, normalizing it first.

        Raises:
            ValueError: If a transaction with the same id is already present.
        """
        if transaction.id in self:
            raise ValueError(f"Duplicate transaction id: {transaction.id}")
        normalized = renormalize(transaction)
        self._transactions.append(normalized)
        return normalized

    def extend(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        return [self.add(txn) for txn in transactions]

    def update(self, transaction_id: str, **changes: Any) -> Transaction:
        """Replace fields of an existing transaction, keeping its id and position.

        Args:
            transaction_id: The id of the transaction to edit.
            **changes: Field values to replace, e.g. ``price=Decimal("10")``.

        Returns:
            The updated, normalized transaction.

        Raises:
            KeyError: If no transaction has the given id.
        """
        index = self._index_of(transaction_id)
        changes.pop("id", None)
        if "date" in changes:
            changes["date"] = parse_transaction_date(changes["date"])
        updated = renormalize(replace(self._transactions[index], **changes))
        self._transactions[index] = updated
        return updated

    def delete(self, transaction_id: str) -> Transaction:
        """Remove and return the transaction with the given id.

        Raises:
            KeyError: If no transaction has the given id.
        """
        return self._transactions.pop(self._index_of(transaction_id))

    def clear(self) -> None:
        self._transactions.clear()
