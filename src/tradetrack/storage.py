"""Per-user transaction persistence and portable backup formats."""

from __future__ import annotations

import json
import os
import warnings
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import quote

import pandas as pd
from openpyxl import Workbook

from .transactions import Transaction, coerce_decimal, normalize_symbol

EXCEL_COLUMNS = ["DATE", "TYPE", "SYMBOL", "NAME", "SHARES", "PRICE", "ACCOUNT", "EXCHANGE", "CURRENCY"]


def default_data_dir() -> Path:
    """Directory holding per-user data, from ``TRADETRACK_DATA_DIR`` or ``~/.tradetrack``."""
    configured = os.getenv("TRADETRACK_DATA_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".tradetrack"


class TransactionRepository(ABC):
    """Storage for one transaction list (and cached prices) per user id."""

    @abstractmethod
    def load(self, user_id: str) -> list[Transaction]:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def save(self, user_id: str, transactions: Iterable[Transaction]) -> None:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def load_prices(self, user_id: str) -> dict[str, Decimal]:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def save_prices(self, user_id: str, prices: dict[str, Decimal]) -> None:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def clear(self, user_id: str) -> None:
        """Delete everything stored for the user."""
        raise NotImplementedError("This method should be overridden by subclasses.")


class InMemoryTransactionRepository(TransactionRepository):
    """Repository that keeps everything in process memory."""

    def __init__(self):
        self._transactions: dict[str, list[Transaction]] = {}
        self._prices: dict[str, dict[str, Decimal]] = {}

    def load(self, user_id: str) -> list[Transaction]:
        return list(self._transactions.get(user_id, []))

    def save(self, user_id: str, transactions: Iterable[Transaction]) -> None:
        self._transactions[user_id] = list(transactions)

    def load_prices(self, user_id: str) -> dict[str, Decimal]:
        return dict(self._prices.get(user_id, {}))

    def save_prices(self, user_id: str, prices: dict[str, Decimal]) -> None:
        self._prices[user_id] = dict(prices)

    def clear(self, user_id: str) -> None:
        self._transactions.pop(user_id, None)
        self._prices.pop(user_id, None)


class JsonFileTransactionRepository(TransactionRepository):
    """Repository storing ``transactions_<user>.json`` and ``prices_<user>.json`` files."""

    def __init__(self, root: str | Path | None = None):
        """Initialize the repository.

        Args:
            root: Directory for the data files. Defaults to ``default_data_dir()``.
                Created on first save.
        """
        self.root = Path(root) if root is not None else default_data_dir()

    @staticmethod
    def _safe_user(user_id: str) -> str:
        # Percent-encoding is reversible, so distinct ids never share a file.
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        return quote(user_id, safe="@")

    def transactions_path(self, user_id: str) -> Path:
        return self.root / f"transactions_{self._safe_user(user_id)}.json"

    def prices_path(self, user_id: str) -> Path:
        return self.root / f"prices_{self._safe_user(user_id)}.json"

    def load(self, user_id: str) -> list[Transaction]:
        path = self.transactions_path(user_id)
        if not path.exists():
            return []
        return load_transactions_from_json(str(path))

    def save(self, user_id: str, transactions: Iterable[Transaction]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        save_transactions_to_json(transactions, str(self.transactions_path(user_id)))

    def load_prices(self, user_id: str) -> dict[str, Decimal]:
        path = self.prices_path(user_id)
        if not path.exists():
            return {}
        with open(path, "r") as f:
            data = json.load(f)

        prices: dict[str, Decimal] = {}
        for symbol, raw_price in data.items():
            price = coerce_decimal(raw_price)
            if price.is_finite() and price > 0:
                prices[normalize_symbol(symbol)] = price
        return prices

    def save_prices(self, user_id: str, prices: dict[str, Decimal]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.prices_path(user_id), "w") as f:
            json.dump({symbol: str(price) for symbol, price in prices.items()}, f, indent=2)

    def clear(self, user_id: str) -> None:
        for path in (self.transactions_path(user_id), self.prices_path(user_id)):
            path.unlink(missing_ok=True)


def _transactions_from_records(records: Iterable[dict[str, Any]], source: str) -> list[Transaction]:
    transactions: list[Transaction] = []
    skipped = 0
    seen_ids: set[str] = set()

    for record in records:
        try:
            txn = Transaction.from_dict(record)
        except (ValueError, TypeError, AttributeError):
            skipped += 1
            continue
        if txn.id in seen_ids:
            txn = Transaction.from_dict({**record, "id": None})
        seen_ids.add(txn.id)
        transactions.append(txn)

    # Emit one warning after processing all rows
    if skipped:
        warnings.warn(
            f"Skipped {skipped} unreadable transaction(s) in '{source}'.",
            UserWarning,
        )
    return transactions


def load_transactions_from_json(file_path: str) -> list[Transaction]:
    """
    Load transactions from a JSON backup file.

    Shares and price may be JSON numbers or decimal strings.

    Args:
        file_path: Path to the JSON file.

    Returns:
        The normalized transactions in file order. Records without an id
        receive a new one; records without a usable date are skipped with a
        UserWarning.

    Raises:
        ValueError: If the file does not contain a JSON list.

    Expected JSON structure:
        [
            {
                "id": "3f1c...",
                "date": "2024-01-15",
                "type": "BUY",
                "symbol": "AAPL",
                "name": "Apple Inc.",
                "shares": "10",
                "price": "150.50",
                "account": "TFSA",
                "exchange": "NASDAQ",
                "currency": "USD"
            },
            ...
        ]
    """
    with open(file_path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of transactions")

    records = [item for item in data if isinstance(item, dict)]
    if len(records) != len(data):
        warnings.warn(
            f"Ignored {len(data) - len(records)} non-object entries in '{file_path}'.",
            UserWarning,
        )
    return _transactions_from_records(records, file_path)


def save_transactions_to_json(transactions: Iterable[Transaction], file_path: str) -> None:
    """
    Save the raw transaction list to a JSON backup file.

    Only transactions are written, never derived summaries; the backup can
    be loaded back with ``load_transactions_from_json``.
    """
    data = [txn.to_dict() for txn in transactions]
    with open(file_path, "w") as f:
        json.dump(data, f, indent=2)


def load_transactions_from_excel(file_path: str) -> list[Transaction]:
    """
    Load transactions from an Excel workbook.

    Expected columns (order independent): DATE, TYPE, SYMBOL, SHARES, PRICE.
    NAME, ACCOUNT, EXCHANGE and CURRENCY are optional; a missing currency
    defaults to USD.

    Raises:
        FileNotFoundError: If the workbook does not exist.
        ValueError: If required columns are missing.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Transaction file not found: {file_path}")

    df = pd.read_excel(file_path)
    if df.empty:
        return []

    df.columns = [str(c).upper().strip() for c in df.columns]
    required_columns = {"DATE", "TYPE", "SYMBOL", "SHARES", "PRICE"}
    missing_columns = required_columns - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    records: list[dict[str, Any]] = []
    for _, row in df.iterrows():
        record: dict[str, Any] = {}
        for column in EXCEL_COLUMNS:
            value = row.get(column)
            record[column.lower()] = None if value is None or pd.isna(value) else value
        if isinstance(record["date"], pd.Timestamp):
            record["date"] = record["date"].to_pydatetime()
        records.append(record)

    return _transactions_from_records(records, file_path)


def save_transactions_to_excel(transactions: Iterable[Transaction], file_path: str) -> None:
    """Save transactions to an Excel workbook with the ``EXCEL_COLUMNS`` header."""
    wb = Workbook()
    ws = wb.active
    assert ws is not None

    for col, header in enumerate(EXCEL_COLUMNS, start=1):
        ws.cell(row=1, column=col, value=header)

    for row, txn in enumerate(transactions, start=2):
        ws.cell(row=row, column=1, value=txn.date.isoformat())
        ws.cell(row=row, column=2, value=txn.transaction_type.value)
        ws.cell(row=row, column=3, value=txn.symbol)
        ws.cell(row=row, column=4, value=txn.name)
        ws.cell(row=row, column=5, value=float(txn.shares) if txn.shares.is_finite() else None)
        ws.cell(row=row, column=6, value=float(txn.price) if txn.price.is_finite() else None)
        ws.cell(row=row, column=7, value=txn.account)
        ws.cell(row=row, column=8, value=txn.exchange)
        ws.cell(row=row, column=9, value=txn.currency.value)

    wb.save(file_path)
