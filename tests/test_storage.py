"""Tests for per-user repositories and JSON/Excel transaction files."""

import json
from decimal import Decimal

import pytest
from openpyxl import Workbook

from tradetrack.currency import Currency
from tradetrack.storage import (
    InMemoryTransactionRepository,
    JsonFileTransactionRepository,
    default_data_dir,
    load_transactions_from_excel,
    load_transactions_from_json,
    save_transactions_to_excel,
    save_transactions_to_json,
)
from tradetrack.transactions import TransactionType, create_transaction


def sample_transactions():
    return [
        create_transaction("2024-01-10", "BUY", "AAPL", 10, "150.25", name="Apple", account="cash", exchange="nasdaq"),
        create_transaction("2024-02-01", "SELL", "TD.TO", 5, 82, currency="CAD", account="tfsa", exchange="tsx"),
    ]


class TestJsonFileTransactionRepository:
    """Tests for JsonFileTransactionRepository."""

    def test_missing_user_loads_empty(self, tmp_path):
        repo = JsonFileTransactionRepository(tmp_path)
        assert repo.load("alice") == []
        assert repo.load_prices("alice") == {}

    def test_save_then_load(self, tmp_path):
        repo = JsonFileTransactionRepository(tmp_path / "data")
        transactions = sample_transactions()
        repo.save("alice", transactions)

        assert (tmp_path / "data" / "transactions_alice.json").exists()
        assert repo.load("alice") == transactions

    def test_users_are_partitioned(self, tmp_path):
        repo = JsonFileTransactionRepository(tmp_path)
        repo.save("alice", sample_transactions())
        assert repo.load("bob") == []

    def test_prices_round_trip_as_decimals(self, tmp_path):
        repo = JsonFileTransactionRepository(tmp_path)
        repo.save_prices("alice", {"AAPL": Decimal("190.12")})

        saved = json.loads((tmp_path / "prices_alice.json").read_text())
        assert saved == {"AAPL": "190.12"}
        assert repo.load_prices("alice") == {"AAPL": Decimal("190.12")}

    def test_clear_removes_user_files(self, tmp_path):
        repo = JsonFileTransactionRepository(tmp_path)
        repo.save("alice", sample_transactions())
        repo.save_prices("alice", {"AAPL": Decimal("1")})

        repo.clear("alice")

        assert list(tmp_path.iterdir()) == []
        repo.clear("alice")

    def test_user_id_is_sanitized(self, tmp_path):
        repo = JsonFileTransactionRepository(tmp_path)
        assert repo.transactions_path("../evil").parent == tmp_path
        assert repo.transactions_path("a@x.com").name == "transactions_a@x.com.json"
        with pytest.raises(ValueError):
            repo.transactions_path("")

    @pytest.mark.parametrize(
        "first, second",
        [("alice smith", "alice_smith"), ("a+b@x.com", "a_b@x.com"), ("a/b", "a%2Fb")],
    )
    def test_similar_user_ids_do_not_share_files(self, tmp_path, first, second):
        repo = JsonFileTransactionRepository(tmp_path)
        transactions = sample_transactions()
        repo.save(first, transactions)
        repo.save_prices(first, {"AAPL": Decimal("1")})

        assert repo.transactions_path(first) != repo.transactions_path(second)
        assert repo.load(second) == []
        assert repo.load_prices(second) == {}
        assert repo.load(first) == transactions


def test_in_memory_repository():
    repo = InMemoryTransactionRepository()
    transactions = sample_transactions()
    repo.save("alice", transactions)
    repo.save_prices("alice", {"AAPL": Decimal("2")})

    assert repo.load("alice") == transactions
    assert repo.load_prices("alice") == {"AAPL": Decimal("2")}

    repo.clear("alice")
    assert repo.load("alice") == []
    assert repo.load_prices("alice") == {}


def test_default_data_dir_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("TRADETRACK_DATA_DIR", str(tmp_path))
    assert default_data_dir() == tmp_path


def test_json_backup_writes_raw_transactions(tmp_path):
    path = tmp_path / "tradetrack_backup.json"
    save_transactions_to_json(sample_transactions(), str(path))

    data = json.loads(path.read_text())
    assert len(data) == 2
    assert data[0]["symbol"] == "AAPL"
    assert data[0]["type"] == "BUY"
    assert data[0]["price"] == "150.25"
    assert data[0]["shares"] == "10"
    assert data[1]["currency"] == "CAD"
    assert set(data[0]) == {"id", "date", "type", "symbol", "name", "shares", "price", "account", "exchange", "currency"}


def test_json_loader_normalizes_and_skips_bad_rows(tmp_path):
    """Rows without a usable date are skipped with a warning; ids are filled in."""
    path = tmp_path / "import.json"
    path.write_text(json.dumps([
        {"date": "2024-01-05", "type": "sell", "symbol": " shop ", "shares": "3", "price": 90, "currency": "cad"},
        {"date": "someday", "type": "BUY", "symbol": "AAPL", "shares": 1, "price": 1},
        {"id": "dup", "date": "2024-01-06", "type": "BUY", "symbol": "AAPL", "shares": 1, "price": 1},
        {"id": "dup", "date": "2024-01-07", "type": "BUY", "symbol": "AAPL", "shares": 2, "price": 1},
    ]))

    with pytest.warns(UserWarning, match="Skipped 1 unreadable"):
        transactions = load_transactions_from_json(str(path))

    assert len(transactions) == 3
    shop = transactions[0]
    assert shop.id
    assert shop.symbol == "SHOP"
    assert shop.transaction_type == TransactionType.SELL
    assert shop.currency == Currency.CAD
    assert len({t.id for t in transactions}) == 3


def test_json_loader_requires_a_list(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"symbol": "AAPL"}))
    with pytest.raises(ValueError, match="must contain a list"):
        load_transactions_from_json(str(path))


def test_excel_export_then_import(tmp_path):
    path = tmp_path / "transactions.xlsx"
    save_transactions_to_excel(sample_transactions(), str(path))

    loaded = load_transactions_from_excel(str(path))

    assert [(t.symbol, t.transaction_type, t.shares, t.price, t.currency) for t in loaded] == [
        ("AAPL", TransactionType.BUY, Decimal("10"), Decimal("150.25"), Currency.USD),
        ("TD.TO", TransactionType.SELL, Decimal("5"), Decimal("82"), Currency.CAD),
    ]
    assert loaded[0].account == "CASH"
    assert loaded[1].exchange == "TSX"


def test_excel_import_with_minimal_columns(tmp_path):
    path = tmp_path / "minimal.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.append(["Date", "Type", "Symbol", "Shares", "Price"])
    ws.append(["2024-03-01", "buy", "msft", 2, 400])
    wb.save(path)

    loaded = load_transactions_from_excel(str(path))

    assert len(loaded) == 1
    assert loaded[0].symbol == "MSFT"
    assert loaded[0].currency == Currency.USD
    assert loaded[0].exchange == "UNKNOWN"


def test_excel_import_missing_columns(tmp_path):
    path = tmp_path / "broken.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.append(["Symbol", "Shares"])
    ws.append(["AAPL", 1])
    wb.save(path)

    with pytest.raises(ValueError, match="Missing required columns"):
        load_transactions_from_excel(str(path))


def test_excel_import_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_transactions_from_excel(str(tmp_path / "nope.xlsx"))
