"""A user's working portfolio for the duration of a login session."""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any, Iterable, Mapping

from .accounting import PortfolioSummary, SortKey, compute_summaries, normalize_price_map
from .aggregator import PortfolioView, enrich
from .pricingdata import PriceLookupManager, PriceRefresher, PriceRefreshResult, PriceSource
from .storage import TransactionRepository
from .transactions import Transaction, TransactionLog, create_transaction


class PortfolioSession:
    """Transactions and prices for one user between ``start()`` and ``end()``.

    A session without a user id is a guest session: it works the same way
    but nothing is loaded from or written to the repository. Every mutation
    is serialized through a single lock and, for signed-in users, saved
    immediately.
    """

    def __init__(
        self,
        repository: TransactionRepository,
        user_id: str | None = None,
        price_lookup: PriceLookupManager | None = None,
        price_refresher: PriceRefresher | None = None,
    ):
        """Initialize a session.

        Args:
            repository: Where the user's transactions and prices are stored.
            user_id: Authenticated user id, or None for a guest session.
            price_lookup: Live price provider. If omitted, prices only come
                from the repository cache or ``set_prices``.
            price_refresher: Pre-configured refresher; built from
                ``price_lookup`` when not provided.
        """
        self.repository = repository
        self.user_id = user_id or None
        self.log = TransactionLog()
        self.prices: dict[str, Decimal] = {}
        self.price_sources: list[PriceSource] = []
        self.last_refresh: PriceRefreshResult | None = None

        if price_refresher is None and price_lookup is not None:
            price_refresher = PriceRefresher(price_lookup)
        self.price_refresher = price_refresher

        self._write_lock = threading.RLock()
        self._started = False
        # True from clear() until the next save, so end() does not recreate wiped files.
        self._cleared = False

    def __enter__(self) -> "PortfolioSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.end()

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def transactions(self) -> list[Transaction]:
        return self.log.transactions

    @property
    def symbols(self) -> list[str]:
        """Distinct symbols in the log, in first-seen order."""
        return list(dict.fromkeys(t.symbol for t in self.log))

    def start(self) -> "PortfolioSession":
        """Load the user's data. Guest sessions start empty."""
        with self._write_lock:
            self.log = TransactionLog()
            self.prices = {}
            self.price_sources = []
            if self.price_refresher is not None:
                self.price_refresher.reset()

            if self.user_id is not None:
                self.log.extend(self.repository.load(self.user_id))
                self.prices = normalize_price_map(self.repository.load_prices(self.user_id))
                if self.price_refresher is not None:
                    self.price_refresher.mark_fetched(self.prices)

            self._started = True
            self._cleared = False
        return self

    def end(self) -> None:
        """Save (for signed-in users) and drop all in-memory state.

        Nothing is written if the data was cleared and not changed since.
        """
        with self._write_lock:
            if self._started and not self._cleared:
                self._persist()
            if self.price_refresher is not None:
                self.price_refresher.shutdown()
            self.log = TransactionLog()
            self.prices = {}
            self.price_sources = []
            self._started = False

    def _persist(self) -> None:
        if self.user_id is None:
            return
        self._cleared = False
        self.repository.save(self.user_id, self.log.transactions)
        self.repository.save_prices(self.user_id, self.prices)

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("Session has not been started; call start() first")

    def add_transaction(self, **fields: Any) -> Transaction:
        """Record a new trade. Accepts the keyword arguments of ``create_transaction``."""
        with self._write_lock:
            self._require_started()
            txn = self.log.add(create_transaction(**fields))
            self._persist()
            return txn

    def update_transaction(self, transaction_id: str, **changes: Any) -> Transaction:
        with self._write_lock:
            self._require_started()
            txn = self.log.update(transaction_id, **changes)
            self._persist()
            return txn

    def delete_transaction(self, transaction_id: str) -> Transaction:
        with self._write_lock:
            self._require_started()
            txn = self.log.delete(transaction_id)
            self._persist()
            return txn

    def bulk_import(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        """Append imported trades. Ids already in the log are replaced with fresh ones."""
        with self._write_lock:
            self._require_started()
            added: list[Transaction] = []
            for txn in transactions:
                if txn.id in self.log:
                    txn = create_transaction(
                        transaction_date=txn.date,
                        transaction_type=txn.transaction_type,
                        symbol=txn.symbol,
                        shares=txn.shares,
                        price=txn.price,
                        currency=txn.currency,
                        name=txn.name,
                        account=txn.account,
                        exchange=txn.exchange,
                    )
                added.append(self.log.add(txn))
            self._persist()
            return added

    def clear(self) -> None:
        """Wipe the user's transactions and cached prices, including stored copies."""
        with self._write_lock:
            self._require_started()
            self.log.clear()
            self.prices = {}
            self.price_sources = []
            if self.price_refresher is not None:
                self.price_refresher.reset()
            if self.user_id is not None:
                self.repository.clear(self.user_id)
            self._cleared = True

    def set_prices(self, prices: Mapping[str, Any]) -> None:
        """Merge externally supplied prices into the session price map."""
        with self._write_lock:
            self.prices.update(normalize_price_map(prices))
            if self._started:
                self._persist()

    def refresh_prices(self, manual: bool = False) -> PriceRefreshResult:
        """Fetch live prices for the portfolio's symbols and merge them in.

        Returns:
            The refresh outcome. When no price lookup is configured the result
            carries an error message instead.
        """
        self._require_started()
        if self.price_refresher is None:
            return PriceRefreshResult(error="No price lookup configured")

        result = self.price_refresher.refresh(self.symbols, manual=manual)
        self.last_refresh = result
        if result.prices:
            self.set_prices(result.prices)
        if result.sources:
            self.price_sources = list(result.sources)
        return result

    def summary(self, sort_by: SortKey = SortKey.SYMBOL, error_out_negative_quantity: bool = False) -> PortfolioSummary:
        return compute_summaries(
            self.log.transactions,
            self.prices,
            sort_by=sort_by,
            error_out_negative_quantity=error_out_negative_quantity,
        )

    def view(self, sort_by: SortKey = SortKey.SYMBOL) -> PortfolioView:
        return enrich(self.summary(sort_by).summaries, self.prices)
