from __future__ import annotations

import sys
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Mapping

import yfinance as yf  # type: ignore[import-untyped]
from yfinance.exceptions import YFRateLimitError  # type: ignore[import-untyped]

from .transactions import normalize_symbol

# When True, print status messages during price fetching (e.g. "Fetching AAPL …").
# Defaults to False so CLI tables aren't polluted; the CLI sets this with --verbose.
verbose: bool = False

DEFAULT_COOLDOWN_SECONDS = 60.0


class RateLimitError(RuntimeError):
    """Raised by a price lookup when the upstream provider throttles requests."""


@dataclass(frozen=True)
class PriceSource:
    """A citation for where a quoted price came from. Display only."""

    title: str
    uri: str


@dataclass
class PriceLookupResult:
    """Prices found by a lookup, keyed by normalized symbol."""

    prices: dict[str, Decimal] = field(default_factory=dict)
    sources: list[PriceSource] = field(default_factory=list)


@dataclass
class PriceRefreshResult(PriceLookupResult):
    """Outcome of a refresh. Failures are reported in ``error``, never raised."""

    requested: list[str] = field(default_factory=list)
    error: str | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


class PriceLookupManager(ABC):
    """Abstract base class for live price providers."""

    @abstractmethod
    def get_prices(self, symbols: list[str]) -> PriceLookupResult:
        """Look up the current price of each symbol.

        Symbols without a price are simply absent from the result.

        Raises:
            RateLimitError: If the provider is throttling requests.
        """
        raise NotImplementedError("This method should be overridden by subclasses.")


class FixedPriceLookupManager(PriceLookupManager):
    """Price lookup backed by a static price table. Useful for tests and offline use."""

    def __init__(self, prices: Mapping[str, Decimal] | None = None):
        """Initialize with a fixed price table.

        Args:
            prices: Prices keyed by symbol. Symbols are normalized on the way in.
        """
        self.prices = {normalize_symbol(s): Decimal(str(p)) for s, p in (prices or {}).items()}

    def set_price(self, symbol: str, price: Decimal):
        self.prices[normalize_symbol(symbol)] = price

    def get_prices(self, symbols: list[str]) -> PriceLookupResult:
        found = {s: self.prices[s] for s in symbols if s in self.prices}
        return PriceLookupResult(prices=found)


class YFinancePriceLookupManager(PriceLookupManager):
    """Live prices from Yahoo Finance via yfinance."""

    def get_prices(self, symbols: list[str]) -> PriceLookupResult:
        """Get the latest traded price for each symbol.

        Uses ``fast_info['lastPrice']``, which includes pre-market and
        after-hours trading. Prices are quantized to cents.

        Raises:
            RateLimitError: If Yahoo Finance rate limits the request.
            Exception: The last lookup error, if every symbol failed.
        """
        result = PriceLookupResult()
        last_error: Exception | None = None

        for symbol in symbols:
            if verbose:
                print(f"  Fetching {symbol} …", file=sys.stderr, flush=True)
            try:
                last_price = yf.Ticker(symbol).fast_info.get("lastPrice")
            except YFRateLimitError as e:
                raise RateLimitError(str(e)) from e
            except Exception as e:
                # yfinance raises a variety of errors for delisted or unknown tickers
                print(f"Warning: yfinance request failed for {symbol}: {e}", file=sys.stderr)
                last_error = e
                continue

            if last_price is None:
                continue
            result.prices[symbol] = Decimal(str(last_price)).quantize(Decimal("0.01"))
            result.sources.append(
                PriceSource(title=f"Yahoo Finance: {symbol}", uri=f"https://finance.yahoo.com/quote/{symbol}")
            )

        if not result.prices and last_error is not None:
            raise last_error
        return result


class PriceRefresher:
    """Session-scoped, deduplicating front end for a PriceLookupManager.

    Each symbol is fetched at most once per session unless a manual refresh
    is requested. Transient failures are retried with exponential backoff. A
    rate-limit response starts a cooldown during which refreshes are refused.
    Only one refresh runs at a time.
    """

    def __init__(
        self,
        lookup_manager: PriceLookupManager,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the refresher.

        Args:
            lookup_manager: Provider used for the actual lookups.
            max_retries: Extra attempts after a failed lookup.
            backoff_seconds: Delay before the first retry; doubled each retry.
            cooldown_seconds: How long to refuse refreshes after a rate limit.
            clock: Monotonic time source, injectable for tests.
        """
        self.lookup_manager = lookup_manager
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self._fetched_in_session: set[str] = set()
        self._in_flight = threading.Lock()
        # One event per requested refresh, queued or running; cancel() sets them all.
        self._cancel_events: set[threading.Event] = set()
        self._cancel_lock = threading.Lock()
        self._cooldown_until = 0.0
        self._executor: ThreadPoolExecutor | None = None

    @property
    def fetched_symbols(self) -> set[str]:
        return set(self._fetched_in_session)

    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    def mark_fetched(self, symbols: Iterable[str]):
        """Record symbols whose prices are already known, e.g. loaded from disk."""
        self._fetched_in_session.update(normalize_symbol(s) for s in symbols)

    def reset(self):
        """Forget the session: fetched symbols and any cooldown."""
        self._fetched_in_session.clear()
        self._cooldown_until = 0.0

    def cancel(self):
        """Stop every refresh requested so far: queued ones never call the
        provider, a running one stops before its next attempt."""
        with self._cancel_lock:
            for event in self._cancel_events:
                event.set()

    def _new_cancel_event(self) -> threading.Event:
        event = threading.Event()
        with self._cancel_lock:
            self._cancel_events.add(event)
        return event

    def _symbols_to_fetch(self, symbols: Iterable[str], manual: bool) -> list[str]:
        wanted: list[str] = []
        for symbol in symbols:
            symbol = normalize_symbol(symbol)
            if symbol in wanted:
                continue
            if not manual and symbol in self._fetched_in_session:
                continue
            wanted.append(symbol)
        return wanted

    def refresh(self, symbols: Iterable[str], manual: bool = False) -> PriceRefreshResult:
        """Fetch prices for the given symbols.

        Args:
            symbols: Symbols in the portfolio. Normalized and deduplicated.
            manual: If True, refetch symbols that were already priced this
                session.

        Returns:
            A PriceRefreshResult. Nothing is raised for provider failures.
        """
        return self._run(symbols, manual, self._new_cancel_event())

    def _run(self, symbols: Iterable[str], manual: bool, cancel_event: threading.Event) -> PriceRefreshResult:
        try:
            remaining = self.cooldown_remaining()
            if remaining > 0:
                return PriceRefreshResult(error=f"Quota limit - waiting {remaining:.0f}s")

            wanted = self._symbols_to_fetch(symbols, manual)
            if not wanted:
                return PriceRefreshResult()
            if cancel_event.is_set():
                return PriceRefreshResult(requested=wanted, cancelled=True)

            if not self._in_flight.acquire(blocking=False):
                return PriceRefreshResult(requested=wanted, error="A price refresh is already running")

            try:
                return self._refresh_with_retries(wanted, cancel_event)
            finally:
                self._in_flight.release()
        finally:
            with self._cancel_lock:
                self._cancel_events.discard(cancel_event)

    def _refresh_with_retries(self, wanted: list[str], cancel_event: threading.Event) -> PriceRefreshResult:
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            if cancel_event.is_set():
                return PriceRefreshResult(requested=wanted, cancelled=True)

            try:
                found = self.lookup_manager.get_prices(wanted)
            except RateLimitError:
                self._cooldown_until = self._clock() + self.cooldown_seconds
                return PriceRefreshResult(
                    requested=wanted,
                    error=f"Quota limit - waiting {self.cooldown_seconds:.0f}s",
                )
            except Exception as e:
                last_error = e
                if verbose:
                    print(f"Price fetch attempt {attempt + 1} failed: {e}", file=sys.stderr)
                if attempt < self.max_retries:
                    # Event.wait doubles as an interruptible sleep
                    if cancel_event.wait(self.backoff_seconds * (2 ** attempt)):
                        return PriceRefreshResult(requested=wanted, cancelled=True)
                continue

            self._fetched_in_session.update(wanted)
            return PriceRefreshResult(
                prices={normalize_symbol(s): p for s, p in found.prices.items()},
                sources=list(found.sources),
                requested=wanted,
            )

        return PriceRefreshResult(requested=wanted, error=f"Price fetch failed: {last_error}")

    def submit(self, symbols: Iterable[str], manual: bool = False) -> Future[PriceRefreshResult]:
        """Run ``refresh`` on a background thread.

        Returns:
            A Future resolving to the PriceRefreshResult. Use ``cancel()`` on
            this refresher to interrupt it, whether it is still queued or
            already running.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="price-refresh")
        return self._executor.submit(self._run, list(symbols), manual, self._new_cancel_event())

    def shutdown(self):
        self.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
