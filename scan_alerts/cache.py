"""
Quote cache in front of the market data vendor.

Features:
- TTL memoization of quotes, summaries and bar series (15 min default)
- At most one in-flight vendor fetch per key; concurrent callers share it
- Vendor calls bounded by a timeout; stale values served on failure
- Failures reported through an injected callback, never raised
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Callable

from .constants import (
    CACHE_WORKERS,
    DEFAULT_SYMBOL_SUFFIX,
    HISTORY_INTERVAL,
    HISTORY_PERIOD,
    QUOTE_CACHE_TTL,
    REAL_TEST_SYMBOL,
    SIMULATED_TEST_SYMBOL,
    TEST_SYMBOLS,
    VENDOR_TIMEOUT,
)
from .data_source import MarketDataVendor
from .exceptions import DataFetchFailure
from .indicators import compute_indicators
from .logger import logger
from .models import Bar, Indicators, Quote, Summary
from .rate_limiter import RateLimiter

# Deterministic market data for the two test symbols
_FIXTURES = {
    SIMULATED_TEST_SYMBOL: {
        "quote": dict(open=100.0, high=105.0, low=100.0, close=103.0, previous_close=98.0,
                      volume=500000.0, avg_volume_10d=300000.0, exchange="TEST",
                      currency="INR", short_name="Simulated Test Stock"),
        "indicators": dict(sma20=95.0, sma50=92.0, sma200=85.0, rsi14=65.0),
    },
    REAL_TEST_SYMBOL: {
        "quote": dict(open=500.0, high=515.0, low=490.0, close=505.0, previous_close=495.0,
                      volume=750000.0, avg_volume_10d=600000.0, exchange="TEST",
                      currency="INR", short_name="Real Test Stock"),
        "indicators": dict(sma20=485.0, sma50=470.0, sma200=430.0, rsi14=58.0),
    },
}

ErrorCallback = Callable[[str, str, Exception | None], None]


@dataclass
class _Entry:
    value: Any
    stored_at: float


class QuoteCache:
    """Memoizing, coalescing, rate-limited front for a MarketDataVendor"""

    def __init__(
        self,
        vendor: MarketDataVendor,
        rate_limiter: RateLimiter | None = None,
        ttl_seconds: float = QUOTE_CACHE_TTL,
        timeout: float = VENDOR_TIMEOUT,
        symbol_suffix: str = DEFAULT_SYMBOL_SUFFIX,
        on_error: ErrorCallback | None = None,
        max_workers: int = CACHE_WORKERS,
        time_fn=time.monotonic,
    ):
        self.vendor = vendor
        self.rate_limiter = rate_limiter or RateLimiter()
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self.symbol_suffix = symbol_suffix
        self.on_error = on_error
        self.max_workers = max_workers
        self._time = time_fn

        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, Future] = {}
        self._lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None
        self._stats = {"hits": 0, "misses": 0, "coalesced": 0, "failures": 0, "stale_served": 0}

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def init(self):
        with self._lock:
            self._get_executor()
        logger.info("cache.init", ttl_seconds=self.ttl_seconds, timeout=self.timeout)

    def shutdown(self):
        with self._lock:
            executor, self._executor = self._executor, None
            self._inflight.clear()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        logger.info("cache.shutdown", entries=len(self._entries))

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def normalize_symbol(self, symbol: str) -> str:
        """Uppercase, and add the default exchange suffix to bare symbols"""
        symbol = symbol.strip().upper()
        if symbol in TEST_SYMBOLS or "." in symbol or not self.symbol_suffix:
            return symbol
        return f"{symbol}{self.symbol_suffix}"

    @staticmethod
    def is_test_symbol(symbol: str) -> bool:
        return symbol.strip().upper() in TEST_SYMBOLS

    def get_quote(self, symbol: str, fresh: bool = False) -> Quote | None:
        """
        Current quote for a symbol.

        Args:
            symbol: Raw or normalized symbol
            fresh: Skip the TTL check (still coalesces with an in-flight fetch)

        Returns:
            Quote, the last cached quote if the vendor fails, or None
        """
        if self.is_test_symbol(symbol):
            return self._fixture_quote(symbol.strip().upper())
        vendor_symbol = self.normalize_symbol(symbol)
        return self._get(f"quote:{vendor_symbol}", "quote", vendor_symbol,
                         lambda: self.vendor.get_quote(vendor_symbol), fresh=fresh)

    def get_summary(self, symbol: str) -> Summary | None:
        if self.is_test_symbol(symbol):
            fixture = _FIXTURES[symbol.strip().upper()]["quote"]
            return Summary(symbol=symbol.strip().upper(), short_name=fixture["short_name"])
        vendor_symbol = self.normalize_symbol(symbol)
        return self._get(f"summary:{vendor_symbol}", "summary", vendor_symbol,
                         lambda: self.vendor.get_summary(vendor_symbol))

    def get_history(self, symbol: str, interval: str = HISTORY_INTERVAL,
                    period: str = HISTORY_PERIOD) -> list[Bar]:
        if self.is_test_symbol(symbol):
            return self._fixture_history(symbol.strip().upper())
        vendor_symbol = self.normalize_symbol(symbol)
        bars = self._get(f"history:{vendor_symbol}:{interval}:{period}", "history", vendor_symbol,
                         lambda: self.vendor.get_history(vendor_symbol, interval, period))
        return bars or []

    def get_indicators(self, symbol: str) -> Indicators:
        """Indicators from cached daily history; fields are None when data is short"""
        if self.is_test_symbol(symbol):
            sym = symbol.strip().upper()
            quote = _FIXTURES[sym]["quote"]
            return Indicators(volume_ratio=quote["volume"] / quote["avg_volume_10d"],
                              **_FIXTURES[sym]["indicators"])
        return compute_indicators(self.get_history(symbol))

    def clear(self):
        with self._lock:
            self._entries.clear()
        logger.info("cache.cleared")

    def get_stats(self) -> dict:
        with self._lock:
            now = self._time()
            valid = sum(1 for e in self._entries.values() if now - e.stored_at < self.ttl_seconds)
            return {
                **self._stats,
                "total_entries": len(self._entries),
                "valid_entries": valid,
                "expired_entries": len(self._entries) - valid,
                "inflight": len(self._inflight),
                "ttl_seconds": self.ttl_seconds,
            }

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                thread_name_prefix="quote-fetch")
        return self._executor

    def _call_vendor(self, fetch_fn):
        with self.rate_limiter.limit("vendor"):
            return fetch_fn()

    def _get(self, key: str, kind: str, symbol: str, fetch_fn, fresh: bool = False):
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not fresh and self._time() - entry.stored_at < self.ttl_seconds:
                self._stats["hits"] += 1
                logger.debug("cache.hit", key=key)
                return entry.value

            future = self._inflight.get(key)
            owner = future is None
            if owner:
                self._stats["misses"] += 1
                future = self._get_executor().submit(self._call_vendor, fetch_fn)
                self._inflight[key] = future
                future.add_done_callback(lambda f, k=key: self._settle(k, f))
            else:
                self._stats["coalesced"] += 1
                logger.debug("cache.coalesced", key=key)

        error: Exception | None = None
        try:
            value = future.result(timeout=self.timeout)
        except FuturesTimeout:
            value = None
            error = DataFetchFailure(f"{kind} fetch exceeded {self.timeout}s",
                                     context={"symbol": symbol})
            if owner:
                with self._lock:
                    # Abandon the stalled fetch so later callers start a new one
                    if self._inflight.get(key) is future:
                        del self._inflight[key]
        except Exception as e:
            value = None
            error = e

        if value:
            self._settle(key, future)
            return value

        # Only the caller that started the fetch reports it
        if owner:
            self._record_failure(kind, symbol, error)

        with self._lock:
            stale = self._entries.get(key)
            if stale is not None:
                self._stats["stale_served"] += 1
                logger.warning("cache.stale_served", key=key)
                return stale.value
        return None

    def _settle(self, key: str, future: Future):
        """Store a finished fetch; safe to call more than once"""
        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]
            if future.cancelled() or future.exception() is not None:
                return
            value = future.result()
            if value:
                self._entries[key] = _Entry(value=value, stored_at=self._time())

    def _record_failure(self, kind: str, symbol: str, error: Exception | None):
        with self._lock:
            self._stats["failures"] += 1
        if error is None:
            logger.warning("cache.not_found", kind=kind, symbol=symbol)
        else:
            logger.warning("cache.fetch_failed", kind=kind, symbol=symbol,
                           error=f"{type(error).__name__}: {str(error)[:100]}")
        if self.on_error is not None:
            try:
                self.on_error(kind, symbol, error)
            except Exception as e:
                logger.error("cache.on_error_failed", error=str(e))

    def _fixture_quote(self, symbol: str) -> Quote:
        return Quote(symbol=symbol, timestamp=None, **_FIXTURES[symbol]["quote"])

    def _fixture_history(self, symbol: str) -> list[Bar]:
        """Flat series whose closes equal the fixture 20-SMA"""
        level = _FIXTURES[symbol]["indicators"]["sma20"]
        volume = _FIXTURES[symbol]["quote"]["avg_volume_10d"]
        return [
            Bar(date=f"2000-01-{day:02d}", open=level, high=level, low=level,
                close=level, adj_close=level, volume=volume)
            for day in range(1, 21)
        ]
