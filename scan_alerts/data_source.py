"""
Market data vendor interface and the Yahoo Finance implementation.

Vendors return None / [] when a symbol is unknown and raise DataSourceError
when the call itself fails. Caching, coalescing and rate limiting live in
QuoteCache, not here.
"""
import math
from datetime import datetime, timezone
from typing import Protocol

import pandas as pd
import requests
import yfinance as yf
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .constants import MAX_RETRY_ATTEMPTS, VENDOR_TIMEOUT
from .exceptions import DataSourceError
from .logger import logger
from .models import Bar, Quote, Summary

_NETWORK_ERRORS = (requests.ConnectionError, ConnectionError)


class MarketDataVendor(Protocol):
    def get_quote(self, symbol: str) -> Quote | None: ...

    def get_summary(self, symbol: str) -> Summary | None: ...

    def get_history(self, symbol: str, interval: str, period: str) -> list[Bar]: ...


def _num(value) -> float | None:
    """Vendor number → float, with NaN/None/garbage → None"""
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


@retry(
    stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(_NETWORK_ERRORS),
    reraise=True
)
def _fetch_fast_info(symbol: str) -> dict:
    """Fetch the live quote fields with retry on network errors"""
    logger.debug("yfinance.quote_request", symbol=symbol)
    fi = yf.Ticker(symbol).fast_info
    return {
        "last_price": fi.last_price,
        "open": fi.open,
        "day_high": fi.day_high,
        "day_low": fi.day_low,
        "previous_close": fi.previous_close,
        "last_volume": fi.last_volume,
        "ten_day_average_volume": fi.ten_day_average_volume,
        "currency": fi.currency,
        "exchange": fi.exchange,
    }


@retry(
    stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(_NETWORK_ERRORS),
    reraise=True
)
def _fetch_info(symbol: str) -> dict:
    logger.debug("yfinance.summary_request", symbol=symbol)
    return yf.Ticker(symbol).info or {}


@retry(
    stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(_NETWORK_ERRORS),
    reraise=True
)
def _fetch_history(symbol: str, interval: str, period: str, timeout: float) -> pd.DataFrame:
    logger.debug("yfinance.history_request", symbol=symbol, interval=interval, period=period)
    return yf.Ticker(symbol).history(period=period, interval=interval, timeout=timeout,
                                     auto_adjust=False)


class YFinanceVendor:
    """
    Yahoo Finance data source using yfinance library.
    Free, no API key required.
    """

    def __init__(self, timeout: float = VENDOR_TIMEOUT):
        self.timeout = timeout

    def get_quote(self, symbol: str) -> Quote | None:
        """
        Fetch the current-day quote.

        Returns:
            Quote, or None if the vendor has no price for the symbol

        Raises:
            DataSourceError: If the fetch fails
        """
        try:
            raw = _fetch_fast_info(symbol)
        except KeyError:
            # fast_info raises KeyError for unknown tickers
            logger.warning("yfinance.no_quote", symbol=symbol)
            return None
        except Exception as e:
            logger.error("yfinance.quote_error", symbol=symbol, error=str(e)[:100])
            raise DataSourceError("Failed to fetch quote", context={"symbol": symbol},
                                  original_error=e)

        close = _num(raw.get("last_price"))
        if close is None:
            logger.warning("yfinance.no_quote", symbol=symbol)
            return None

        return Quote(
            symbol=symbol,
            open=_num(raw.get("open")),
            high=_num(raw.get("day_high")),
            low=_num(raw.get("day_low")),
            close=close,
            previous_close=_num(raw.get("previous_close")),
            volume=_num(raw.get("last_volume")),
            avg_volume_10d=_num(raw.get("ten_day_average_volume")),
            timestamp=datetime.now(timezone.utc).isoformat(),
            exchange=raw.get("exchange"),
            currency=raw.get("currency"),
        )

    def get_summary(self, symbol: str) -> Summary | None:
        try:
            info = _fetch_info(symbol)
        except Exception as e:
            logger.error("yfinance.summary_error", symbol=symbol, error=str(e)[:100])
            raise DataSourceError("Failed to fetch summary", context={"symbol": symbol},
                                  original_error=e)

        if not info or not (info.get("shortName") or info.get("longName")):
            logger.warning("yfinance.no_summary", symbol=symbol)
            return None

        return Summary(
            symbol=symbol,
            short_name=info.get("shortName") or info.get("longName"),
            sector=info.get("sector"),
            industry=info.get("industry"),
            beta=_num(info.get("beta")),
            forward_pe=_num(info.get("forwardPE")),
            market_cap=_num(info.get("marketCap")),
        )

    def get_history(self, symbol: str, interval: str = "1d", period: str = "1y") -> list[Bar]:
        """
        Fetch historical bars, oldest first.

        Returns:
            List of bars; empty when the vendor has no data
        """
        try:
            df = _fetch_history(symbol, interval, period, self.timeout)
        except Exception as e:
            logger.error("yfinance.history_error", symbol=symbol, error=str(e)[:100])
            raise DataSourceError("Failed to fetch history", context={"symbol": symbol},
                                  original_error=e)

        if df is None or df.empty:
            logger.warning("yfinance.no_data", symbol=symbol)
            return []

        bars = []
        for ts, row in df.iterrows():
            bars.append(Bar(
                date=pd.Timestamp(ts).strftime("%Y-%m-%d"),
                open=_num(row.get("Open")),
                high=_num(row.get("High")),
                low=_num(row.get("Low")),
                close=_num(row.get("Close")),
                adj_close=_num(row.get("Adj Close", row.get("Close"))),
                volume=_num(row.get("Volume")),
            ))
        logger.debug("yfinance.success", symbol=symbol, rows=len(bars))
        return bars
