"""Turn a (symbol, scan name) trigger into an EnrichedAlert"""

from .cache import QuoteCache
from .clock import MarketClock
from .constants import OPEN_EQUALS_LOW_MARKER, OPEN_LOW_TOLERANCE
from .exceptions import EnrichUnavailable
from .logger import logger
from .models import EnrichedAlert, Indicators, Quote
from .stop_loss import calculate_stop_loss, percent_change, sl_distance_pct


def classify_scan(scan_name: str | None) -> str:
    """Scan type from the scan name; open=low scans get extra filters"""
    if scan_name and OPEN_EQUALS_LOW_MARKER in scan_name.lower():
        return "open_equals_low"
    return "custom"


def opens_at_low(quote: Quote) -> bool:
    return (quote.open is not None and quote.low is not None
            and abs(quote.open - quote.low) <= OPEN_LOW_TOLERANCE)


def above_sma(close: float, sma20: float | None) -> bool:
    """True when no SMA is known, else close strictly above it"""
    return sma20 is None or close > sma20


class Enricher:
    """Fetches market data for a symbol and derives the alert fields"""

    def __init__(self, cache: QuoteCache, clock: MarketClock):
        self.cache = cache
        self.clock = clock

    def _fetch(self, symbol: str) -> tuple[Quote, Indicators]:
        quote = self.cache.get_quote(symbol)
        if quote is None or quote.low is None or quote.close is None or quote.low <= 0:
            raise EnrichUnavailable("No usable quote", context={"symbol": symbol})
        return quote, self.cache.get_indicators(symbol)

    def enrich(self, symbol: str, scan_name: str | None = None) -> EnrichedAlert | None:
        """
        Build the alert for one symbol.

        Returns:
            EnrichedAlert, or None if an open=low scan's filters reject it

        Raises:
            EnrichUnavailable: If no quote can be obtained
        """
        if not symbol or not symbol.strip():
            raise ValueError("symbol must be non-empty")
        symbol = symbol.strip().upper()

        quote, ind = self._fetch(symbol)
        scan_type = classify_scan(scan_name)

        if scan_type == "open_equals_low":
            if not opens_at_low(quote):
                logger.info("enrich.filtered", symbol=symbol, reason="open_not_low",
                            open=quote.open, low=quote.low)
                return None
            if not above_sma(quote.close, ind.sma20):
                logger.info("enrich.filtered", symbol=symbol, reason="below_sma20",
                            close=quote.close, sma20=ind.sma20)
                return None

        stop_loss = calculate_stop_loss(quote.low, ind.sma20)
        alert = EnrichedAlert(
            symbol=symbol,
            scan_name=scan_name,
            scan_type=scan_type,
            open=quote.open,
            high=quote.high,
            low=quote.low,
            close=quote.close,
            volume=quote.volume,
            sma20=ind.sma20,
            stop_loss=stop_loss,
            percent_change=percent_change(quote.open, quote.close),
            sl_distance_pct=sl_distance_pct(quote.close, stop_loss),
            received_at=self.clock.iso_now(),
            previous_close=quote.previous_close,
            sma50=ind.sma50,
            sma200=ind.sma200,
            rsi14=ind.rsi14,
            volume_ratio=ind.volume_ratio,
            short_name=quote.short_name,
        )
        logger.debug("enrich.done", symbol=symbol, scan_type=scan_type,
                     close=quote.close, stop_loss=stop_loss)
        return alert

    def check(self, symbol: str) -> dict:
        """
        Diagnostic view for one symbol: the market fields plus whether it
        would pass an open=low scan.

        Raises:
            EnrichUnavailable: If no quote can be obtained
        """
        symbol = symbol.strip().upper()
        quote, ind = self._fetch(symbol)
        stop_loss = calculate_stop_loss(quote.low, ind.sma20)
        open_equals_low = opens_at_low(quote)
        is_above_sma = ind.sma20 is not None and quote.close > ind.sma20
        return {
            "symbol": symbol,
            "open": quote.open,
            "high": quote.high,
            "low": quote.low,
            "close": quote.close,
            "previous_close": quote.previous_close,
            "volume": quote.volume,
            "avg_volume_10d": quote.avg_volume_10d,
            "sma20": ind.sma20,
            "sma50": ind.sma50,
            "sma200": ind.sma200,
            "rsi14": ind.rsi14,
            "volume_ratio": ind.volume_ratio,
            "stop_loss": stop_loss,
            "percent_change": percent_change(quote.open, quote.close),
            "sl_distance_pct": sl_distance_pct(quote.close, stop_loss),
            "open_equals_low": open_equals_low,
            "above_sma": is_above_sma,
            "matches": open_equals_low and is_above_sma,
        }
