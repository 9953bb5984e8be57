"""
Intraday alert tracking and end-of-day digest.

Features:
- One entry per symbol for the current trading day
- Batched price refresh (5 concurrent quotes, pause between batches)
- Digest with winners/losers, stop-loss hits and scan breakdown
- Dated archive on rollover; old archives pruned
"""

import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .backup import atomic_write_json, cleanup_old_backups, load_json
from .cache import QuoteCache
from .clock import MarketClock
from .constants import (
    ARCHIVE_RETENTION_DAYS,
    DIGEST_TOP_N,
    REFRESH_BATCH_DELAY,
    REFRESH_BATCH_SIZE,
    TRACKER_FILE,
)
from .formatter import format_daily_summary
from .logger import logger
from .models import DailySummary, EnrichedAlert, TrackerEntry
from .stop_loss import percent_change


def _performer(entry: TrackerEntry) -> dict:
    return {
        "symbol": entry.symbol,
        "percent_change": entry.percent_change,
        "alert_price": entry.alert_price,
        "current_price": entry.current_price,
        "stop_loss": entry.stop_loss,
        "scan_name": entry.scan_name,
    }


class AlertTracker:
    """Track today's alerted symbols and how they have moved since the alert"""

    def __init__(self, cache: QuoteCache, clock: MarketClock, data_dir: str | Path = "data",
                 batch_size: int = REFRESH_BATCH_SIZE, batch_delay: float = REFRESH_BATCH_DELAY,
                 retention_days: int = ARCHIVE_RETENTION_DAYS, currency: str = "₹",
                 sleep_fn=time.sleep):
        self.cache = cache
        self.clock = clock
        self.data_dir = Path(data_dir)
        self.snapshot_file = self.data_dir / TRACKER_FILE
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.retention_days = retention_days
        self.currency = currency
        self._sleep = sleep_fn
        self._lock = threading.Lock()
        self._day: str | None = None
        self._entries: dict[str, TrackerEntry] = {}

    # ------------------------------------------------------------------
    # lifecycle & persistence
    # ------------------------------------------------------------------

    def init(self):
        """Load the live snapshot; a snapshot from an earlier day is archived"""
        data = load_json(self.snapshot_file, {})
        stocks = data.get("stocks", {}) if isinstance(data, dict) else {}
        entries = {}
        for symbol, raw in stocks.items():
            try:
                entries[symbol] = TrackerEntry.from_dict(raw)
            except TypeError as e:
                logger.error("tracker.bad_entry", symbol=symbol, error=str(e))

        with self._lock:
            self._entries = entries
            self._day = data.get("date") if isinstance(data, dict) else None
            self._roll_if_new_day()
        logger.info("tracker.init", date=self._day, stocks=len(self._entries))

    def shutdown(self):
        with self._lock:
            self._save()
        logger.info("tracker.shutdown", stocks=len(self._entries))

    def _save(self):
        try:
            atomic_write_json(self.snapshot_file, {
                "date": self._day,
                "stocks": {s: e.to_dict() for s, e in self._entries.items()},
            })
        except Exception as e:
            logger.error("tracker.save_failed", error=str(e))

    def _roll_if_new_day(self):
        today = self.clock.trading_day_key()
        if self._day is None:
            self._day = today
        elif self._day != today:
            logger.info("tracker.day_changed", previous=self._day, today=today)
            self._rollover_locked()

    # ------------------------------------------------------------------
    # tracking
    # ------------------------------------------------------------------

    def track(self, alert: EnrichedAlert) -> TrackerEntry:
        """
        Upsert the entry for an alert.

        First alert of the day fixes alert_time and alert_price; later
        alerts for the same symbol refresh everything else.
        """
        with self._lock:
            self._roll_if_new_day()
            entry = self._entries.get(alert.symbol)
            if entry is None:
                entry = TrackerEntry(
                    symbol=alert.symbol,
                    alert_time=alert.received_at,
                    alert_price=alert.close,
                    open_price=alert.open,
                    high_price=alert.high,
                    low_price=alert.low,
                    stop_loss=alert.stop_loss,
                    sma20=alert.sma20,
                    scan_name=alert.scan_name,
                    current_price=alert.close,
                )
                self._entries[alert.symbol] = entry
                logger.info("tracker.added", symbol=alert.symbol, price=alert.close)
            else:
                entry.open_price = alert.open
                entry.high_price = alert.high
                entry.low_price = alert.low
                entry.stop_loss = alert.stop_loss
                entry.sma20 = alert.sma20
                entry.scan_name = alert.scan_name
                logger.info("tracker.updated", symbol=alert.symbol, price=alert.close)
            self._apply_price(entry, alert.close)
            entry.last_updated = alert.received_at
            self._save()
            return TrackerEntry.from_dict(entry.to_dict())

    @staticmethod
    def _apply_price(entry: TrackerEntry, price: float):
        entry.current_price = price
        entry.percent_change = percent_change(entry.alert_price, price) or 0.0
        entry.hit_stop_loss = price < entry.stop_loss

    def refresh(self) -> int:
        """
        Pull fresh quotes for every tracked symbol.

        Returns:
            Number of entries updated
        """
        with self._lock:
            symbols = list(self._entries)
        if not symbols:
            return 0

        updated = 0
        batches = [symbols[i:i + self.batch_size] for i in range(0, len(symbols), self.batch_size)]
        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="tracker-refresh") as ex:
            for index, batch in enumerate(batches):
                if index and self.batch_delay:
                    self._sleep(self.batch_delay)
                quotes = list(ex.map(lambda s: self.cache.get_quote(s, fresh=True), batch))
                now = self.clock.iso_now()
                with self._lock:
                    for symbol, quote in zip(batch, quotes):
                        entry = self._entries.get(symbol)
                        if entry is None or quote is None or quote.close is None:
                            logger.warning("tracker.refresh_skipped", symbol=symbol)
                            continue
                        self._apply_price(entry, quote.close)
                        entry.last_updated = now
                        updated += 1

        with self._lock:
            self._save()
        logger.info("tracker.refreshed", updated=updated, total=len(symbols))
        return updated

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get(self, symbol: str) -> TrackerEntry | None:
        with self._lock:
            entry = self._entries.get(symbol)
            return TrackerEntry.from_dict(entry.to_dict()) if entry else None

    def entries(self) -> list[TrackerEntry]:
        """Copies of today's entries in insertion order"""
        with self._lock:
            return [TrackerEntry.from_dict(e.to_dict()) for e in self._entries.values()]

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "date": self._day,
                "stocks": {s: e.to_dict() for s, e in self._entries.items()},
            }

    # ------------------------------------------------------------------
    # digest & rollover
    # ------------------------------------------------------------------

    def digest(self) -> DailySummary:
        """Refresh prices and summarize the day"""
        self.refresh()
        entries = self.entries()
        with self._lock:
            day = self._day or self.clock.trading_day_key()

        total = len(entries)
        winners = [e for e in entries if e.percent_change > 0]
        losers = [e for e in entries if e.percent_change <= 0]
        stopped = [e for e in entries if e.hit_stop_loss]

        by_gain = sorted(entries, key=lambda e: e.percent_change, reverse=True)
        by_loss = sorted(entries, key=lambda e: e.percent_change)
        scans = Counter(e.scan_name or "Unknown" for e in entries)

        summary = DailySummary(
            date=day,
            total_alerts=total,
            winners=len(winners),
            losers=len(losers),
            stopped_out=len(stopped),
            win_rate=round(len(winners) / total * 100, 1) if total else 0.0,
            best_performer=_performer(by_gain[0]) if by_gain else None,
            worst_performer=_performer(by_loss[0]) if by_loss else None,
            top_performers=[_performer(e) for e in by_gain[:DIGEST_TOP_N]],
            worst_performers=[_performer(e) for e in by_loss[:DIGEST_TOP_N]],
            scan_breakdown=dict(scans),
            generated_at=self.clock.iso_now(),
        )
        summary.message_text = format_daily_summary(summary, entries, self.currency)
        logger.info("tracker.digest", date=day, total=total, winners=len(winners),
                    losers=len(losers), stopped_out=len(stopped))
        return summary

    def rollover(self) -> Path | None:
        """Archive today's entries to alerted_stocks_<date>.json and clear the map"""
        with self._lock:
            return self._rollover_locked()

    def _rollover_locked(self) -> Path | None:
        archive = None
        day = self._day or self.clock.trading_day_key()
        if self._entries:
            archive = self.data_dir / f"alerted_stocks_{day}.json"
            try:
                atomic_write_json(archive, {
                    "date": day,
                    "archived_at": self.clock.iso_now(),
                    "stocks": {s: e.to_dict() for s, e in self._entries.items()},
                })
                logger.info("tracker.archived", date=day, stocks=len(self._entries), file=str(archive))
            except Exception as e:
                logger.error("tracker.archive_failed", date=day, error=str(e))
                archive = None

        self._entries = {}
        self._day = self.clock.trading_day_key()
        self._save()
        cleanup_old_backups(self.data_dir, "alerted_stocks_*.json", self.retention_days)
        return archive
