"""
Long-horizon alert analytics: rollups by symbol, by scan and by day.
Read only by the analytics endpoints.
"""
import threading
from datetime import datetime, timedelta
from pathlib import Path

from .backup import atomic_write_json, load_json
from .clock import MarketClock
from .constants import (
    ANALYTICS_SAVE_EVERY,
    TOP_RANK_SIZE,
    TOP_SCANS_MIN_ALERTS,
    TOP_STOCKS_MIN_ALERTS,
)
from .logger import logger
from .models import AnalyticsBucket
from .stop_loss import percent_change

PERIOD_DAYS = {"day": 0, "week": 6, "month": 29}


class Analytics:
    """Streaming performance buckets with periodic checkpoints"""

    def __init__(self, data_file: str | Path, clock: MarketClock,
                 save_every: int = ANALYTICS_SAVE_EVERY):
        """Initialize analytics with data persistence"""
        self.data_file = Path(data_file)
        self.clock = clock
        self.save_every = save_every
        self._lock = threading.Lock()
        self._pending = 0
        self._reset()

    def _reset(self):
        self.symbols: dict[str, AnalyticsBucket] = {}
        self.scans: dict[str, AnalyticsBucket] = {}
        self.daily: dict[str, AnalyticsBucket] = {}
        self.best_performer: dict | None = None
        self.worst_performer: dict | None = None
        self.last_updated: str | None = None

    def init(self):
        data = load_json(self.data_file, {})
        with self._lock:
            self._reset()
            if isinstance(data, dict):
                for attr in ("symbols", "scans", "daily"):
                    buckets = getattr(self, attr)
                    for key, raw in (data.get(attr) or {}).items():
                        buckets[key] = AnalyticsBucket.from_dict(raw)
                self.best_performer = data.get("best_performer")
                self.worst_performer = data.get("worst_performer")
                self.last_updated = data.get("last_updated")
        logger.info("analytics.init", symbols=len(self.symbols), scans=len(self.scans),
                    days=len(self.daily))

    def shutdown(self):
        self.flush()

    def _to_dict(self) -> dict:
        return {
            "symbols": {k: b.to_dict() for k, b in self.symbols.items()},
            "scans": {k: b.to_dict() for k, b in self.scans.items()},
            "daily": {k: b.to_dict() for k, b in self.daily.items()},
            "best_performer": self.best_performer,
            "worst_performer": self.worst_performer,
            "last_updated": self.last_updated,
        }

    def _save_data(self):
        """Save analytics data to file"""
        try:
            atomic_write_json(self.data_file, self._to_dict())
            self._pending = 0
        except Exception as e:
            logger.error("analytics.save_failed", error=str(e))

    def flush(self):
        with self._lock:
            self._save_data()

    def track_alert(self, symbol: str, scan_name: str | None, alert_price: float,
                    current_price: float, stop_loss: float) -> float:
        """
        Count one alert in its symbol, scan and day buckets.

        Returns:
            The alert's performance in percent
        """
        performance = percent_change(alert_price, current_price) or 0.0
        stopped = current_price < stop_loss
        day = self.clock.trading_day_key()

        with self._lock:
            for buckets, key in ((self.symbols, symbol),
                                 (self.scans, scan_name or "Unknown"),
                                 (self.daily, day)):
                buckets.setdefault(key, AnalyticsBucket()).record(performance, stopped)

            if self.best_performer is None or performance > self.best_performer["performance"]:
                self.best_performer = {"symbol": symbol, "performance": performance, "date": day}
            if self.worst_performer is None or performance < self.worst_performer["performance"]:
                self.worst_performer = {"symbol": symbol, "performance": performance, "date": day}

            self.last_updated = self.clock.iso_now()
            self._pending += 1
            if self._pending >= self.save_every:
                self._save_data()

        logger.debug("analytics.tracked", symbol=symbol, performance=round(performance, 2),
                     stopped=stopped)
        return performance

    @staticmethod
    def _ranked(buckets: dict[str, AnalyticsBucket], key_name: str, min_alerts: int) -> list[dict]:
        rows = [(k, b) for k, b in buckets.items() if b.total_alerts >= min_alerts]
        rows.sort(key=lambda kb: kb[1].avg_performance, reverse=True)
        return [
            {key_name: k, "performance": b.avg_performance, "success_rate": b.success_rate,
             "alerts": b.total_alerts}
            for k, b in rows[:TOP_RANK_SIZE]
        ]

    def get_summary(self, period: str = "all") -> dict:
        """
        Read model for the analytics endpoint.

        `period` (day|week|month|all) filters the daily series and the
        overall totals; symbol and scan rankings are all-time.
        """
        if period not in PERIOD_DAYS and period != "all":
            period = "all"

        with self._lock:
            if period == "all":
                days = dict(self.daily)
            else:
                today = datetime.strptime(self.clock.trading_day_key(), "%Y-%m-%d").date()
                start = (today - timedelta(days=PERIOD_DAYS[period])).isoformat()
                days = {d: b for d, b in self.daily.items() if d >= start}

            total = AnalyticsBucket()
            weighted = 0.0
            for bucket in days.values():
                total.total_alerts += bucket.total_alerts
                total.wins += bucket.wins
                total.losses += bucket.losses
                total.stopped_out += bucket.stopped_out
                weighted += bucket.avg_performance * bucket.total_alerts
                total.best_gain = max(total.best_gain, bucket.best_gain)
                total.worst_loss = min(total.worst_loss, bucket.worst_loss)
            if total.total_alerts:
                total.avg_performance = weighted / total.total_alerts

            return {
                "period": period,
                "total_alerts": total.total_alerts,
                "wins": total.wins,
                "losses": total.losses,
                "stopped_out": total.stopped_out,
                "success_rate": total.success_rate,
                "avg_performance": total.avg_performance,
                "best_gain": total.best_gain,
                "worst_loss": total.worst_loss,
                "best_performer": self.best_performer,
                "worst_performer": self.worst_performer,
                "top_scans": self._ranked(self.scans, "name", TOP_SCANS_MIN_ALERTS),
                "top_stocks": self._ranked(self.symbols, "symbol", TOP_STOCKS_MIN_ALERTS),
                "daily_data": [
                    {"date": d, "performance": b.avg_performance, "alerts": b.total_alerts,
                     "success_rate": b.success_rate}
                    for d, b in sorted(days.items())
                ],
                "last_updated": self.last_updated,
            }
