"""Status monitor: counters, recent activity and process health for /api/status"""

import threading
import time
import traceback
from collections import deque
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from .backup import atomic_write_json, load_json
from .clock import MarketClock
from .constants import MAX_RECENT_ALERTS, MAX_RECENT_ERRORS, STATUS_CHECKPOINT_SECONDS
from .logger import logger

_TOTAL_COUNTERS = ("alerts_sent", "webhooks_received", "telegram_errors", "data_fetch_errors")
_DAILY_COUNTERS = ("alerts_today", "webhooks_today", "errors_today")


class StatusMonitor:
    """
    In-memory system status with bounded history.

    Recent alerts and errors are ring buffers (oldest dropped). Daily
    counters reset when `tick()` sees a new calendar day. State is
    checkpointed to disk on every error and every few minutes.
    """

    def __init__(self, data_file: str | Path, clock: MarketClock,
                 max_alerts: int = MAX_RECENT_ALERTS, max_errors: int = MAX_RECENT_ERRORS,
                 checkpoint_interval: float = STATUS_CHECKPOINT_SECONDS):
        self.data_file = Path(data_file)
        self.clock = clock
        self.checkpoint_interval = checkpoint_interval
        self._lock = threading.Lock()
        # one writer at a time; all checkpoints share the same temp file
        self._write_lock = threading.Lock()
        self._process = psutil.Process()

        self.start_time = clock.iso_now()
        self._day = clock.trading_day_key()
        self.counters: Dict[str, int] = {k: 0 for k in _TOTAL_COUNTERS + _DAILY_COUNTERS}
        self.recent_alerts: deque = deque(maxlen=max_alerts)
        self.recent_errors: deque = deque(maxlen=max_errors)
        self.telegram: Dict[str, Any] = {"connected": None, "last_sent": None, "last_error": None}
        self._response_times: deque = deque(maxlen=100)
        self._last_checkpoint = time.monotonic()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def init(self):
        """Restore totals and recent history from the last checkpoint"""
        data = load_json(self.data_file, {})
        if not isinstance(data, dict):
            data = {}
        saved = data.get("counters") or {}
        with self._lock:
            for key in _TOTAL_COUNTERS:
                self.counters[key] = int(saved.get(key, 0))
            if data.get("day") == self._day:
                for key in _DAILY_COUNTERS:
                    self.counters[key] = int(saved.get(key, 0))
            self.recent_alerts.extend(data.get("recent_alerts") or [])
            self.recent_errors.extend(data.get("recent_errors") or [])
            self.telegram.update({k: v for k, v in (data.get("telegram") or {}).items()
                                  if k in self.telegram})
        # Prime psutil's cpu_percent so the first reading is meaningful
        self._process.cpu_percent(interval=None)
        logger.info("status.init", restored=bool(data))

    def shutdown(self):
        self.checkpoint()

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------

    def record_webhook(self, symbols: list[str]):
        with self._lock:
            self.counters["webhooks_received"] += 1
            self.counters["webhooks_today"] += 1
        logger.debug("status.webhook", symbols=len(symbols))

    def record_alert(self, symbol: str, scan_name: Optional[str], price: Optional[float],
                     dispatched: bool):
        with self._lock:
            if dispatched:
                self.counters["alerts_sent"] += 1
            self.counters["alerts_today"] += 1
            self.recent_alerts.append({
                "symbol": symbol,
                "scan_name": scan_name,
                "price": price,
                "dispatched": dispatched,
                "timestamp": self.clock.iso_now(),
            })

    def record_error(self, kind: str, error: Exception | str, context: Optional[dict] = None,
                     with_stack: bool = False):
        """Count and remember an error, then checkpoint"""
        entry = {
            "type": kind,
            "message": str(error)[:500],
            "context": context or {},
            "timestamp": self.clock.iso_now(),
        }
        if with_stack and isinstance(error, BaseException):
            entry["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        with self._lock:
            lowered = kind.lower()
            if "telegram" in lowered:
                self.counters["telegram_errors"] += 1
            elif "data" in lowered or "fetch" in lowered:
                self.counters["data_fetch_errors"] += 1
            self.counters["errors_today"] += 1
            self.recent_errors.append(entry)
        logger.warning("status.error_recorded", type=kind, error=entry["message"][:100])
        self.checkpoint()

    def record_data_fetch_error(self, kind: str, symbol: str, error: Exception | None):
        """QuoteCache failure callback"""
        message = str(error) if error is not None else "not found"
        self.record_error(f"data_fetch.{kind}", message, context={"symbol": symbol})

    def record_telegram_sent(self):
        with self._lock:
            self.telegram["connected"] = True
            self.telegram["last_sent"] = self.clock.iso_now()

    def record_telegram_error(self, error: Exception | str):
        with self._lock:
            self.telegram["connected"] = False
            self.telegram["last_error"] = {"message": str(error)[:500], "timestamp": self.clock.iso_now()}
        self.record_error("telegram", error)

    def record_health_check(self, telegram_ok: bool):
        with self._lock:
            self.telegram["connected"] = telegram_ok

    def record_response_time(self, millis: float):
        with self._lock:
            self._response_times.append(millis)

    # ------------------------------------------------------------------
    # periodic work
    # ------------------------------------------------------------------

    def tick(self):
        """Reset daily counters on a new calendar day; checkpoint when due"""
        today = self.clock.trading_day_key()
        with self._lock:
            rolled = today != self._day
            if rolled:
                logger.info("status.daily_reset", previous=self._day, today=today)
                self._day = today
                for key in _DAILY_COUNTERS:
                    self.counters[key] = 0
        if rolled or time.monotonic() - self._last_checkpoint >= self.checkpoint_interval:
            self.checkpoint()

    def checkpoint(self):
        """Write the snapshot to disk; failures are logged, never raised"""
        with self._write_lock:
            try:
                snapshot = self._snapshot()
                snapshot["day"] = self._day
                atomic_write_json(self.data_file, snapshot)
                self._last_checkpoint = time.monotonic()
            except Exception as e:
                logger.error("status.checkpoint_failed", error=str(e))

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def _performance(self) -> Dict[str, Any]:
        try:
            memory = self._process.memory_info().rss
            cpu = self._process.cpu_percent(interval=None)
        except psutil.Error as e:
            logger.warning("status.psutil_failed", error=str(e))
            memory, cpu = None, None
        times = list(self._response_times)
        return {
            "memory_bytes": memory,
            "cpu_load": cpu,
            "response_time": (sum(times) / len(times)) if times else None,
        }

    def _snapshot(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = {
                "start_time": self.start_time,
                "counters": dict(self.counters),
                "recent_alerts": list(self.recent_alerts),
                "recent_errors": list(self.recent_errors),
                "telegram": dict(self.telegram),
            }
        snapshot["performance"] = self._performance()
        return snapshot

    def get_status(self) -> Dict[str, Any]:
        """Current system status for the status endpoint"""
        snapshot = self._snapshot()
        snapshot["timestamp"] = self.clock.iso_now()
        return snapshot
