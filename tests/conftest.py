"""Shared fixtures and in-memory doubles for the vendor, chat sink and document store."""
import os

os.environ.setdefault("LOG_TO_FILE", "0")

import threading
from datetime import datetime

import pytest

from scan_alerts import rate_limiter as rate_limiter_module
from scan_alerts.analytics import Analytics
from scan_alerts.backup import LocalJournal
from scan_alerts.cache import QuoteCache
from scan_alerts.clock import FrozenClock
from scan_alerts.enricher import Enricher
from scan_alerts.exceptions import StoreFailure, TelegramError
from scan_alerts.health import StatusMonitor
from scan_alerts.models import Bar, EnrichedAlert, Quote
from scan_alerts.rate_limiter import RateLimiter
from scan_alerts.store import AlertStore
from scan_alerts.tracker import AlertTracker
from scan_alerts.webhook import WebhookHandler


class FakeVendor:
    """Vendor double keyed by vendor symbol (e.g. RELIANCE.NS)"""

    def __init__(self):
        self.quotes: dict[str, Quote] = {}
        self.histories: dict[str, list[Bar]] = {}
        self.calls: list[tuple[str, str]] = []
        self.errors: dict[str, Exception] = {}
        self.gates: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def set_quote(self, symbol, open, high, low, close, sma20=None, suffix=".NS", **extra):
        key = f"{symbol}{suffix}"
        self.quotes[key] = Quote(symbol=key, open=open, high=high, low=low, close=close, **extra)
        if sma20 is not None:
            self.histories[key] = flat_history(sma20)

    def _record(self, kind, symbol):
        with self._lock:
            self.calls.append((kind, symbol))
        gate = self.gates.get(symbol)
        if gate is not None:
            gate.wait(5)
        if symbol in self.errors:
            raise self.errors[symbol]

    def get_quote(self, symbol):
        self._record("quote", symbol)
        return self.quotes.get(symbol)

    def get_summary(self, symbol):
        self._record("summary", symbol)
        return None

    def get_history(self, symbol, interval="1d", period="1y"):
        self._record("history", symbol)
        return list(self.histories.get(symbol, []))

    def count(self, kind, symbol):
        return sum(1 for k, s in self.calls if k == kind and s == symbol)


class FakeSink:
    """Chat sink double that records messages"""

    def __init__(self, fail=False):
        self.messages: list[dict] = []
        self.fail = fail

    def send(self, text, parse_mode="Markdown", critical=False):
        if self.fail:
            if critical:
                raise TelegramError("send failed")
            return False
        self.messages.append({"text": text, "parse_mode": parse_mode, "critical": critical})
        return True

    def is_healthy(self):
        return not self.fail


class FakeDocumentStore:
    """In-memory document store; `down=True` makes every call fail"""

    def __init__(self):
        self.alerts: list[dict] = []
        self.summaries: dict[str, dict] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise StoreFailure("remote down")

    def insert_alert(self, doc):
        self._check()
        self.alerts.append(dict(doc))

    def recent_alerts(self, limit):
        self._check()
        return [dict(d) for d in self.alerts[-limit:]]

    def alerts_by_day(self, day):
        self._check()
        return [dict(d) for d in self.alerts if d.get("trading_day") == day]

    def alerts_by_scan(self, scan_name, day=None):
        self._check()
        return [dict(d) for d in self.alerts
                if d.get("scan_name") == scan_name and (day is None or d.get("trading_day") == day)]

    def find_alert(self, alert_id):
        self._check()
        for doc in self.alerts:
            if doc.get("id") == alert_id:
                return dict(doc)
        return None

    def upsert_summary(self, doc):
        self._check()
        self.summaries[doc["date"]] = dict(doc)

    def summaries_between(self, start, end):
        self._check()
        return [dict(self.summaries[d]) for d in sorted(self.summaries) if start <= d <= end]

    def ping(self):
        return not self.down


def flat_history(level: float, days: int = 20, volume: float = 1000.0) -> list[Bar]:
    return [
        Bar(date=f"2024-01-{day:02d}", open=level, high=level, low=level, close=level,
            adj_close=level, volume=volume)
        for day in range(1, days + 1)
    ]


@pytest.fixture(autouse=True)
def fresh_global_rate_limiter(monkeypatch):
    """Isolate the process-wide limiter used by the Telegram client"""
    monkeypatch.setattr(rate_limiter_module, "_rate_limiter", RateLimiter({"telegram": 10_000}))


@pytest.fixture
def clock():
    # Wednesday, mid-session
    return FrozenClock(datetime(2024, 3, 13, 11, 0))


@pytest.fixture
def vendor():
    return FakeVendor()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def monitor(tmp_path, clock):
    return StatusMonitor(tmp_path / "system_status.json", clock)


@pytest.fixture
def cache(vendor, monitor):
    c = QuoteCache(vendor, rate_limiter=RateLimiter({"vendor": 10_000}), timeout=2.0,
                   on_error=monitor.record_data_fetch_error)
    c.init()
    yield c
    c.shutdown()


@pytest.fixture
def journal(tmp_path):
    return LocalJournal(tmp_path / "mongodb_backup.json")


@pytest.fixture
def store(journal, clock):
    return AlertStore(journal, clock)


@pytest.fixture
def tracker(cache, clock, tmp_path):
    t = AlertTracker(cache, clock, data_dir=tmp_path, batch_delay=0)
    t.init()
    return t


@pytest.fixture
def analytics(tmp_path, clock):
    a = Analytics(tmp_path / "performance_analytics.json", clock)
    a.init()
    return a


@pytest.fixture
def handler(cache, clock, store, tracker, analytics, monitor, sink):
    return WebhookHandler(Enricher(cache, clock), store, tracker, analytics, monitor, sink, clock)


@pytest.fixture
def make_alert():
    """Factory for EnrichedAlert records"""
    def factory(symbol="RELIANCE", close=3020.45, low=2950.0, stop_loss=2950.0, sma20=2880.0,
                scan_name="Open=Low Breakout", scan_type="open_equals_low",
                received_at="2024-03-13T11:00:00+05:30", **extra):
        return EnrichedAlert(
            symbol=symbol, scan_name=scan_name, scan_type=scan_type,
            open=low, high=max(close, low), low=low, close=close, volume=1000.0,
            sma20=sma20, stop_loss=stop_loss,
            percent_change=(close - low) / low * 100,
            sl_distance_pct=(close - stop_loss) / close * 100,
            received_at=received_at, **extra,
        )

    return factory
