"""
Alert and summary persistence: remote document store first, local
journal when the remote is unreachable or not configured.

The journal and the remote are independent streams; nothing is replayed
from one into the other.
"""
import threading
import uuid
from datetime import datetime

from .backup import LocalJournal
from .clock import MarketClock
from .logger import logger
from .models import DailySummary, EnrichedAlert, PersistedAlert
from .mongo_store import DocumentStore


class AlertStore:
    """Append-only alert log plus one summary per trading day"""

    def __init__(self, journal: LocalJournal, clock: MarketClock,
                 remote: DocumentStore | None = None):
        self.journal = journal
        self.clock = clock
        self.remote = remote
        self._lock = threading.Lock()
        self._stats = {"remote_writes": 0, "journal_writes": 0, "remote_failures": 0}

    @property
    def mode(self) -> str:
        return "remote" if self.remote is not None else "local"

    def init(self):
        if self.remote is None:
            logger.info("store.local_only", journal=str(self.journal.path))
            return
        if self.remote.ping():
            logger.info("store.remote_ready")
        else:
            logger.warning("store.remote_unreachable", journal=str(self.journal.path))

    def shutdown(self):
        close = getattr(self.remote, "close", None)
        if close is not None:
            close()

    def _count(self, key: str):
        with self._lock:
            self._stats[key] += 1

    def _trading_day(self, alert: EnrichedAlert) -> str:
        try:
            return self.clock.trading_day_key(datetime.fromisoformat(alert.received_at))
        except (TypeError, ValueError):
            return self.clock.trading_day_key()

    # ==================== Writes ====================

    def _write(self, operation: str, remote_fn, journal_fn, doc: dict):
        if self.remote is not None:
            try:
                remote_fn(doc)
                self._count("remote_writes")
                return
            except Exception as e:
                self._count("remote_failures")
                logger.warning("store.remote_write_failed", operation=operation,
                               error=str(e)[:200])
        try:
            journal_fn(doc)
            self._count("journal_writes")
        except Exception as e:
            # Persistence is best-effort; the request still succeeds
            logger.error("store.journal_write_failed", operation=operation, error=str(e))

    def append_alert(self, alert: EnrichedAlert) -> PersistedAlert:
        """Persist an alert and return it with its id and trading day"""
        persisted = PersistedAlert.from_dict({
            **alert.to_dict(),
            "id": uuid.uuid4().hex,
            "trading_day": self._trading_day(alert),
        })
        self._write("append_alert",
                    lambda d: self.remote.insert_alert(d),
                    self.journal.append_alert,
                    persisted.to_dict())
        return persisted

    def upsert_summary(self, date: str, summary: DailySummary) -> dict:
        """Store the digest for `date`, replacing any earlier one"""
        doc = {**summary.to_dict(), "date": date}
        self._write("upsert_summary",
                    lambda d: self.remote.upsert_summary(d),
                    self.journal.upsert_summary,
                    doc)
        return doc

    # ==================== Reads ====================

    def _read(self, operation: str, remote_fn, journal_fn):
        if self.remote is not None:
            try:
                return remote_fn()
            except Exception as e:
                self._count("remote_failures")
                logger.warning("store.remote_read_failed", operation=operation,
                               error=str(e)[:200])
        return journal_fn()

    def recent_alerts(self, n: int) -> list[PersistedAlert]:
        """Last `n` alerts, oldest first"""
        if n <= 0:
            return []
        docs = self._read("recent_alerts",
                          lambda: self.remote.recent_alerts(n),
                          lambda: self.journal.alerts()[-n:])
        return [PersistedAlert.from_dict(d) for d in docs]

    def alerts_by_date(self, day: str) -> list[PersistedAlert]:
        docs = self._read("alerts_by_date",
                          lambda: self.remote.alerts_by_day(day),
                          lambda: [d for d in self.journal.alerts() if d.get("trading_day") == day])
        return [PersistedAlert.from_dict(d) for d in docs]

    def alerts_by_scan(self, scan_name: str, day: str | None = None) -> list[PersistedAlert]:
        def from_journal():
            return [
                d for d in self.journal.alerts()
                if d.get("scan_name") == scan_name and (day is None or d.get("trading_day") == day)
            ]

        docs = self._read("alerts_by_scan",
                          lambda: self.remote.alerts_by_scan(scan_name, day),
                          from_journal)
        return [PersistedAlert.from_dict(d) for d in docs]

    def alert_by_id(self, alert_id: str) -> PersistedAlert | None:
        doc = self._read("alert_by_id",
                         lambda: self.remote.find_alert(alert_id),
                         lambda: self.journal.find_alert(alert_id))
        if doc is None and self.remote is not None:
            # Written to the journal during a remote outage
            doc = self.journal.find_alert(alert_id)
        return PersistedAlert.from_dict(doc) if doc else None

    def summaries_between(self, start: str, end: str) -> list[DailySummary]:
        """Summaries with start <= date <= end (YYYY-MM-DD), by date"""
        docs = self._read("summaries_between",
                          lambda: self.remote.summaries_between(start, end),
                          lambda: sorted(
                              (s for s in self.journal.summaries() if start <= s.get("date", "") <= end),
                              key=lambda s: s["date"],
                          ))
        return [DailySummary.from_dict(d) for d in docs]

    def get_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        return {**stats, "mode": self.mode, "journal": self.journal.get_stats()}
