"""
Component wiring.

Builds every long-lived component from Config and owns the explicit
init/shutdown order. Nothing here runs at import time.
"""
import time
from pathlib import Path

from . import __version__
from .analytics import Analytics
from .backup import LocalJournal
from .cache import QuoteCache
from .clock import MarketClock
from .config import Config
from .constants import (
    ANALYTICS_FILE,
    DEFAULT_TEST_SCAN,
    DEFAULT_TEST_SYMBOLS,
    JOURNAL_FILE,
    STATUS_FILE,
)
from .data_source import MarketDataVendor, YFinanceVendor
from .enricher import Enricher
from .exceptions import StoreFailure, TelegramError
from .formatter import SHUTDOWN_MESSAGE, STARTUP_MESSAGE, TEST_MESSAGE
from .health import StatusMonitor
from .logger import logger
from .mongo_store import DocumentStore, MongoDocumentStore
from .rate_limiter import RateLimiter
from .scheduler import DigestScheduler
from .store import AlertStore
from .telegram_client import ChatSink, TelegramClient
from .tracker import AlertTracker
from .webhook import WebhookHandler, WebhookResult


class Gateway:
    """All process-wide components of the alert service"""

    def __init__(self, cfg: Config, clock: MarketClock, rate_limiter: RateLimiter,
                 cache: QuoteCache, enricher: Enricher, store: AlertStore,
                 tracker: AlertTracker, analytics: Analytics, monitor: StatusMonitor,
                 sink: ChatSink, handler: WebhookHandler, scheduler: DigestScheduler):
        self.cfg = cfg
        self.clock = clock
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.enricher = enricher
        self.store = store
        self.tracker = tracker
        self.analytics = analytics
        self.monitor = monitor
        self.sink = sink
        self.handler = handler
        self.scheduler = scheduler
        self._started = time.monotonic()

    @classmethod
    def from_config(cls, cfg: Config, *, vendor: MarketDataVendor | None = None,
                    sink: ChatSink | None = None, remote: DocumentStore | None = None,
                    clock: MarketClock | None = None) -> "Gateway":
        """
        Build the component graph.

        `vendor`, `sink`, `remote` and `clock` replace the production
        implementations (used by tests and the CLI).
        """
        clock = clock or MarketClock(cfg.market.timezone)
        data_dir = Path(cfg.storage.data_dir)
        currency = cfg.market.currency_symbol

        monitor = StatusMonitor(data_dir / STATUS_FILE, clock)
        rate_limiter = RateLimiter({"vendor": cfg.vendor.rate_limit_per_minute})
        cache = QuoteCache(
            vendor or YFinanceVendor(timeout=cfg.vendor.timeout_seconds),
            rate_limiter=rate_limiter,
            ttl_seconds=cfg.vendor.cache_ttl_seconds,
            timeout=cfg.vendor.timeout_seconds,
            symbol_suffix=cfg.market.symbol_suffix,
            on_error=monitor.record_data_fetch_error,
        )
        enricher = Enricher(cache, clock)

        if remote is None and cfg.storage.mongodb_uri:
            remote = MongoDocumentStore(cfg.storage.mongodb_uri, cfg.storage.mongodb_database)
        store = AlertStore(LocalJournal(data_dir / JOURNAL_FILE), clock, remote=remote)

        tracker = AlertTracker(
            cache, clock, data_dir=data_dir,
            batch_size=cfg.tracker.refresh_batch_size,
            batch_delay=cfg.tracker.refresh_batch_delay,
            retention_days=cfg.tracker.archive_retention_days,
            currency=currency,
        )
        analytics = Analytics(data_dir / ANALYTICS_FILE, clock)
        sink = sink or TelegramClient(cfg.telegram.bot_token, cfg.telegram.chat_id)

        handler = WebhookHandler(
            enricher, store, tracker, analytics, monitor, sink, clock,
            secret=cfg.server.webhook_secret,
            budget_seconds=cfg.server.request_budget_seconds,
            currency=currency,
        )
        scheduler = DigestScheduler(tracker, store, sink, monitor, clock,
                                    summary_time=cfg.market.summary_time)

        return cls(cfg, clock, rate_limiter, cache, enricher, store, tracker, analytics,
                   monitor, sink, handler, scheduler)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def init(self, start_scheduler: bool = True):
        Path(self.cfg.storage.data_dir).mkdir(parents=True, exist_ok=True)
        self.monitor.init()
        self.cache.init()
        connect = getattr(self.store.remote, "connect", None)
        if connect is not None:
            try:
                connect()
            except StoreFailure as e:
                # Writes fall back to the journal until the remote comes back
                logger.warning("gateway.remote_unavailable", error=e.message)
        self.store.init()
        self.tracker.init()
        self.analytics.init()
        if start_scheduler:
            self.scheduler.start()
        logger.info("gateway.init", version=__version__, store=self.store.mode)

    def shutdown(self):
        """Stop in reverse order; every step runs even if an earlier one fails"""
        for name, step in (("scheduler", self.scheduler.stop),
                           ("tracker", self.tracker.shutdown),
                           ("analytics", self.analytics.shutdown),
                           ("store", self.store.shutdown),
                           ("cache", self.cache.shutdown),
                           ("monitor", self.monitor.shutdown)):
            try:
                step()
            except Exception as e:
                logger.error("gateway.shutdown_step_failed", step=name, error=str(e))
        logger.info("gateway.shutdown")

    # ------------------------------------------------------------------
    # notices
    # ------------------------------------------------------------------

    def _notify(self, text: str, event: str) -> bool:
        try:
            sent = self.sink.send(text)
        except TelegramError as e:
            logger.warning(f"gateway.{event}_failed", error=e.message)
            self.monitor.record_telegram_error(e)
            return False
        if sent:
            self.monitor.record_telegram_sent()
        return sent

    def send_startup_notice(self) -> bool:
        return self._notify(STARTUP_MESSAGE, "startup_notice")

    def send_shutdown_notice(self) -> bool:
        return self._notify(SHUTDOWN_MESSAGE, "shutdown_notice")

    # ------------------------------------------------------------------
    # operations behind the HTTP routes
    # ------------------------------------------------------------------

    def handle_webhook(self, payload, headers=None) -> WebhookResult:
        return self.handler.handle(payload, headers)

    def check(self, symbol: str) -> dict:
        return self.enricher.check(symbol)

    def run_daily_summary(self) -> dict:
        return self.scheduler.run_daily_summary()

    def test_telegram(self) -> dict:
        """Send the canned test message; raises TelegramError on failure"""
        if not self.sink.send(TEST_MESSAGE, critical=True):
            raise TelegramError("Chat platform did not accept the test message")
        self.monitor.record_telegram_sent()
        return {"status": "success", "message": "Test message sent"}

    def test_multiple(self, symbols: list[str] | None = None,
                      scan_name: str | None = None) -> WebhookResult:
        """Run the webhook pipeline for a fixed symbol list, bypassing auth"""
        return self.handler.process(symbols or list(DEFAULT_TEST_SYMBOLS),
                                    scan_name or DEFAULT_TEST_SCAN)

    def alerts_for_day(self, day: str | None = None) -> list[dict]:
        day = day or self.clock.trading_day_key()
        return [a.to_dict() for a in self.store.alerts_by_date(day)]

    def resend_alert(self, alert_id: str) -> dict | None:
        """
        Re-send one stored alert.

        Returns:
            The alert document, or None if no alert has that id

        Raises:
            TelegramError: If the send fails
        """
        persisted = self.store.alert_by_id(alert_id)
        if persisted is None:
            return None
        self.handler.dispatch([persisted.to_alert()], persisted.scan_name, single=True)
        logger.info("gateway.alert_resent", id=alert_id, symbol=persisted.symbol)
        return persisted.to_dict()

    def resend_alerts_by_scan(self, scan_name: str, day: str | None = None) -> list[dict]:
        """Re-send a scan's alerts for a day (default today) as one batch message"""
        day = day or self.clock.trading_day_key()
        persisted = self.store.alerts_by_scan(scan_name, day)
        if not persisted:
            return []
        alerts = [p.to_alert() for p in persisted]
        self.handler.dispatch(alerts, scan_name, single=len(alerts) == 1)
        logger.info("gateway.scan_resent", scan=scan_name, day=day, count=len(alerts))
        return [p.to_dict() for p in persisted]

    # ------------------------------------------------------------------
    # read models
    # ------------------------------------------------------------------

    def health(self) -> dict:
        telegram_ok = self.sink.is_healthy()
        self.monitor.record_health_check(telegram_ok)
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "store": self.store.mode,
            "telegram_healthy": telegram_ok,
            "timestamp": self.clock.iso_now(),
        }

    def status(self) -> dict:
        status = self.monitor.get_status()
        tracked = self.tracker.snapshot()
        status.update({
            "version": __version__,
            "cache": self.cache.get_stats(),
            "rate_limits": self.rate_limiter.get_stats(),
            "store": self.store.get_stats(),
            "tracker": {"date": tracked["date"], "stocks": len(tracked["stocks"])},
            "next_summary": self.scheduler.next_run_time(),
        })
        return status

    def analytics_summary(self, period: str = "all") -> dict:
        return self.analytics.get_summary(period)
