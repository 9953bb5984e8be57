"""
Webhook request pipeline, independent of the HTTP framework.

received → authenticated → decoded → enriched → recorded → dispatched → replied

Per symbol the tracker is updated before the store append, and the chat
message goes out once every surviving symbol has been recorded.
"""
import hmac
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field

import sentry_sdk

from .analytics import Analytics
from .clock import MarketClock
from .constants import (
    ENRICH_WORKERS,
    REQUEST_BUDGET_SECONDS,
    SECRET_HEADER,
    SIMULATED_TEST_SYMBOL,
    TEST_SYMBOLS,
)
from .enricher import Enricher
from .exceptions import BadRequest, EnrichUnavailable, SinkFailure, Unauthorized
from .formatter import format_batch, format_single
from .health import StatusMonitor
from .logger import logger, set_correlation_id
from .models import EnrichedAlert
from .store import AlertStore
from .telegram_client import ChatSink
from .tracker import AlertTracker
from .validation import sanitize_symbols

IGNORED_REASON = "No stocks matched the criteria"


@dataclass
class WebhookResult:
    status_code: int
    body: dict


@dataclass
class DecodedRequest:
    symbols: list[str]
    scan_name: str | None = None
    raw_count: int = 0


@dataclass
class _EnrichOutcome:
    alerts: list[EnrichedAlert] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    timed_out: bool = False


def _split_symbols(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [s for s in value.split(",")]
    if isinstance(value, (list, tuple)):
        return list(value)
    raise BadRequest("Symbols must be a string or a list", context={"type": type(value).__name__})


def _scan_of(item: Mapping) -> str | None:
    scan = item.get("scan_name") or item.get("scanName")
    if not scan:
        return None
    return str(scan).strip() or None


def decode_payload(payload) -> DecodedRequest:
    """
    Accept the three payload shapes:

        {"symbol": "RELIANCE", "scan_name": "..."}
        {"symbols": ["A", "B"], "scan_name": "..."}
        [{"symbol": "A", "scan_name": "..."}, {"symbol": "B"}]

    plus the legacy `ticker` / `stocks` / `scanName` spellings.

    Raises:
        BadRequest: If no usable symbol is present
    """
    if not payload:
        raise BadRequest("Empty payload")

    if isinstance(payload, list):
        raw, scan_name = [], None
        for item in payload:
            if not isinstance(item, Mapping):
                raise BadRequest("Array items must be objects")
            raw.append(item.get("symbol") or item.get("ticker"))
            if scan_name is None:
                scan_name = _scan_of(item)
    elif isinstance(payload, Mapping):
        scan_name = _scan_of(payload)
        if "symbols" in payload:
            raw = _split_symbols(payload["symbols"])
        elif payload.get("symbol") or payload.get("ticker"):
            raw = [payload.get("symbol") or payload.get("ticker")]
        elif "stocks" in payload:
            raw = _split_symbols(payload["stocks"])
        else:
            raw = []
    else:
        raise BadRequest("Payload must be an object or an array")

    symbols = sanitize_symbols([s for s in raw if isinstance(s, str)])
    if not symbols:
        raise BadRequest("No symbols provided")
    return DecodedRequest(symbols=symbols, scan_name=scan_name, raw_count=len(raw))


class WebhookHandler:
    """Runs one webhook request through enrichment, recording and dispatch"""

    def __init__(self, enricher: Enricher, store: AlertStore, tracker: AlertTracker,
                 analytics: Analytics, monitor: StatusMonitor, sink: ChatSink,
                 clock: MarketClock, secret: str | None = None,
                 budget_seconds: float = REQUEST_BUDGET_SECONDS,
                 max_workers: int = ENRICH_WORKERS, currency: str = "₹"):
        self.enricher = enricher
        self.store = store
        self.tracker = tracker
        self.analytics = analytics
        self.monitor = monitor
        self.sink = sink
        self.clock = clock
        self.secret = secret
        self.budget_seconds = budget_seconds
        self.max_workers = max_workers
        self.currency = currency

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def authenticate(self, headers: Mapping | None):
        if not self.secret:
            return
        provided = None
        for key, value in (headers or {}).items():
            if key.lower() == SECRET_HEADER:
                provided = value
                break
        if not provided or not hmac.compare_digest(str(provided), self.secret):
            raise Unauthorized("Invalid webhook secret")

    def handle(self, payload, headers: Mapping | None = None) -> WebhookResult:
        """Full request: auth, decode, then process"""
        set_correlation_id()
        started = time.monotonic()
        try:
            self.authenticate(headers)
        except Unauthorized:
            logger.warning("webhook.unauthorized")
            return WebhookResult(403, {"status": "error", "error": "Unauthorized"})

        try:
            request = decode_payload(payload)
        except BadRequest as e:
            logger.warning("webhook.bad_request", error=e.message)
            return WebhookResult(400, {"status": "error", "error": e.message})

        logger.info("webhook.received", symbols=",".join(request.symbols), scan=request.scan_name)
        try:
            return self.process(request.symbols, request.scan_name, started=started)
        finally:
            self.monitor.record_response_time((time.monotonic() - started) * 1000)

    def process(self, symbols: list[str], scan_name: str | None = None,
                started: float | None = None) -> WebhookResult:
        """Enrich, record and dispatch already-decoded symbols"""
        if not symbols:
            return WebhookResult(400, {"status": "error", "error": "No symbols provided"})
        started = started if started is not None else time.monotonic()
        deadline = started + self.budget_seconds
        self.monitor.record_webhook(symbols)
        try:
            return self._process(symbols, scan_name, deadline)
        except Exception as e:
            logger.exception("webhook.internal_error", error=str(e))
            self.monitor.record_error("internal", e, context={"symbols": symbols}, with_stack=True)
            sentry_sdk.capture_exception(e)
            return WebhookResult(500, {"status": "error", "error": "Internal server error"})

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def _process(self, symbols: list[str], scan_name: str | None, deadline: float) -> WebhookResult:
        outcome = self._enrich_all(symbols, scan_name, deadline)

        if outcome.timed_out:
            recorded = self._record_all(outcome.alerts)
            logger.error("webhook.budget_exceeded", recorded=len(recorded), requested=len(symbols))
            self.monitor.record_error("timeout", f"Request exceeded {self.budget_seconds}s budget",
                                      context={"symbols": symbols})
            return WebhookResult(500, {"status": "error", "error": "Request timed out",
                                       "stocks": recorded})

        if not outcome.alerts:
            logger.info("webhook.ignored", discarded=",".join(outcome.discarded))
            return WebhookResult(200, {"status": "ignored", "reason": IGNORED_REASON})

        recorded = self._record_all(outcome.alerts)

        to_send = [a for a in outcome.alerts if a.symbol != SIMULATED_TEST_SYMBOL]
        dispatched = False
        if to_send:
            single = len(symbols) == 1 and len(outcome.alerts) == 1
            try:
                self.dispatch(to_send, scan_name, single=single)
                dispatched = True
            except SinkFailure as e:
                self._record_alert_status(outcome.alerts, dispatched=False)
                return WebhookResult(500, {"status": "error", "error": "Failed to send alert",
                                           "detail": e.message, "stocks": recorded})

        self._record_alert_status(outcome.alerts, dispatched=dispatched)
        logger.info("webhook.completed", stocks=",".join(recorded), dispatched=dispatched)
        return WebhookResult(200, {"status": "success", "dispatched": dispatched, "stocks": recorded})

    def _enrich_all(self, symbols: list[str], scan_name: str | None, deadline: float) -> _EnrichOutcome:
        """Fan out enrichment (bounded), keeping request order"""
        outcome = _EnrichOutcome()
        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(symbols)),
                                      thread_name_prefix="enrich")
        try:
            futures = [(s, executor.submit(self.enricher.enrich, s, scan_name)) for s in symbols]
            for index, (symbol, future) in enumerate(futures):
                remaining = deadline - time.monotonic()
                try:
                    if remaining <= 0:
                        raise FuturesTimeout()
                    future.exception(timeout=remaining)
                except FuturesTimeout:
                    outcome.timed_out = True
                    self._collect_finished(futures[index:], outcome)
                    break
                self._settle(symbol, future, outcome)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return outcome

    def _collect_finished(self, futures, outcome: _EnrichOutcome):
        """Keep whatever already finished once the budget is spent"""
        pending = []
        for symbol, future in futures:
            if future.done():
                self._settle(symbol, future, outcome)
            else:
                pending.append(symbol)
        logger.warning("webhook.symbols_timed_out", symbols=",".join(pending))

    @staticmethod
    def _settle(symbol: str, future, outcome: _EnrichOutcome):
        try:
            alert = future.result(timeout=0)
        except EnrichUnavailable as e:
            # The cache has already counted the fetch failure
            logger.warning("webhook.symbol_unavailable", symbol=symbol, error=e.message)
            outcome.discarded.append(symbol)
            return
        if alert is None:
            outcome.discarded.append(symbol)
        else:
            outcome.alerts.append(alert)

    def _record_all(self, alerts: list[EnrichedAlert]) -> list[str]:
        """Tracker, then store, then analytics, per alert; test symbols skip most of it"""
        recorded = []
        for alert in alerts:
            is_test = alert.symbol in TEST_SYMBOLS
            if not is_test:
                self.tracker.track(alert)
            if alert.symbol != SIMULATED_TEST_SYMBOL:
                self.store.append_alert(alert)
            if not is_test:
                self.analytics.track_alert(alert.symbol, alert.scan_name, alert.close,
                                           alert.close, alert.stop_loss)
            recorded.append(alert.symbol)
        return recorded

    def _record_alert_status(self, alerts: list[EnrichedAlert], dispatched: bool):
        for alert in alerts:
            self.monitor.record_alert(alert.symbol, alert.scan_name, alert.close,
                                      dispatched=dispatched and alert.symbol != SIMULATED_TEST_SYMBOL)

    def dispatch(self, alerts: list[EnrichedAlert], scan_name: str | None, single: bool):
        """
        Render and send one message for the alerts.

        Raises:
            SinkFailure: If the chat platform did not accept the message
        """
        if single:
            text = format_single(alerts[0], self.currency)
        else:
            text = format_batch(alerts, scan_name, self.clock.now(), self.currency)
        try:
            if not self.sink.send(text, critical=True):
                raise SinkFailure("Chat platform did not accept the message")
        except SinkFailure as e:
            logger.error("webhook.dispatch_failed", error=e.message)
            self.monitor.record_telegram_error(e)
            raise
        self.monitor.record_telegram_sent()
