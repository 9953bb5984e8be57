"""Tests for the webhook pipeline: decoding, auth, enrichment, recording and dispatch"""
import threading

import pytest

from scan_alerts.cache import QuoteCache
from scan_alerts.enricher import Enricher
from scan_alerts.exceptions import BadRequest
from scan_alerts.rate_limiter import RateLimiter
from scan_alerts.webhook import IGNORED_REASON, WebhookHandler, decode_payload

from conftest import FakeSink


class TestDecodePayload:
    def test_single_object(self):
        req = decode_payload({"symbol": " reliance ", "scan_name": "Open=Low Breakout"})
        assert req.symbols == ["RELIANCE"]
        assert req.scan_name == "Open=Low Breakout"

    def test_symbols_list_and_comma_string(self):
        assert decode_payload({"symbols": ["tcs", "INFY", "tcs"]}).symbols == ["TCS", "INFY"]
        assert decode_payload({"symbols": "TCS, INFY"}).symbols == ["TCS", "INFY"]

    def test_array_of_objects_takes_first_scan(self):
        req = decode_payload([{"symbol": "A1", "scanName": "First"},
                              {"ticker": "B1", "scan_name": "Second"}])
        assert req.symbols == ["A1", "B1"]
        assert req.scan_name == "First"
        assert req.raw_count == 2

    def test_legacy_aliases(self):
        assert decode_payload({"ticker": "TCS"}).symbols == ["TCS"]
        assert decode_payload({"stocks": "TCS,INFY"}).symbols == ["TCS", "INFY"]

    def test_invalid_symbols_dropped(self):
        assert decode_payload({"symbols": ["TCS", "BAD SYMBOL", ""]}).symbols == ["TCS"]

    @pytest.mark.parametrize("payload", [
        None, {}, [], {"symbols": []}, {"scan_name": "x"}, {"symbols": ["  "]},
        {"symbols": 5}, "RELIANCE", [1, 2],
    ])
    def test_rejects(self, payload):
        with pytest.raises(BadRequest):
            decode_payload(payload)


class TestAuthentication:
    def test_missing_secret_is_403(self, handler, sink):
        handler.secret = "s3cret"

        result = handler.handle({"symbol": "RELIANCE"}, headers={})

        assert result.status_code == 403
        assert sink.messages == []

    def test_wrong_secret_is_403(self, handler):
        handler.secret = "s3cret"
        result = handler.handle({"symbol": "RELIANCE"}, headers={"X-Webhook-Secret": "nope"})
        assert result.status_code == 403

    def test_header_lookup_is_case_insensitive(self, handler, vendor):
        handler.secret = "s3cret"
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)

        result = handler.handle({"symbol": "TCS"}, headers={"X-Webhook-Secret": "s3cret"})

        assert result.status_code == 200

    def test_no_secret_configured_allows_all(self, handler, vendor):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)
        assert handler.handle({"symbol": "TCS"}).status_code == 200


class TestBadRequests:
    def test_empty_payload_is_400(self, handler, monitor):
        result = handler.handle({})
        assert result.status_code == 400
        assert result.body["status"] == "error"
        assert monitor.counters["webhooks_received"] == 0

    def test_empty_symbol_list_is_400(self, handler):
        assert handler.handle({"symbols": []}).status_code == 400

    def test_process_without_symbols_is_400(self, handler):
        assert handler.process([]).status_code == 400


class TestSingleAlert:
    def test_open_equals_low_alert_sent(self, handler, vendor, sink, store, tracker, analytics,
                                        monitor):
        vendor.set_quote("RELIANCE", open=2950.0, high=3030.0, low=2950.0, close=3020.45,
                         sma20=2880.0)

        result = handler.handle({"symbol": "RELIANCE", "scan_name": "Open=Low Breakout"})

        assert result.status_code == 200
        assert result.body == {"status": "success", "dispatched": True, "stocks": ["RELIANCE"]}

        assert len(sink.messages) == 1
        text = sink.messages[0]["text"]
        assert "*STOCK ALERT: RELIANCE*" in text
        assert "₹2950.00 (2.33% away)" in text
        assert sink.messages[0]["critical"] is True

        stored = store.recent_alerts(10)
        assert [a.symbol for a in stored] == ["RELIANCE"]
        assert stored[0].stop_loss == 2950.0
        assert stored[0].trading_day == "2024-03-13"

        assert tracker.get("RELIANCE").alert_price == 3020.45
        assert analytics.symbols["RELIANCE"].total_alerts == 1
        assert monitor.counters["alerts_sent"] == 1
        assert monitor.telegram["connected"] is True

    def test_filtered_open_low_is_ignored(self, handler, vendor, sink, store, tracker):
        vendor.set_quote("RELIANCE", open=2950.0, high=2960.0, low=2950.0, close=2900.0,
                         sma20=2930.0)

        result = handler.handle({"symbol": "RELIANCE", "scan_name": "Open=Low Breakout"})

        assert result.status_code == 200
        assert result.body == {"status": "ignored", "reason": IGNORED_REASON}
        assert sink.messages == []
        assert store.recent_alerts(10) == []
        assert tracker.entries() == []

    def test_unknown_symbol_is_ignored(self, handler, sink):
        result = handler.handle({"symbol": "NOPE"})
        assert result.body["status"] == "ignored"
        assert sink.messages == []


class TestBatchAlert:
    def test_one_message_sorted_by_stop_distance(self, handler, vendor, sink, store):
        vendor.set_quote("AAA", open=99.0, high=101.0, low=97.0, close=100.0)
        vendor.set_quote("BBB", open=99.0, high=101.0, low=98.8, close=100.0)
        vendor.set_quote("CCC", open=99.0, high=101.0, low=97.9, close=100.0)

        result = handler.handle({"symbols": ["AAA", "BBB", "CCC"], "scan_name": "Momentum"})

        assert result.status_code == 200
        assert result.body["stocks"] == ["AAA", "BBB", "CCC"]
        assert len(sink.messages) == 1
        text = sink.messages[0]["text"]
        assert text.index("BBB") < text.index("CCC") < text.index("AAA")
        assert len(store.recent_alerts(10)) == 3

    def test_partial_survivors_still_batch(self, handler, vendor, sink):
        vendor.set_quote("AAA", open=99.0, high=101.0, low=97.0, close=100.0)

        result = handler.handle({"symbols": ["AAA", "MISSING"], "scan_name": "Momentum"})

        assert result.body["stocks"] == ["AAA"]
        assert len(sink.messages) == 1
        assert "MULTIPLE STOCK ALERTS" in sink.messages[0]["text"]


class TestTestSymbols:
    def test_simulated_symbol_is_never_sent_or_stored(self, handler, sink, store, tracker,
                                                      analytics, monitor, vendor):
        result = handler.handle({"symbol": "SIMULATED.TEST"})

        assert result.status_code == 200
        assert result.body == {"status": "success", "dispatched": False,
                               "stocks": ["SIMULATED.TEST"]}
        assert sink.messages == []
        assert store.recent_alerts(10) == []
        assert tracker.entries() == []
        assert analytics.symbols == {}
        assert vendor.calls == []
        assert monitor.counters["alerts_today"] == 1
        assert monitor.counters["alerts_sent"] == 0

    def test_real_test_symbol_is_sent_and_stored_but_not_tracked(self, handler, sink, store,
                                                                 tracker, analytics):
        result = handler.handle({"symbol": "REAL.TEST"})

        assert result.body["dispatched"] is True
        assert len(sink.messages) == 1
        assert [a.symbol for a in store.recent_alerts(10)] == ["REAL.TEST"]
        assert tracker.entries() == []
        assert analytics.symbols == {}


class TestFailures:
    def test_sink_failure_is_500_after_recording(self, cache, clock, store, tracker, analytics,
                                                 monitor, vendor):
        failing = FakeSink(fail=True)
        h = WebhookHandler(Enricher(cache, clock), store, tracker, analytics, monitor, failing,
                           clock)
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)

        result = h.handle({"symbol": "TCS"})

        assert result.status_code == 500
        assert result.body["error"] == "Failed to send alert"
        assert result.body["stocks"] == ["TCS"]
        assert [a.symbol for a in store.recent_alerts(10)] == ["TCS"]
        assert tracker.get("TCS") is not None
        assert monitor.counters["telegram_errors"] == 1
        assert monitor.counters["alerts_sent"] == 0

    def test_slow_symbol_dropped_and_reported_once(self, clock, store, tracker, analytics,
                                                   monitor, vendor, sink):
        slow_cache = QuoteCache(vendor, rate_limiter=RateLimiter({"vendor": 10_000}),
                                timeout=0.25, on_error=monitor.record_data_fetch_error)
        slow_cache.init()
        gate = threading.Event()
        vendor.gates["SLOW.NS"] = gate
        vendor.set_quote("SLOW", open=99.0, high=101.0, low=97.0, close=100.0)
        vendor.set_quote("FAST", open=99.0, high=101.0, low=98.0, close=100.0, sma20=95.0)
        h = WebhookHandler(Enricher(slow_cache, clock), store, tracker, analytics, monitor,
                           sink, clock)
        try:
            result = h.handle({"symbols": ["SLOW", "FAST"], "scan_name": "Momentum"})
        finally:
            gate.set()
            slow_cache.shutdown()

        assert result.status_code == 200
        assert result.body["stocks"] == ["FAST"]
        assert len(sink.messages) == 1
        assert monitor.counters["data_fetch_errors"] == 1

    def test_request_budget_exceeded_is_500(self, handler, vendor, sink, monitor):
        gate = threading.Event()
        vendor.gates["SLOW.NS"] = gate
        vendor.set_quote("SLOW", open=99.0, high=101.0, low=97.0, close=100.0)
        handler.budget_seconds = 0.2
        try:
            result = handler.handle({"symbol": "SLOW"})
        finally:
            gate.set()

        assert result.status_code == 500
        assert result.body["error"] == "Request timed out"
        assert sink.messages == []
        assert any(e["type"] == "timeout" for e in monitor.get_status()["recent_errors"])

    def test_budget_exceeded_keeps_finished_symbols(self, handler, vendor, sink, store, tracker):
        gate = threading.Event()
        vendor.gates["SLOW.NS"] = gate
        vendor.set_quote("SLOW", open=99.0, high=101.0, low=97.0, close=100.0)
        vendor.set_quote("FAST", open=99.0, high=101.0, low=98.0, close=100.0, sma20=95.0)
        handler.budget_seconds = 0.5
        try:
            result = handler.handle({"symbols": ["SLOW", "FAST"], "scan_name": "Momentum"})
        finally:
            gate.set()

        assert result.status_code == 500
        assert result.body["stocks"] == ["FAST"]
        assert [a.symbol for a in store.recent_alerts(10)] == ["FAST"]
        assert tracker.get("FAST") is not None
        assert tracker.get("SLOW") is None
        assert sink.messages == []

    def test_unexpected_error_is_500(self, handler, vendor, monkeypatch):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)

        def broken(alert):
            raise RuntimeError("disk full")

        monkeypatch.setattr(handler.tracker, "track", broken)

        result = handler.handle({"symbol": "TCS"})

        assert result.status_code == 500
        assert result.body == {"status": "error", "error": "Internal server error"}


class TestBookkeeping:
    def test_webhook_and_response_time_counted(self, handler, vendor, monitor):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)

        handler.handle({"symbol": "TCS"})

        assert monitor.counters["webhooks_received"] == 1
        assert monitor.counters["webhooks_today"] == 1
        assert monitor.get_status()["performance"]["response_time"] is not None
