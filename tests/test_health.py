"""Tests for the status monitor"""
import json
import threading

from scan_alerts.backup import atomic_write_json
from scan_alerts.health import StatusMonitor


class TestRecording:
    def test_alert_ring_is_bounded(self, monitor):
        for i in range(25):
            monitor.record_alert(f"S{i}", "scan", 100.0, dispatched=True)

        status = monitor.get_status()
        assert len(status["recent_alerts"]) == 20
        assert status["recent_alerts"][0]["symbol"] == "S5"
        assert status["counters"]["alerts_sent"] == 25

    def test_error_ring_is_bounded(self, monitor):
        for i in range(55):
            monitor.record_error("webhook", f"boom {i}")
        assert len(monitor.get_status()["recent_errors"]) == 50
        assert monitor.counters["errors_today"] == 55

    def test_undispatched_alert_not_counted_as_sent(self, monitor):
        monitor.record_alert("SIMULATED.TEST", None, 103.0, dispatched=False)
        assert monitor.counters["alerts_sent"] == 0
        assert monitor.counters["alerts_today"] == 1

    def test_data_fetch_error_counter(self, monitor):
        monitor.record_data_fetch_error("quote", "TCS.NS", TimeoutError("slow"))
        monitor.record_data_fetch_error("quote", "XYZ.NS", None)

        assert monitor.counters["data_fetch_errors"] == 2
        errors = monitor.get_status()["recent_errors"]
        assert errors[0]["context"] == {"symbol": "TCS.NS"}
        assert errors[1]["message"] == "not found"

    def test_telegram_error_updates_connection(self, monitor):
        monitor.record_telegram_sent()
        monitor.record_telegram_error(RuntimeError("403"))

        status = monitor.get_status()
        assert status["telegram"]["connected"] is False
        assert status["telegram"]["last_error"]["message"] == "403"
        assert status["counters"]["telegram_errors"] == 1

    def test_stack_kept_when_requested(self, monitor):
        try:
            raise ValueError("bad")
        except ValueError as e:
            monitor.record_error("scheduler.daily_summary", e, with_stack=True)
        assert "ValueError" in monitor.get_status()["recent_errors"][0]["stack"]

    def test_error_checkpoints_to_disk(self, monitor, tmp_path):
        monitor.record_error("webhook", "boom")
        data = json.loads((tmp_path / "system_status.json").read_text(encoding="utf-8"))
        assert data["recent_errors"][0]["message"] == "boom"

    def test_concurrent_errors_write_one_checkpoint_at_a_time(self, monitor, tmp_path, monkeypatch):
        active = []
        overlaps = []
        guard = threading.Lock()

        def tracking_write(path, data):
            with guard:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
            try:
                atomic_write_json(path, data)
            finally:
                with guard:
                    active.pop()

        monkeypatch.setattr("scan_alerts.health.atomic_write_json", tracking_write)

        def report(n):
            for i in range(20):
                monitor.record_data_fetch_error("quote", f"S{n}-{i}.NS", TimeoutError("slow"))

        threads = [threading.Thread(target=report, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
        assert monitor.counters["data_fetch_errors"] == 160
        assert not (tmp_path / "system_status.json.tmp").exists()
        data = json.loads((tmp_path / "system_status.json").read_text(encoding="utf-8"))
        assert data["counters"]["data_fetch_errors"] == 160


class TestDailyReset:
    def test_tick_resets_daily_counters_on_new_day(self, monitor, clock):
        monitor.record_webhook(["TCS"])
        monitor.record_alert("TCS", "scan", 1.0, dispatched=True)

        monitor.tick()
        assert monitor.counters["webhooks_today"] == 1

        clock.advance(days=1)
        monitor.tick()

        assert monitor.counters["webhooks_today"] == 0
        assert monitor.counters["alerts_today"] == 0
        assert monitor.counters["webhooks_received"] == 1
        assert monitor.counters["alerts_sent"] == 1


class TestRestore:
    def test_init_restores_totals_and_today(self, tmp_path, clock):
        path = tmp_path / "system_status.json"
        first = StatusMonitor(path, clock)
        first.init()
        first.record_webhook(["TCS"])
        first.record_alert("TCS", "scan", 1.0, dispatched=True)
        first.shutdown()

        second = StatusMonitor(path, clock)
        second.init()

        assert second.counters["webhooks_received"] == 1
        assert second.counters["webhooks_today"] == 1
        assert second.get_status()["recent_alerts"][0]["symbol"] == "TCS"

    def test_init_drops_daily_counters_from_other_day(self, tmp_path, clock):
        path = tmp_path / "system_status.json"
        first = StatusMonitor(path, clock)
        first.record_webhook(["TCS"])
        first.shutdown()

        clock.advance(days=1)
        second = StatusMonitor(path, clock)
        second.init()

        assert second.counters["webhooks_received"] == 1
        assert second.counters["webhooks_today"] == 0

    def test_init_with_corrupt_file(self, tmp_path, clock):
        path = tmp_path / "system_status.json"
        path.write_text("{not json", encoding="utf-8")
        m = StatusMonitor(path, clock)
        m.init()
        assert m.counters["alerts_sent"] == 0


class TestStatus:
    def test_performance_keys(self, monitor):
        monitor.record_response_time(10.0)
        monitor.record_response_time(30.0)

        perf = monitor.get_status()["performance"]

        assert perf["response_time"] == 20.0
        assert perf["memory_bytes"] > 0
        assert "cpu_load" in perf
