"""Tests for enrichment: scan classification, open=low filters and derived fields"""
import pytest

from scan_alerts.enricher import Enricher, above_sma, classify_scan, opens_at_low
from scan_alerts.exceptions import EnrichUnavailable
from scan_alerts.models import Quote


@pytest.fixture
def enricher(cache, clock):
    return Enricher(cache, clock)


class TestClassifyScan:
    @pytest.mark.parametrize("name", ["Open=Low Breakout", "NIFTY open=low", "OPEN=LOW"])
    def test_open_equals_low(self, name):
        assert classify_scan(name) == "open_equals_low"

    @pytest.mark.parametrize("name", ["Momentum", "", None, "open low"])
    def test_custom(self, name):
        assert classify_scan(name) == "custom"


class TestCriteria:
    def test_opens_at_low_with_tolerance(self):
        assert opens_at_low(Quote(symbol="X", open=100.0, low=99.995))
        assert not opens_at_low(Quote(symbol="X", open=100.0, low=99.5))
        assert not opens_at_low(Quote(symbol="X", open=None, low=99.5))

    def test_above_sma(self):
        assert above_sma(101.0, 100.0)
        assert not above_sma(100.0, 100.0)
        assert above_sma(50.0, None)


class TestEnrich:
    def test_open_equals_low_happy_path(self, enricher, vendor):
        vendor.set_quote("RELIANCE", open=2950.0, high=3030.0, low=2950.0, close=3020.45, sma20=2880.0)

        alert = enricher.enrich("reliance", "Open=Low Breakout")

        assert alert.symbol == "RELIANCE"
        assert alert.scan_type == "open_equals_low"
        assert alert.stop_loss == 2950.0
        assert alert.percent_change == pytest.approx(2.39, abs=0.01)
        assert alert.sl_distance_pct == pytest.approx(2.33, abs=0.01)
        assert alert.sma20 == pytest.approx(2880.0)
        assert alert.received_at.startswith("2024-03-13T11:00")

    def test_sma_inside_band_becomes_stop(self, enricher, vendor):
        vendor.set_quote("RELIANCE", open=2950.0, high=3030.0, low=2950.0, close=3020.45, sma20=2930.0)
        alert = enricher.enrich("RELIANCE", "Open=Low Breakout")
        assert alert.stop_loss == pytest.approx(2930.0)

    def test_open_equals_low_below_sma_is_filtered(self, enricher, vendor):
        vendor.set_quote("RELIANCE", open=2950.0, high=2960.0, low=2950.0, close=2900.0, sma20=2930.0)
        assert enricher.enrich("RELIANCE", "Open=Low Breakout") is None

    def test_open_not_at_low_is_filtered(self, enricher, vendor):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=95.0, close=104.0, sma20=90.0)
        assert enricher.enrich("TCS", "open=low scan") is None

    def test_custom_scan_skips_filters(self, enricher, vendor):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=95.0, close=90.0, sma20=99.0)
        alert = enricher.enrich("TCS", "Momentum")
        assert alert.scan_type == "custom"
        assert alert.stop_loss == 95.0

    def test_missing_sma_tolerated(self, enricher, vendor):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)
        alert = enricher.enrich("TCS", "open=low")
        assert alert.sma20 is None
        assert alert.stop_loss == 100.0

    def test_no_quote_raises(self, enricher):
        with pytest.raises(EnrichUnavailable):
            enricher.enrich("MISSING", "Momentum")

    def test_empty_symbol_rejected(self, enricher):
        with pytest.raises(ValueError):
            enricher.enrich("  ", "Momentum")

    def test_simulated_symbol_uses_fixture(self, enricher, vendor):
        alert = enricher.enrich("SIMULATED.TEST", None)
        assert alert.close == 103.0
        assert alert.stop_loss == 100.0
        assert vendor.calls == []


class TestCheck:
    def test_reports_criteria(self, enricher, vendor):
        vendor.set_quote("RELIANCE", open=2950.0, high=3030.0, low=2950.0, close=3020.45, sma20=2880.0)

        result = enricher.check("RELIANCE")

        assert result["open_equals_low"] is True
        assert result["above_sma"] is True
        assert result["matches"] is True
        assert result["stop_loss"] == 2950.0

    def test_no_sma_is_not_above(self, enricher, vendor):
        vendor.set_quote("TCS", open=100.0, high=105.0, low=100.0, close=104.0)
        result = enricher.check("TCS")
        assert result["above_sma"] is False
        assert result["matches"] is False
