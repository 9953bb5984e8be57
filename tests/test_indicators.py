"""Tests for moving averages, RSI and relative volume"""
import pytest

from scan_alerts.indicators import compute_indicators, rsi, sma, volume_ratio
from scan_alerts.models import Bar


def _bars(closes, volume=1000.0):
    return [Bar(date=f"2024-01-{i + 1:02d}", close=c, volume=volume) for i, c in enumerate(closes)]


class TestSMA:
    def test_mean_of_last_period_values(self):
        assert sma([1, 2, 3, 4, 5], 3) == pytest.approx(4.0)

    def test_too_short_returns_none(self):
        assert sma([1, 2], 3) is None

    def test_ignores_missing_values(self):
        assert sma([1, None, 3, 5], 3) == pytest.approx(3.0)

    def test_invalid_period(self):
        assert sma([1, 2, 3], 0) is None


class TestRSI:
    def test_too_short_returns_none(self):
        assert rsi(list(range(14))) is None

    def test_only_gains_is_100(self):
        assert rsi(list(range(1, 30))) == 100.0

    def test_only_losses_is_0(self):
        assert rsi(list(range(30, 0, -1))) == pytest.approx(0.0)

    def test_alternating_is_midrange(self):
        closes = [100 + (1 if i % 2 else -1) for i in range(40)]
        value = rsi(closes)
        assert 40 < value < 60

    def test_bounded(self):
        closes = [100, 102, 101, 105, 103, 108, 107, 110, 104, 106, 109, 111, 108, 112, 115, 113]
        assert 0 <= rsi(closes) <= 100


class TestVolumeRatio:
    def test_latest_over_average(self):
        volumes = [100.0] * 9 + [200.0]
        # average of last 10 = 110
        assert volume_ratio(volumes) == pytest.approx(200 / 110)

    def test_zero_average_is_none(self):
        assert volume_ratio([0.0] * 10) is None

    def test_too_short_is_none(self):
        assert volume_ratio([100.0] * 5) is None


class TestComputeIndicators:
    def test_short_series_leaves_long_averages_none(self):
        ind = compute_indicators(_bars([50.0] * 25))
        assert ind.sma20 == pytest.approx(50.0)
        assert ind.sma50 is None
        assert ind.sma200 is None
        assert ind.volume_ratio == pytest.approx(1.0)

    def test_empty_series(self):
        ind = compute_indicators([])
        assert ind.sma20 is None
        assert ind.rsi14 is None
        assert ind.volume_ratio is None

    def test_long_series(self):
        ind = compute_indicators(_bars([float(i) for i in range(1, 201)]))
        assert ind.sma200 == pytest.approx(100.5)
        assert ind.sma50 == pytest.approx(175.5)
        assert ind.rsi14 == 100.0
