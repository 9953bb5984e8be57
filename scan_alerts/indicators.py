"""
Moving averages, Wilder RSI and relative volume over daily bars.

All functions return None (not NaN, not 0) when the series is too short.
"""
import math
from collections.abc import Sequence

import numpy as np
import pandas as pd

from .constants import RSI_PERIOD, SMA_LONG, SMA_MEDIUM, SMA_SHORT, VOLUME_AVG_PERIOD
from .models import Bar, Indicators


def _clean(values: Sequence[float | None] | pd.Series) -> pd.Series:
    series = pd.Series(values, dtype="float64")
    return series.dropna().reset_index(drop=True)


def _finite(value) -> float | None:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def sma(values: Sequence[float | None] | pd.Series, period: int) -> float | None:
    """Arithmetic mean of the last `period` values"""
    series = _clean(values)
    if period <= 0 or len(series) < period:
        return None
    return _finite(series.iloc[-period:].mean())


def rsi(closes: Sequence[float | None] | pd.Series, period: int = RSI_PERIOD) -> float | None:
    """
    Wilder-smoothed RSI of the latest close.

    Seeds average gain/loss with the simple mean of the first `period`
    differences, then smooths: avg = (avg * (period - 1) + x) / period.
    Returns 100 when there were no losses.
    """
    series = _clean(closes)
    if len(series) < period + 1:
        return None

    deltas = np.diff(series.to_numpy())
    gains = np.clip(deltas, 0, None)
    losses = np.clip(-deltas, 0, None)

    avg_gain = gains[:period].sum() / period
    avg_loss = losses[:period].sum() / period
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return _finite(100 - 100 / (1 + rs))


def volume_ratio(volumes: Sequence[float | None] | pd.Series,
                 period: int = VOLUME_AVG_PERIOD) -> float | None:
    """Latest volume over the `period`-bar average volume"""
    series = _clean(volumes)
    avg = sma(series, period)
    if avg is None or avg == 0:
        return None
    return _finite(series.iloc[-1] / avg)


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """Bars → DataFrame indexed by date with Close/Volume columns"""
    if not bars:
        return pd.DataFrame(columns=["Close", "Volume"])
    df = pd.DataFrame(
        {
            "Date": [b.date for b in bars],
            "Close": [b.close for b in bars],
            "Volume": [b.volume for b in bars],
        }
    )
    return df.set_index("Date")


def compute_indicators(bars: Sequence[Bar]) -> Indicators:
    """All indicators for a daily bar series (oldest first)"""
    df = bars_to_frame(bars)
    closes = df["Close"]
    return Indicators(
        sma20=sma(closes, SMA_SHORT),
        sma50=sma(closes, SMA_MEDIUM),
        sma200=sma(closes, SMA_LONG),
        rsi14=rsi(closes, RSI_PERIOD),
        volume_ratio=volume_ratio(df["Volume"], VOLUME_AVG_PERIOD),
    )
