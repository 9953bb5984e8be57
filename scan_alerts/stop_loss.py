"""Protective exit level and derived percentages for an alert"""

from .constants import SMA_STOP_BAND


def calculate_stop_loss(day_low: float, sma20: float | None = None) -> float:
    """
    Stop loss for an alert: the day's low, or the 20-SMA when it sits just
    below the low (within 2%). Always <= day_low.

    Args:
        day_low: Intraday low, must be > 0
        sma20: 20-day simple moving average, if known

    Raises:
        ValueError: If day_low is not positive
    """
    if day_low is None or day_low <= 0:
        raise ValueError(f"day_low must be positive, got {day_low}")
    if sma20 is None:
        return day_low
    if day_low * SMA_STOP_BAND < sma20 < day_low:
        return sma20
    return day_low


def percent_change(start: float | None, end: float | None) -> float | None:
    """(end - start) / start * 100, None when start is 0 or unknown"""
    if start is None or end is None or start == 0:
        return None
    return (end - start) / start * 100


def sl_distance_pct(close: float | None, stop_loss: float | None) -> float | None:
    """How far below the close the stop sits, as % of close"""
    if close is None or stop_loss is None or close == 0:
        return None
    return (close - stop_loss) / close * 100
