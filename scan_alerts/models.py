"""Data records passed between gateway components.

All records serialize to plain dicts with snake_case keys for JSON files and
the document store. Missing market values stay None, never zero.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any


def _known(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


class SerializableMixin:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(**_known(cls, data))


@dataclass
class Quote(SerializableMixin):
    symbol: str
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    previous_close: float | None = None
    volume: float | None = None
    avg_volume_10d: float | None = None
    timestamp: str | None = None
    exchange: str | None = None
    currency: str | None = None
    short_name: str | None = None


@dataclass
class Summary(SerializableMixin):
    symbol: str
    short_name: str | None = None
    sector: str | None = None
    industry: str | None = None
    beta: float | None = None
    forward_pe: float | None = None
    market_cap: float | None = None


@dataclass
class Bar(SerializableMixin):
    date: str
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    adj_close: float | None = None
    volume: float | None = None


@dataclass
class Indicators(SerializableMixin):
    sma20: float | None = None
    sma50: float | None = None
    sma200: float | None = None
    rsi14: float | None = None
    volume_ratio: float | None = None


@dataclass(frozen=True)
class EnrichedAlert(SerializableMixin):
    """One symbol's alert as produced by the Enricher; immutable"""
    symbol: str
    scan_name: str | None
    scan_type: str
    open: float | None
    high: float | None
    low: float
    close: float
    volume: float | None
    sma20: float | None
    stop_loss: float
    percent_change: float | None
    sl_distance_pct: float | None
    received_at: str
    previous_close: float | None = None
    sma50: float | None = None
    sma200: float | None = None
    rsi14: float | None = None
    volume_ratio: float | None = None
    short_name: str | None = None


@dataclass(frozen=True)
class PersistedAlert(EnrichedAlert):
    """EnrichedAlert plus its store id and trading day"""
    id: str = ""
    trading_day: str = ""

    def to_alert(self) -> EnrichedAlert:
        return EnrichedAlert.from_dict(self.to_dict())


@dataclass
class TrackerEntry(SerializableMixin):
    symbol: str
    alert_time: str
    alert_price: float
    open_price: float | None
    high_price: float | None
    low_price: float | None
    stop_loss: float
    sma20: float | None
    scan_name: str | None
    current_price: float
    percent_change: float = 0.0
    hit_stop_loss: bool = False
    last_updated: str | None = None


@dataclass
class DailySummary(SerializableMixin):
    date: str
    total_alerts: int
    winners: int
    losers: int
    stopped_out: int
    win_rate: float
    best_performer: dict | None = None
    worst_performer: dict | None = None
    top_performers: list[dict] = field(default_factory=list)
    worst_performers: list[dict] = field(default_factory=list)
    scan_breakdown: dict[str, int] = field(default_factory=dict)
    message_text: str = ""
    generated_at: str | None = None


@dataclass
class AnalyticsBucket(SerializableMixin):
    total_alerts: int = 0
    wins: int = 0
    losses: int = 0
    stopped_out: int = 0
    avg_performance: float = 0.0
    best_gain: float = 0.0
    worst_loss: float = 0.0

    def record(self, performance: float, stopped: bool):
        """Count one alert; stopped-out alerts are never wins"""
        self.total_alerts += 1
        if stopped:
            self.stopped_out += 1
        elif performance > 0:
            self.wins += 1
        else:
            self.losses += 1

        n = self.total_alerts
        self.avg_performance = (self.avg_performance * (n - 1) + performance) / n
        if performance > self.best_gain:
            self.best_gain = performance
        if performance < self.worst_loss:
            self.worst_loss = performance

    @property
    def success_rate(self) -> float:
        return (self.wins / self.total_alerts * 100) if self.total_alerts else 0.0
