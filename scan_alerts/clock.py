"""Market clock: wall time and trading-day key in the market timezone"""

from datetime import date, datetime, timedelta

import pytz

from .constants import MARKET_TIMEZONE


class MarketClock:
    """Wall clock pinned to the exchange timezone"""

    def __init__(self, timezone: str = MARKET_TIMEZONE):
        self.tz = pytz.timezone(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def trading_day_key(self, when: datetime | None = None) -> str:
        """YYYY-MM-DD of `when` (default: now) in market time"""
        when = when.astimezone(self.tz) if when is not None else self.now()
        return when.strftime("%Y-%m-%d")

    def iso_now(self) -> str:
        return self.now().isoformat()


class FrozenClock(MarketClock):
    """Clock fixed at a given instant; `advance` moves it forward"""

    def __init__(self, instant: datetime, timezone: str = MARKET_TIMEZONE):
        super().__init__(timezone)
        if instant.tzinfo is None:
            instant = self.tz.localize(instant)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant.astimezone(self.tz)

    def set(self, instant: datetime):
        if instant.tzinfo is None:
            instant = self.tz.localize(instant)
        self._instant = instant

    def advance(self, **kwargs):
        self._instant = self._instant + timedelta(**kwargs)
