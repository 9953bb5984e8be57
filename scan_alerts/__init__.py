"""Stock scan alert gateway: webhook → enrich → Telegram, with end-of-day digest."""

__version__ = "1.0.0"
