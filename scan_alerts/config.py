import os
import re
from pathlib import Path
from typing import Optional

import pytz
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .constants import (
    ARCHIVE_RETENTION_DAYS,
    DATA_DIR,
    DEFAULT_PORT,
    DEFAULT_SYMBOL_SUFFIX,
    MARKET_TIMEZONE,
    QUOTE_CACHE_TTL,
    REFRESH_BATCH_DELAY,
    REFRESH_BATCH_SIZE,
    REQUEST_BUDGET_SECONDS,
    SUMMARY_TIME,
    VENDOR_RATE_LIMIT,
    VENDOR_TIMEOUT,
)
from .exceptions import ConfigError
from .logger import logger

load_dotenv()


class TelegramConfig(BaseModel):
    bot_token: str = Field(..., min_length=10, description="Telegram bot token")
    chat_id: str = Field(..., min_length=1, description="Telegram chat ID")

    @field_validator('bot_token', 'chat_id')
    @classmethod
    def not_placeholder(cls, v: str) -> str:
        if v.startswith('YOUR_'):
            raise ValueError('Replace placeholder values in config')
        return v


class ServerConfig(BaseModel):
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    webhook_secret: Optional[str] = Field(default=None, description="Shared secret for x-webhook-secret")
    request_budget_seconds: float = Field(default=REQUEST_BUDGET_SECONDS, gt=0)

    @field_validator('webhook_secret')
    @classmethod
    def empty_secret_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class MarketConfig(BaseModel):
    timezone: str = Field(default=MARKET_TIMEZONE)
    summary_time: str = Field(default=SUMMARY_TIME, description="HH:MM, market timezone")
    symbol_suffix: str = Field(default=DEFAULT_SYMBOL_SUFFIX)
    currency_symbol: str = Field(default="₹")

    @field_validator('summary_time')
    @classmethod
    def validate_summary_time(cls, v: str) -> str:
        m = re.fullmatch(r"(\d{1,2}):(\d{2})", v)
        if not m or int(m.group(1)) > 23 or int(m.group(2)) > 59:
            raise ValueError(f"summary_time must be HH:MM, got {v!r}")
        return v

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")
        return v


class VendorConfig(BaseModel):
    provider: str = Field(default="yfinance")
    rate_limit_per_minute: int = Field(default=VENDOR_RATE_LIMIT, ge=1, le=2000)
    timeout_seconds: float = Field(default=VENDOR_TIMEOUT, gt=0)
    cache_ttl_seconds: int = Field(default=QUOTE_CACHE_TTL, ge=0)

    @field_validator('provider')
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Only yfinance is supported"""
        if v != "yfinance":
            raise ValueError(f"Unsupported data provider: {v}. Only 'yfinance' is currently supported.")
        return v


class StorageConfig(BaseModel):
    data_dir: str = Field(default=DATA_DIR)
    mongodb_uri: Optional[str] = Field(default=None, description="Remote store; local journal only when unset")
    mongodb_database: str = Field(default="stock_alerts")

    @field_validator('mongodb_uri')
    @classmethod
    def empty_uri_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class TrackerConfig(BaseModel):
    refresh_batch_size: int = Field(default=REFRESH_BATCH_SIZE, ge=1, le=20)
    refresh_batch_delay: float = Field(default=REFRESH_BATCH_DELAY, ge=0)
    archive_retention_days: int = Field(default=ARCHIVE_RETENTION_DAYS, ge=1)


class Config(BaseModel):
    telegram: TelegramConfig
    server: ServerConfig = Field(default_factory=ServerConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    vendor: VendorConfig = Field(default_factory=VendorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    log_level: str = Field(default="INFO")

    @classmethod
    def load(cls, path: str = "config.yaml") -> "Config":
        """Load YAML config (optional) and apply environment overrides"""
        p = Path(path)
        raw: dict = {}
        if p.exists():
            try:
                raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            except Exception as e:
                raise ConfigError(f"Failed to parse YAML: {e}", original_error=e)
            if not isinstance(raw, dict):
                raise ConfigError(f"Config root must be a mapping: {path}")
        else:
            logger.debug("config.file_missing", path=path)

        # Environment variable overrides for deployment settings
        if bot := os.getenv("TELEGRAM_BOT_TOKEN"):
            raw.setdefault("telegram", {})["bot_token"] = bot
        if chat := os.getenv("TELEGRAM_CHAT_ID"):
            raw.setdefault("telegram", {})["chat_id"] = chat
        if secret := os.getenv("WEBHOOK_SECRET"):
            raw.setdefault("server", {})["webhook_secret"] = secret
        if port := os.getenv("PORT"):
            raw.setdefault("server", {})["port"] = port
        if uri := os.getenv("MONGODB_URI"):
            raw.setdefault("storage", {})["mongodb_uri"] = uri
        if data_dir := os.getenv("DATA_DIR"):
            raw.setdefault("storage", {})["data_dir"] = data_dir
        if tz := os.getenv("MARKET_TIMEZONE"):
            raw.setdefault("market", {})["timezone"] = tz
        if level := os.getenv("LOG_LEVEL"):
            raw["log_level"] = level

        try:
            return cls(**raw)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}", original_error=e)
