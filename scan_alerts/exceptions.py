"""Custom exceptions for the scan alert gateway with enhanced error context"""

from typing import Any


class AlertGatewayError(Exception):
    """Base exception for gateway errors with enhanced context

    Attributes:
        message: Error message
        context: Additional context dictionary (e.g., symbol, operation)
        original_error: Original exception if wrapped
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None,
                 original_error: Exception | None = None):
        self.message = message
        self.context = context or {}
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context"""
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} [{ctx_str}]"
        if self.original_error:
            msg = f"{msg} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return msg


class ConfigError(AlertGatewayError):
    """Configuration validation failed

    Common causes:
    - Malformed config.yaml
    - Required fields missing
    - Environment variables not set
    """
    pass


class ValidationError(AlertGatewayError):
    """Input validation failed

    Common causes:
    - Invalid ticker symbol format
    - Out of range parameters
    """
    pass


class Unauthorized(AlertGatewayError):
    """Webhook secret missing or wrong (HTTP 403)"""
    pass


class BadRequest(AlertGatewayError):
    """Webhook payload carries no usable symbols (HTTP 400)"""
    pass


class DataSourceError(AlertGatewayError):
    """Market data vendor call failed

    Common causes:
    - Network connectivity issues
    - Vendor throttling
    - Invalid symbol or no data available
    """
    pass


class DataFetchFailure(DataSourceError):
    """Vendor call timed out or failed transiently"""
    pass


class EnrichUnavailable(AlertGatewayError):
    """No usable quote for a symbol; the symbol is dropped from the request"""
    pass


class TelegramError(AlertGatewayError):
    """Telegram API communication failed

    Common causes:
    - Invalid bot token or chat ID
    - Network connectivity issues
    - Rate limit exceeded (Telegram has strict limits)
    - Message too long (>4096 chars for Telegram)
    """
    pass


# The chat platform is the only sink the gateway dispatches to
SinkFailure = TelegramError


class StoreFailure(AlertGatewayError):
    """Remote document store write or read failed

    Common causes:
    - MONGODB_URI unreachable
    - Authentication failure
    - Server selection timeout
    """
    pass
