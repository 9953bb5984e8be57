"""Input validation utilities"""

import re

from .exceptions import ValidationError
from .logger import logger

# NSE/BSE tickers: letters, digits, & and - (M&M, BAJAJ-AUTO), optional .XX suffix
_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9&\-]{0,19}(\.[A-Z]{1,4})?$")


def is_valid_symbol(symbol: str) -> bool:
    """
    Validate an exchange ticker symbol

    Examples:
        RELIANCE -> True
        M&M -> True
        BAJAJ-AUTO -> True
        TCS.NS -> True
        SIMULATED.TEST -> True
        "RELIANCE INDS" -> False (space)
        "" -> False
    """
    if not symbol or not isinstance(symbol, str):
        return False
    return bool(_SYMBOL_RE.match(symbol.strip()))


def sanitize_symbol(symbol: str) -> str:
    """
    Sanitize and normalize a ticker symbol

    Returns cleaned symbol or raises ValidationError if invalid
    """
    if not symbol or not isinstance(symbol, str):
        raise ValidationError(f"Invalid symbol: {symbol!r}")

    symbol = symbol.strip().upper()

    if not is_valid_symbol(symbol):
        raise ValidationError(f"Invalid ticker format: {symbol}")

    return symbol


def sanitize_symbols(symbols: list) -> list[str]:
    """
    Clean a list of symbols: trim, uppercase, drop empties and invalid
    entries, de-duplicate preserving first-seen order.
    """
    valid: list[str] = []
    seen: set[str] = set()
    for raw in symbols:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        try:
            symbol = sanitize_symbol(str(raw))
        except ValidationError as e:
            logger.warning("validation.symbol_rejected", symbol=raw, error=e.message)
            continue
        if symbol not in seen:
            seen.add(symbol)
            valid.append(symbol)
    return valid
