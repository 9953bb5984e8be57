"""Tests for symbol validation"""
import pytest

from scan_alerts.exceptions import ValidationError
from scan_alerts.validation import is_valid_symbol, sanitize_symbol, sanitize_symbols


class TestIsValidSymbol:
    @pytest.mark.parametrize("symbol", ["RELIANCE", "M&M", "BAJAJ-AUTO", "TCS.NS", "SIMULATED.TEST"])
    def test_valid(self, symbol):
        assert is_valid_symbol(symbol)

    @pytest.mark.parametrize("symbol", ["", "RELIANCE INDS", "$TCS", "TCS.NSEXX", None, 42])
    def test_invalid(self, symbol):
        assert not is_valid_symbol(symbol)


class TestSanitizeSymbol:
    def test_trims_and_uppercases(self):
        assert sanitize_symbol("  tcs ") == "TCS"

    def test_invalid_raises(self):
        with pytest.raises(ValidationError):
            sanitize_symbol("bad symbol")

    def test_empty_raises(self):
        with pytest.raises(ValidationError):
            sanitize_symbol("")


class TestSanitizeSymbols:
    def test_drops_empties_and_invalid(self):
        assert sanitize_symbols(["A", "", "  ", None, "no good", "b"]) == ["A", "B"]

    def test_dedupes_preserving_order(self):
        assert sanitize_symbols(["infy", "TCS", "INFY", "tcs"]) == ["INFY", "TCS"]

    def test_all_invalid_is_empty(self):
        assert sanitize_symbols(["", " "]) == []
