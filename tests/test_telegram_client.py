"""
Tests for Telegram client error handling and retry logic.

Uses `responses` library for HTTP mocking - deterministic and fast.
"""
import json

import pytest
import requests
import responses
from unittest.mock import Mock, patch

from scan_alerts.exceptions import TelegramError
from scan_alerts.telegram_client import TelegramClient, _TransientError, _backoff

SEND_URL = "https://api.telegram.org/bottest_bot_token/sendMessage"


@pytest.fixture
def telegram_client():
    """Create a test Telegram client."""
    # Reset session for clean state
    TelegramClient._session = None
    return TelegramClient(token="test_bot_token", chat_id="123456789")


def _body(call) -> dict:
    return json.loads(call.request.body)


class TestTelegramSendSuccess:
    """Tests for successful message sending."""

    @responses.activate
    def test_send_success(self, telegram_client):
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {"message_id": 123}})

        result = telegram_client.send("*Hello*")

        assert result is True
        assert telegram_client._consecutive_failures == 0
        assert telegram_client.last_sent is not None
        payload = _body(responses.calls[0])
        assert payload == {"chat_id": "123456789", "text": "*Hello*", "parse_mode": "Markdown"}

    @responses.activate
    def test_send_resets_failure_counter(self, telegram_client):
        telegram_client._consecutive_failures = 3
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {}})

        telegram_client.send("Test message")

        assert telegram_client._consecutive_failures == 0

    @responses.activate
    def test_plain_text_send_omits_parse_mode(self, telegram_client):
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {}})
        telegram_client.send("plain", parse_mode=None)
        assert "parse_mode" not in _body(responses.calls[0])


class TestMarkdownFallback:
    """A message rejected for bad Markdown is re-sent once as plain text"""

    @responses.activate
    def test_resends_stripped_text(self, telegram_client):
        responses.add(responses.POST, SEND_URL, status=400,
                      json={"ok": False, "description": "Bad Request: can't parse entities: x"})
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {}})

        result = telegram_client.send("*STOCK ALERT: M\\_M*")

        assert result is True
        assert len(responses.calls) == 2
        retry = _body(responses.calls[1])
        assert retry["text"] == "STOCK ALERT: M_M"
        assert "parse_mode" not in retry

    @responses.activate
    def test_plain_retry_happens_once(self, telegram_client):
        for _ in range(2):
            responses.add(responses.POST, SEND_URL, status=400,
                          json={"ok": False, "description": "Bad Request: can't parse entities"})

        with pytest.raises(TelegramError):
            telegram_client.send("*bad*", critical=True)

        assert len(responses.calls) == 2


class TestTelegramSendFailure:
    """Tests for message send failures."""

    @responses.activate
    def test_send_non_critical_returns_false(self, telegram_client):
        for _ in range(3):
            responses.add(responses.POST, SEND_URL,
                          body=requests.exceptions.ConnectionError("Network error"))

        with patch("scan_alerts.telegram_client.time.sleep"):
            result = telegram_client.send("Test", critical=False)

        assert result is False
        assert telegram_client._consecutive_failures == 1
        assert "Network error" in telegram_client.last_error

    @responses.activate
    def test_send_critical_raises_telegram_error(self, telegram_client):
        for _ in range(3):
            responses.add(responses.POST, SEND_URL,
                          body=requests.exceptions.ConnectionError("Network error"))

        with patch("scan_alerts.telegram_client.time.sleep"):
            with pytest.raises(TelegramError) as exc_info:
                telegram_client.send("Critical message", critical=True)

        assert "Failed to send critical message" in str(exc_info.value)

    @responses.activate
    def test_client_error_is_not_retried(self, telegram_client):
        responses.add(responses.POST, SEND_URL, status=403,
                      json={"ok": False, "description": "Forbidden: bot was blocked"})

        assert telegram_client.send("Test") is False
        assert len(responses.calls) == 1

    @responses.activate
    def test_consecutive_failures_trigger_critical_error(self, telegram_client):
        telegram_client._consecutive_failures = 4
        for _ in range(3):
            responses.add(responses.POST, SEND_URL,
                          body=requests.exceptions.ConnectionError("Network error"))

        with patch("scan_alerts.telegram_client.time.sleep"):
            with pytest.raises(TelegramError) as exc_info:
                telegram_client.send("Test", critical=False)

        assert "consecutive failures" in str(exc_info.value)
        assert telegram_client._consecutive_failures == 5


class TestTelegramRetries:
    @responses.activate
    def test_rate_limit_429_triggers_retry(self, telegram_client):
        responses.add(responses.POST, SEND_URL, status=429, headers={"Retry-After": "0"})
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {}})

        with patch("scan_alerts.telegram_client.time.sleep"):
            result = telegram_client.send("Test message")

        assert result is True
        assert len(responses.calls) == 2

    @responses.activate
    def test_timeout_triggers_retry(self, telegram_client):
        responses.add(responses.POST, SEND_URL, body=requests.exceptions.Timeout("Read timed out"))
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {}})

        with patch("scan_alerts.telegram_client.time.sleep"):
            result = telegram_client.send("Test message")

        assert result is True
        assert len(responses.calls) == 2

    @responses.activate
    def test_server_error_triggers_retry(self, telegram_client):
        responses.add(responses.POST, SEND_URL, status=502)
        responses.add(responses.POST, SEND_URL, json={"ok": True, "result": {}})

        with patch("scan_alerts.telegram_client.time.sleep"):
            assert telegram_client.send("Test message") is True

        assert len(responses.calls) == 2

    @responses.activate
    def test_api_not_ok_raises_error(self, telegram_client):
        responses.add(responses.POST, SEND_URL,
                      json={"ok": False, "description": "Bad Request: chat not found"})

        with pytest.raises(TelegramError) as exc_info:
            telegram_client.send("Test", critical=True)

        assert "Telegram API error" in str(exc_info.value)


class TestTelegramHealth:
    def test_is_healthy_below_threshold(self, telegram_client):
        telegram_client._consecutive_failures = 4
        assert telegram_client.is_healthy() is True

    def test_is_not_healthy_at_threshold(self, telegram_client):
        telegram_client._consecutive_failures = 5
        assert telegram_client.is_healthy() is False


class TestBackoff:
    @staticmethod
    def _state(attempt, error):
        outcome = Mock()
        outcome.exception.return_value = error
        return Mock(attempt_number=attempt, outcome=outcome)

    def test_exponential_and_capped(self):
        assert _backoff(self._state(1, _TransientError(RuntimeError("x")))) == 2.0
        assert _backoff(self._state(10, _TransientError(RuntimeError("x")))) == 30.0

    def test_retry_after_overrides(self):
        assert _backoff(self._state(1, _TransientError(RuntimeError("x"), delay=7))) == 7
