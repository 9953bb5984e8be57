"""Telegram Bot API sink for alert, digest and notice messages"""
import time
from typing import Protocol

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from .constants import (
    CONNECTION_POOL_SIZE,
    DEFAULT_RETRY_DELAY,
    MAX_RETRY_ATTEMPTS,
    MAX_RETRY_DELAY,
    TELEGRAM_TIMEOUT,
)
from .exceptions import TelegramError
from .formatter import strip_markdown
from .logger import logger
from .rate_limiter import rate_limit


class ChatSink(Protocol):
    """Where formatted alerts go; TelegramClient in production"""

    def send(self, text: str, parse_mode: str | None = "Markdown", critical: bool = False) -> bool: ...

    def is_healthy(self) -> bool: ...


class _TransientError(Exception):
    """A failed attempt worth repeating; `delay` overrides the backoff"""

    def __init__(self, error: Exception, delay: float | None = None):
        super().__init__(str(error))
        self.error = error
        self.delay = delay


def _backoff(retry_state) -> float:
    error = retry_state.outcome.exception()
    if isinstance(error, _TransientError) and error.delay is not None:
        return error.delay
    return min(DEFAULT_RETRY_DELAY * 2 ** retry_state.attempt_number, MAX_RETRY_DELAY)


def _is_markdown_rejection(response: requests.Response) -> bool:
    if response.status_code != 400:
        return False
    try:
        description = response.json().get("description", "")
    except ValueError:
        description = response.text
    return "can't parse entities" in description.lower()


class TelegramClient:
    """
    sendMessage over a pooled session.

    Timeouts, network errors, 429 and 5xx are retried (429 waits for the
    server's Retry-After). Other 4xx responses fail at once, except a
    Markdown parse rejection, which is re-sent a single time as plain text.
    Five failed sends in a row raise even for non-critical messages.
    """

    _session: requests.Session | None = None

    @classmethod
    def _get_session(cls) -> requests.Session:
        if cls._session is None:
            cls._session = requests.Session()
            cls._session.mount("https://", requests.adapters.HTTPAdapter(
                pool_connections=2, pool_maxsize=CONNECTION_POOL_SIZE, max_retries=0))
            logger.debug("telegram.session_created")
        return cls._session

    def __init__(self, token: str, chat_id: str, max_consecutive_failures: int = 5):
        self.base = f"https://api.telegram.org/bot{token}"
        self.chat_id = chat_id
        self._consecutive_failures = 0
        self._max_consecutive_failures = max_consecutive_failures
        self.last_sent: float | None = None
        self.last_error: str | None = None
        logger.info("telegram.init", chat_id=chat_id)

    def send(self, text: str, parse_mode: str | None = "Markdown", critical: bool = False) -> bool:
        """
        Deliver one message.

        Returns:
            True when delivered; False on failure when not critical

        Raises:
            TelegramError: On failure when critical, or once the
                consecutive-failure limit is reached
        """
        rate_limit("telegram")
        retrying = Retrying(
            stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
            wait=_backoff,
            retry=retry_if_exception_type(_TransientError),
            reraise=True,
        )
        try:
            plain = retrying(self._deliver, text, parse_mode)
        except _TransientError as e:
            return self._failed(e.error, critical)
        except Exception as e:
            return self._failed(e, critical)

        self._consecutive_failures = 0
        self.last_sent = time.time()
        logger.info("telegram.sent", chars=len(text), plain=plain)
        return True

    def _deliver(self, text: str, parse_mode: str | None) -> bool:
        """One attempt; returns True if it fell back to plain text"""
        payload = {"chat_id": self.chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        logger.debug("telegram.sending", preview=text[:50], parse_mode=parse_mode)

        try:
            r = self._get_session().post(f"{self.base}/sendMessage", json=payload,
                                         timeout=TELEGRAM_TIMEOUT)
        except requests.Timeout as e:
            logger.warning("telegram.timeout")
            raise _TransientError(e)
        except requests.RequestException as e:
            logger.warning("telegram.network_error", error=str(e)[:50])
            raise _TransientError(e)

        if r.status_code == 429:
            retry_after = int(r.headers.get("Retry-After", 5))
            logger.warning("telegram.rate_limited", retry_after=retry_after)
            raise _TransientError(TelegramError("Rate limited by Telegram",
                                                context={"retry_after": retry_after}),
                                  delay=retry_after)

        if parse_mode and _is_markdown_rejection(r):
            logger.warning("telegram.markdown_rejected", preview=text[:50])
            self._deliver(strip_markdown(text), None)
            return True

        if r.status_code >= 500:
            raise _TransientError(TelegramError(f"Telegram server error {r.status_code}"))
        if r.status_code >= 400:
            raise TelegramError(f"Telegram rejected message: {r.text[:200]}",
                                context={"status": r.status_code})

        try:
            result = r.json()
        except ValueError as e:
            raise TelegramError("Telegram returned invalid JSON", original_error=e)
        if not result.get("ok"):
            raise TelegramError(f"Telegram API error: {result}")
        return False

    def _failed(self, error: Exception, critical: bool) -> bool:
        self._consecutive_failures += 1
        self.last_error = str(error)

        if self._consecutive_failures >= self._max_consecutive_failures:
            logger.error("telegram.critical_failure",
                         consecutive_failures=self._consecutive_failures, error=str(error))
            raise TelegramError(
                f"Telegram critically failed: {self._consecutive_failures} consecutive failures. "
                f"Last error: {error}"
            )
        if critical:
            raise TelegramError(f"Failed to send critical message: {error}")

        logger.warning("telegram.send_failed", consecutive_failures=self._consecutive_failures,
                       error=str(error)[:100])
        return False

    def is_healthy(self) -> bool:
        """False once the consecutive-failure limit is reached"""
        return self._consecutive_failures < self._max_consecutive_failures
