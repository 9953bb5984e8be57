"""Scan alert gateway: webhook → enrich → Telegram, with an end-of-day digest"""

import os
import signal
import threading

import requests
import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from werkzeug.serving import make_server

from . import __version__
from .config import Config
from .constants import SECRET_HEADER, SHUTDOWN_GRACE_SECONDS
from .exceptions import EnrichUnavailable
from .gateway import Gateway
from .logger import logger
from .server import create_app
from .ui import (
    console,
    create_check_table,
    create_status_table,
    create_summary_table,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
)

SENTRY_DSN = os.getenv('SENTRY_DSN', '')
ENVIRONMENT = os.getenv('ENVIRONMENT', 'production')


def init_sentry():
    """Enable Sentry error capture when SENTRY_DSN is set"""
    if not SENTRY_DSN:
        return
    sentry_logging = LoggingIntegration(
        level=None,           # Capture nothing from logging
        event_level=None      # Errors are captured explicitly
    )
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=ENVIRONMENT,
        release=f"scan-alerts@{__version__}",
        traces_sample_rate=0.1,
        send_default_pii=False,
        integrations=[sentry_logging],
        before_send=lambda event, hint: event if event.get('level') in ('error', 'fatal') else None
    )
    logger.info("sentry.initialized", environment=ENVIRONMENT)


def serve(cfg: Config) -> int:
    """
    Run the HTTP service until SIGTERM/SIGINT.

    Shutdown sends a best-effort notice, stops the listener and the
    components, and forces exit if that takes longer than the grace period.
    """
    init_sentry()
    gateway = Gateway.from_config(cfg)
    gateway.init()
    app = create_app(gateway)
    server = make_server("0.0.0.0", cfg.server.port, app, threaded=True)

    stopping = threading.Event()

    def stop():
        watchdog = threading.Timer(SHUTDOWN_GRACE_SECONDS, lambda: os._exit(1))
        watchdog.daemon = True
        watchdog.start()
        gateway.send_shutdown_notice()
        server.shutdown()
        gateway.shutdown()
        watchdog.cancel()

    def on_signal(signum, frame):
        if stopping.is_set():
            return
        stopping.set()
        logger.info("service.signal", signal=signal.Signals(signum).name)
        # serve_forever runs on this thread, so shutdown must not
        threading.Thread(target=stop, name="shutdown").start()

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

    logger.info("service.listening", port=cfg.server.port, version=__version__)
    gateway.send_startup_notice()
    server.serve_forever()
    logger.info("service.stopped")
    return 0


def run_summary(cfg: Config, send: bool = False) -> int:
    """Build today's digest; with `send`, run the full store/send/rollover sequence"""
    gateway = Gateway.from_config(cfg)
    gateway.init(start_scheduler=False)
    try:
        if send:
            result = gateway.run_daily_summary()
            summary = result.get("summary") or {}
            console.print(create_summary_table(summary))
            if result["status"] == "sent":
                print_success("Digest sent and tracker rolled over")
                return 0
            print_error(f"Digest not sent ({result['status']})")
            return 1
        summary = gateway.tracker.digest()
        console.print(create_summary_table(summary.to_dict()))
        console.print(summary.message_text)
        print_info("Preview only; use --send to deliver it")
        return 0
    finally:
        gateway.shutdown()


def run_check(cfg: Config, symbol: str) -> int:
    gateway = Gateway.from_config(cfg)
    gateway.cache.init()
    try:
        result = gateway.check(symbol)
    except EnrichUnavailable:
        print_error(f"No market data for {symbol}")
        return 1
    finally:
        gateway.cache.shutdown()
    console.print(create_check_table(result))
    if result["matches"]:
        print_success(f"{result['symbol']} passes the open=low criteria")
    else:
        print_warning(f"{result['symbol']} does not pass the open=low criteria")
    return 0


def run_status(url: str) -> int:
    """Print the status of a running service"""
    try:
        r = requests.get(f"{url.rstrip('/')}/api/status", timeout=10)
        r.raise_for_status()
    except requests.RequestException as e:
        print_error(f"Service not reachable at {url}: {e}")
        return 1
    console.print(create_status_table(r.json()))
    return 0


def send_test(cfg: Config, url: str, symbols: list[str], scan_name: str) -> int:
    """POST a sample webhook to a running service"""
    headers = {}
    if cfg.server.webhook_secret:
        headers[SECRET_HEADER] = cfg.server.webhook_secret
    payload = {"symbols": symbols, "scan_name": scan_name}
    print_header("Sending test webhook", f"{url} • {', '.join(symbols)}")
    try:
        r = requests.post(f"{url.rstrip('/')}/webhook", json=payload, headers=headers, timeout=60)
    except requests.RequestException as e:
        print_error(f"Request failed: {e}")
        return 1
    body = r.json() if r.headers.get("content-type", "").startswith("application/json") else r.text
    if r.ok:
        print_success(f"{r.status_code}: {body}")
        return 0
    print_error(f"{r.status_code}: {body}")
    return 1
