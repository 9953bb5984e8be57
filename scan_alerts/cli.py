"""CLI entry point for the scan alert gateway.

This module handles argument parsing and command dispatch; the commands
themselves live in main.py.
"""

import argparse
from collections.abc import Callable

from .config import Config
from .constants import DEFAULT_PORT, DEFAULT_TEST_SCAN, DEFAULT_TEST_SYMBOLS
from .exceptions import ConfigError
from .logger import logger, set_log_level
from .validation import sanitize_symbols


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="scan-alerts",
        description="Scan alert gateway: webhook → enrich → Telegram",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  scan-alerts serve                      Run the HTTP service
  scan-alerts summary                    Preview today's digest
  scan-alerts summary --send             Send the digest and roll over
  scan-alerts check RELIANCE             Show enrichment for one symbol
  scan-alerts status --url http://host:3000
  scan-alerts send-test --symbols TCS,INFY
        """
    )

    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Config file path (default: config.yaml)"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the webhook service")

    summary = sub.add_parser("summary", help="Build today's digest")
    summary.add_argument(
        "--send",
        action="store_true",
        help="Store and send the digest, then roll the tracker over"
    )

    check = sub.add_parser("check", help="Enrich one symbol and show the criteria")
    check.add_argument("symbol")

    default_url = f"http://localhost:{DEFAULT_PORT}"
    status = sub.add_parser("status", help="Show the status of a running service")
    status.add_argument("--url", default=default_url, help=f"Service URL (default: {default_url})")

    send_test = sub.add_parser("send-test", help="POST a sample webhook to a running service")
    send_test.add_argument("--url", default=default_url, help=f"Service URL (default: {default_url})")
    send_test.add_argument(
        "--symbols",
        default=",".join(DEFAULT_TEST_SYMBOLS),
        help="Comma-separated symbols"
    )
    send_test.add_argument("--scan", default=DEFAULT_TEST_SCAN, help="Scan name")

    return parser


def run_cli(
    argv: list[str] | None = None,
    *,
    serve_fn: Callable[[Config], int],
    summary_fn: Callable[[Config, bool], int],
    check_fn: Callable[[Config, str], int],
    status_fn: Callable[[str], int],
    send_test_fn: Callable[[Config, str, list[str], str], int],
) -> int:
    """
    Parse arguments and dispatch to the command function.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        # status only talks to a running service
        if args.command == "status":
            return status_fn(args.url)

        cfg = Config.load(args.config)
        set_log_level(cfg.log_level)

        if args.command == "serve":
            return serve_fn(cfg)
        if args.command == "summary":
            return summary_fn(cfg, args.send)
        if args.command == "check":
            return check_fn(cfg, args.symbol)
        if args.command == "send-test":
            symbols = sanitize_symbols(args.symbols.split(","))
            if not symbols:
                print("❌ No valid symbols given")
                return 2
            return send_test_fn(cfg, args.url, symbols, args.scan)

        parser.error(f"unknown command {args.command}")
        return 2

    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 2

    except KeyboardInterrupt:
        print("\n\n👋 Interrupted by user")
        return 130

    except Exception as e:
        logger.exception("fatal_error")
        print(f"❌ Fatal error: {e}")
        return 1


def main(argv: list[str] | None = None) -> int:
    """Console script entry point"""
    # Late import keeps parser tests free of server imports
    from . import main as main_module

    return run_cli(
        argv,
        serve_fn=main_module.serve,
        summary_fn=main_module.run_summary,
        check_fn=main_module.run_check,
        status_fn=main_module.run_status,
        send_test_fn=main_module.send_test,
    )
