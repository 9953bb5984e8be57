"""
Flask application for the alert gateway.

Routes are thin: they translate HTTP into Gateway calls and map the
gateway's exceptions onto status codes.
"""
import re

import sentry_sdk
from flask import Flask, jsonify, request

from .exceptions import EnrichUnavailable, TelegramError, ValidationError
from .gateway import Gateway
from .logger import logger
from .validation import sanitize_symbol, sanitize_symbols

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _error(message: str, status: int, **extra):
    return jsonify({"status": "error", "error": message, **extra}), status


def create_app(gateway: Gateway) -> Flask:
    """Build the Flask app bound to one Gateway"""
    app = Flask(__name__)
    app.json.sort_keys = False

    def internal_error(operation: str, e: Exception):
        logger.exception("server.internal_error", operation=operation, error=str(e))
        gateway.monitor.record_error(operation, e, with_stack=True)
        sentry_sdk.capture_exception(e)
        return _error("Internal server error", 500)

    # ==================== Webhook ====================

    @app.route("/webhook", methods=["POST"])
    def webhook():
        payload = request.get_json(silent=True)
        result = gateway.handle_webhook(payload, dict(request.headers))
        return jsonify(result.body), result.status_code

    # ==================== Diagnostics ====================

    @app.route("/check/<symbol>", methods=["GET"])
    def check_symbol(symbol):
        try:
            symbol = sanitize_symbol(symbol)
        except ValidationError as e:
            return _error(e.message, 400)
        try:
            return jsonify(gateway.check(symbol))
        except EnrichUnavailable:
            return _error("No market data available", 404, symbol=symbol)
        except Exception as e:
            return internal_error("check", e)

    @app.route("/daily-summary", methods=["GET"])
    def daily_summary():
        try:
            result = gateway.run_daily_summary()
        except Exception as e:
            return internal_error("daily_summary", e)
        status = {"sent": 200, "busy": 409}.get(result["status"], 500)
        return jsonify(result), status

    @app.route("/test-telegram", methods=["GET"])
    def test_telegram():
        try:
            return jsonify(gateway.test_telegram())
        except TelegramError as e:
            return _error("Failed to send test message", 500, detail=e.message)

    @app.route("/test-multiple", methods=["GET"])
    def test_multiple():
        raw = request.args.get("symbols", "")
        symbols = sanitize_symbols(raw.split(",")) if raw else None
        result = gateway.test_multiple(symbols, request.args.get("scan"))
        return jsonify(result.body), result.status_code

    # ==================== Read models ====================

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(gateway.health())

    @app.route("/api/status", methods=["GET"])
    @app.route("/status", methods=["GET"])
    def status():
        return jsonify(gateway.status())

    @app.route("/api/analytics", methods=["GET"])
    @app.route("/analytics", methods=["GET"])
    def analytics():
        period = request.args.get("period", "all")
        return jsonify(gateway.analytics_summary(period))

    @app.route("/api/alerts", methods=["GET"])
    def alerts():
        day = request.args.get("date")
        if day and not _DATE_RE.match(day):
            return _error("date must be YYYY-MM-DD", 400)
        items = gateway.alerts_for_day(day)
        return jsonify({"date": day or gateway.clock.trading_day_key(),
                        "count": len(items), "alerts": items})

    # ==================== Resend ====================

    @app.route("/api/resend-alert", methods=["POST"])
    def resend_alert():
        body = request.get_json(silent=True)
        alert_id = body.get("alert_id") if isinstance(body, dict) else None
        if not alert_id:
            return _error("alert_id is required", 400)
        try:
            alert = gateway.resend_alert(str(alert_id))
        except TelegramError as e:
            return _error("Failed to send alert", 500, detail=e.message)
        if alert is None:
            return _error("Alert not found", 404, alert_id=alert_id)
        return jsonify({"status": "success", "alert": alert})

    @app.route("/api/resend-alerts-by-scan", methods=["POST"])
    def resend_alerts_by_scan():
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or not body.get("scan_name"):
            return _error("scan_name is required", 400)
        scan_name = body["scan_name"]
        day = body.get("date")
        if day and not _DATE_RE.match(str(day)):
            return _error("date must be YYYY-MM-DD", 400)
        try:
            sent = gateway.resend_alerts_by_scan(str(scan_name), day)
        except TelegramError as e:
            return _error("Failed to send alerts", 500, detail=e.message)
        if not sent:
            return _error("No alerts found for scan", 404, scan_name=scan_name)
        return jsonify({"status": "success", "count": len(sent),
                        "stocks": [a["symbol"] for a in sent]})

    # ==================== Errors ====================

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            "status": "error",
            "error": "Endpoint not found",
            "available_endpoints": [
                "/webhook", "/check/<symbol>", "/daily-summary", "/test-telegram",
                "/test-multiple", "/health", "/api/status", "/api/analytics",
                "/api/alerts", "/api/resend-alert", "/api/resend-alerts-by-scan",
            ],
        }), 404

    @app.errorhandler(500)
    def server_error(error):
        return _error("Internal server error", 500)

    return app
