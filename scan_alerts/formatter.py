"""
Telegram message rendering (legacy Markdown dialect).

Money renders to 2 decimals with the currency symbol, percentages to
2 decimals with an explicit + for gains. Dynamic text (symbols, scan
names) is escaped so a stray underscore cannot break the message.
"""
import re
from collections.abc import Sequence
from datetime import datetime

from .models import DailySummary, EnrichedAlert, TrackerEntry
from .stop_loss import sl_distance_pct

SEPARATOR = "─" * 20

STARTUP_MESSAGE = "🚀 Stock Alerts Service is now running!"
SHUTDOWN_MESSAGE = "🛑 Stock Alerts Service is shutting down."
TEST_MESSAGE = "🧪 Test message from Stock Alerts Service"
EMPTY_DIGEST_MESSAGE = "📊 *DAILY SUMMARY* 📊\n\nNo stocks were alerted today."

FOOTERS = {
    "open_equals_low": "This stock opened at its low and is trading above 20 SMA",
    "custom": "Custom scan alert triggered",
    "default": "Stock alert triggered",
}
BATCH_OPEN_LOW_FOOTER = "All stocks opened at their low and are trading above 20 SMA"

_MD_SPECIAL = re.compile(r"([_*`\[])")
_MD_MARKUP = re.compile(r"\\([_*`\[])|[*_`]")


def escape_markdown(text) -> str:
    """Escape Telegram legacy-Markdown control characters in dynamic text"""
    return _MD_SPECIAL.sub(r"\\\1", str(text))


def strip_markdown(text: str) -> str:
    """Plain-text rendering of a formatted message, for the no-markdown retry"""
    return _MD_MARKUP.sub(lambda m: m.group(1) or "", text)


def fmt_money(value: float | None, currency: str = "₹") -> str:
    if value is None:
        return "N/A"
    return f"{currency}{value:.2f}"


def fmt_pct(value: float | None) -> str:
    if value is None:
        return "N/A"
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}%"


def direction_arrow(value: float | None) -> str:
    return "🔽" if value is not None and value < 0 else "🔼"


def _distance(alert: EnrichedAlert) -> float | None:
    if alert.sl_distance_pct is not None:
        return alert.sl_distance_pct
    return sl_distance_pct(alert.close, alert.stop_loss)


def sort_by_stop_distance(alerts: Sequence[EnrichedAlert]) -> list[EnrichedAlert]:
    """Ascending stop-loss distance; alerts without one keep their order at the end"""
    return sorted(alerts, key=lambda a: (_distance(a) is None, _distance(a) or 0.0))


def format_single(alert: EnrichedAlert, currency: str = "₹") -> str:
    """Full alert message for one stock"""
    lines = [f"🚨 *STOCK ALERT: {escape_markdown(alert.symbol)}* 🚨", ""]
    if alert.scan_name:
        lines += [f"📊 *Scan*: {escape_markdown(alert.scan_name)}", ""]

    distance = _distance(alert)
    lines.append(
        f"📈 *Price*: {fmt_money(alert.close, currency)} "
        f"{direction_arrow(alert.percent_change)} {fmt_pct(alert.percent_change)}"
    )
    distance_text = f"{distance:.2f}% away" if distance is not None else "N/A"
    lines.append(f"📉 *StopLoss*: {fmt_money(alert.stop_loss, currency)} ({distance_text})")
    lines.append(f"📊 *20-day SMA*: {fmt_money(alert.sma20, currency)}")
    lines += ["", f"⚠️ {FOOTERS.get(alert.scan_type, FOOTERS['default'])}"]
    return "\n".join(lines)


def format_batch(alerts: Sequence[EnrichedAlert], scan_name: str | None, now: datetime,
                 currency: str = "₹") -> str:
    """One message listing several alerts, tightest stop first"""
    ordered = sort_by_stop_distance(alerts)
    lines = ["🔔 *MULTIPLE STOCK ALERTS* 🔔", ""]
    if scan_name:
        lines.append(f"📊 *Scan*: {escape_markdown(scan_name)}")
    lines += [f"⏰ *Time*: {now:%d %b %Y %I:%M %p}", ""]

    for alert in ordered:
        distance = _distance(alert)
        distance_text = f"{distance:.2f}%" if distance is not None else "N/A"
        lines.append(
            f"📈 *{escape_markdown(alert.symbol)}* {fmt_money(alert.close, currency)} "
            f"{direction_arrow(alert.percent_change)} {fmt_pct(alert.percent_change)}"
        )
        lines.append(f"📉 SL: {fmt_money(alert.stop_loss, currency)} ({distance_text})")
        lines.append(SEPARATOR)

    if ordered and all(a.scan_type == "open_equals_low" for a in ordered):
        footer = BATCH_OPEN_LOW_FOOTER
    else:
        footer = f"{len(ordered)} stocks sorted by smallest stop loss %"
    lines += ["", f"⚠️ {footer}"]
    return "\n".join(lines)


def _performer_lines(index: int, entry: dict, currency: str) -> list[str]:
    pct = entry.get("percent_change") or 0.0
    return [
        f"{index}. {escape_markdown(entry['symbol'])}: {direction_arrow(pct)} {fmt_pct(pct)}",
        f"   Alert: {fmt_money(entry.get('alert_price'), currency)} → "
        f"Current: {fmt_money(entry.get('current_price'), currency)}",
    ]


def format_daily_summary(summary: DailySummary, entries: Sequence[TrackerEntry],
                         currency: str = "₹") -> str:
    """End-of-day digest; deterministic for a given summary and entry list"""
    if summary.total_alerts == 0:
        return EMPTY_DIGEST_MESSAGE

    day = datetime.strptime(summary.date, "%Y-%m-%d")
    loser_rate = 100.0 - summary.win_rate
    lines = [
        "📊 *DAILY TRADING SUMMARY* 📊",
        "",
        f"📅 *Date*: {day:%d %b %Y}",
        "",
        "📈 *OVERALL PERFORMANCE*",
        f"Total Alerts: {summary.total_alerts}",
        f"Winners: {summary.winners} ({summary.win_rate:.1f}%)",
        f"Losers: {summary.losers} ({loser_rate:.1f}%)",
        f"Hit Stop Loss: {summary.stopped_out}",
        "",
        "🏆 *TOP PERFORMERS*",
    ]
    for i, entry in enumerate(summary.top_performers, 1):
        lines += _performer_lines(i, entry, currency)
    lines += ["", "📉 *WORST PERFORMERS*"]
    for i, entry in enumerate(summary.worst_performers, 1):
        lines += _performer_lines(i, entry, currency)
    lines.append("")

    stopped = [e for e in entries if e.hit_stop_loss]
    if stopped:
        lines.append("🛑 *STOP LOSSES HIT*")
        for i, e in enumerate(stopped, 1):
            lines.append(f"{i}. {escape_markdown(e.symbol)}: SL {fmt_money(e.stop_loss, currency)}")
            lines.append(f"   Alert: {fmt_money(e.alert_price, currency)} → "
                         f"Current: {fmt_money(e.current_price, currency)}")
        lines.append("")

    lines.append("📊 *SCANS BREAKDOWN*")
    for scan, count in summary.scan_breakdown.items():
        plural = "s" if count > 1 else ""
        lines.append(f"{escape_markdown(scan)}: {count} alert{plural}")
    return "\n".join(lines)
