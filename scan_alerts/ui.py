"""Console output for the CLI using rich"""

from typing import Any, Dict

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()


def print_header(title: str, subtitle: str = "") -> None:
    """Print a header banner"""
    text = Text(title, style="bold cyan", justify="center")
    if subtitle:
        text.append("\n" + subtitle, style="dim")
    console.print(Panel(text, border_style="bright_blue", padding=(1, 2)))


def print_success(message: str) -> None:
    console.print(f"[bold green]✓[/bold green] {message}")


def print_error(message: str) -> None:
    console.print(f"[bold red]✗[/bold red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]⚠[/bold yellow]  {message}")


def print_info(message: str) -> None:
    console.print(f"[bold blue]ℹ[/bold blue]  {message}")


def _num(value: Any, fmt: str = "{:.2f}") -> str:
    return fmt.format(value) if isinstance(value, (int, float)) else "[dim]N/A[/dim]"


def create_check_table(result: Dict[str, Any]) -> Table:
    """Market fields and criteria for one symbol"""
    table = Table(
        title=f"🔍 {result.get('symbol', '?')}",
        title_style="bold cyan",
        show_header=True,
        header_style="bold magenta",
        border_style="blue",
    )
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")

    for key in ("open", "high", "low", "close", "previous_close", "sma20", "sma50",
                "sma200", "rsi14", "stop_loss"):
        table.add_row(key, _num(result.get(key)))
    table.add_row("volume", _num(result.get("volume"), "{:,.0f}"))
    table.add_row("percent_change", _num(result.get("percent_change"), "{:+.2f}%"))
    table.add_row("sl_distance_pct", _num(result.get("sl_distance_pct"), "{:.2f}%"))

    for key in ("open_equals_low", "above_sma", "matches"):
        ok = result.get(key)
        table.add_row(key, "[bold green]yes[/bold green]" if ok else "[red]no[/red]")
    return table


def create_status_table(status: Dict[str, Any]) -> Table:
    """Counters and health from the status read model"""
    table = Table(
        title="📊 System Status",
        title_style="bold cyan",
        show_header=True,
        header_style="bold magenta",
        border_style="blue",
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Started", str(status.get("start_time", "?")))
    for key, value in (status.get("counters") or {}).items():
        style = "red" if "error" in key and value else "white"
        table.add_row(key, f"[{style}]{value}[/{style}]")

    telegram = status.get("telegram") or {}
    connected = telegram.get("connected")
    table.add_row("Telegram", {True: "[green]connected[/green]",
                               False: "[red]failing[/red]"}.get(connected, "[dim]unknown[/dim]"))
    table.add_row("Last sent", str(telegram.get("last_sent") or "-"))

    perf = status.get("performance") or {}
    memory = perf.get("memory_bytes")
    table.add_row("Memory", f"{memory / 1024 / 1024:.1f} MB" if memory else "-")
    table.add_row("Avg response", _num(perf.get("response_time"), "{:.0f} ms"))
    return table


def create_summary_table(summary: Dict[str, Any]) -> Table:
    """Headline numbers of a daily digest"""
    table = Table(
        title=f"📅 Daily Summary {summary.get('date', '')}",
        title_style="bold green",
        show_header=True,
        header_style="bold magenta",
        border_style="green",
        show_lines=True,
    )
    table.add_column("Total", justify="right")
    table.add_column("Winners", style="green", justify="right")
    table.add_column("Losers", style="red", justify="right")
    table.add_column("Stopped out", style="yellow", justify="right")
    table.add_column("Win rate", justify="right")
    table.add_row(
        str(summary.get("total_alerts", 0)),
        str(summary.get("winners", 0)),
        str(summary.get("losers", 0)),
        str(summary.get("stopped_out", 0)),
        f"{summary.get('win_rate', 0.0):.1f}%",
    )
    return table
