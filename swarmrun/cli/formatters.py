"""CLI formatters: console, tables, durations and costs."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table


def get_console(no_color: bool = False, stderr: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color, stderr=stderr)


def format_duration(seconds: float) -> str:
    """Format an uptime in its largest whole unit."""
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h"
    return f"{int(seconds // 86400)}d"


def format_usd(cost: float) -> str:
    return f"${cost:.4f}"


def truncate(text: str, length: int) -> str:
    return text if len(text) <= length else text[: length - 2] + ".."


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table
