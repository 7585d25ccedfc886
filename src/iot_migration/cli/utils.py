"""
Output helpers for CLI commands.

Status lines go through click so they respect ``--no-color`` terminals and
CliRunner capture; tables are rendered with rich.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import click
from rich.console import Console
from rich.table import Table

console = Console()

# marker, colour, stderr
_STATUS = {
    "success": ("✓", "green", False),
    "error": ("✗", "red", True),
    "warning": ("⚠", "yellow", False),
    "info": ("ℹ", "blue", False),
}


def _status(kind: str, message: str) -> None:
    marker, colour, to_stderr = _STATUS[kind]
    click.secho(f"{marker} {message}", fg=colour, err=to_stderr)


def echo_success(message: str) -> None:
    _status("success", message)


def echo_error(message: str) -> None:
    _status("error", message)


def echo_warning(message: str) -> None:
    _status("warning", message)


def echo_info(message: str) -> None:
    _status("info", message)


def format_duration(seconds: float) -> str:
    """Render seconds as ``12.3s``, ``4m 5s`` or ``1h 2m 3s``."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


def format_count(count: int) -> str:
    return f"{count:,}"


def print_table(title: str, columns: list[str], rows: Iterable[Iterable[Any]]) -> None:
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(str(cell) for cell in row))
    console.print(table)


def print_stats(stats: Mapping[str, Any], title: str = "Statistics") -> None:
    """Show ``snake_case`` keys as a Metric/Value table."""
    print_table(
        title,
        ["Metric", "Value"],
        ((key.replace("_", " ").capitalize(), value) for key, value in stats.items()),
    )
