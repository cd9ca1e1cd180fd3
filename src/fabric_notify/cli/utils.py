"""
CLI utility helpers: consoles and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from fabric_notify.core.errors import NotifyError

console = Console()
err_console = Console(stderr=True)


def output_mapping(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Print a flat mapping as a two-column table, or as JSON."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return

    table = Table(title=title or None, show_header=True, header_style="bold cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(escape(str(key)), "" if value is None else escape(str(value)))
    console.print(table)


def fail(error: NotifyError) -> typer.Exit:
    """Print ``error`` with its remote status and payload, return Exit(1) to raise."""
    err_console.print(f"[bold red]{type(error).__name__}:[/bold red] {escape(str(error))}", highlight=False)
    context = error.context.to_dict()
    if context:
        err_console.print(f"[dim]{escape(json.dumps(context, default=str))}[/dim]", highlight=False)
    return typer.Exit(code=1)
