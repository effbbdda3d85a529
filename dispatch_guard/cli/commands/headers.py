"""CLI — Security header preview."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from dispatch_guard.config import get_settings
from dispatch_guard.security.headers import build_security_headers

console = Console()


def show_headers(
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON."),
) -> None:
    """Print the security headers for one response (fresh nonce each run)."""
    result = build_security_headers(get_settings().headers)

    if json_output:
        console.print(Syntax(json.dumps(result.as_dict(), indent=2), "json"))
        return

    table = Table(title="Security Headers")
    table.add_column("Header", style="cyan")
    table.add_column("Value", overflow="fold")
    for name, value in result.headers.items():
        table.add_row(name, value)
    console.print(table)
