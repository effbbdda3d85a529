"""CLI — Configuration inspection."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.syntax import Syntax

from dispatch_guard.config import get_settings

app = typer.Typer(help="Inspect the effective configuration.")
console = Console()


@app.command("show")
def show_config(
    section: str | None = typer.Argument(
        default=None, help="Show a single section (e.g. rate_limit). Shows all if not specified."
    ),
) -> None:
    """Print the merged settings (defaults + YAML + environment)."""
    data = get_settings().model_dump(mode="json")
    if section is not None:
        if section not in data:
            console.print(f"[red]Unknown section: {section}[/red]")
            raise typer.Exit(1)
        data = data[section]
    console.print(Syntax(json.dumps(data, indent=2), "json"))
