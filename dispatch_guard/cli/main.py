"""Dispatch Guard CLI — Entry point.

Usage:
    dispatch-guard queue list [--db PATH]
    dispatch-guard queue clear [--db PATH] --yes
    dispatch-guard headers
    dispatch-guard config show
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from dispatch_guard.cli.commands import config, headers, queue
from dispatch_guard.config import Settings, override_settings
from dispatch_guard.exceptions import ConfigurationError
from dispatch_guard.logging import configure_logging

app = typer.Typer(
    name="dispatch-guard",
    help="Dispatch Guard — inspect the offline queue, security headers and settings.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.add_typer(queue.app, name="queue")
app.add_typer(config.app, name="config")
app.command("headers")(headers.show_headers)


@app.callback()
def main_callback(
    config_file: Path | None = typer.Option(
        None, "--config", "-c", help="YAML config file merged over the defaults."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override logging.level."),
) -> None:
    try:
        settings = Settings.load(config_file)
    except ConfigurationError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)
    override_settings(settings)
    configure_logging(
        level=log_level or settings.logging.level,
        format=settings.logging.format,
        log_file=settings.logging.file,
    )


if __name__ == "__main__":
    app()
