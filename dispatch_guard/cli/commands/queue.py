"""CLI — Offline queue inspection commands."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from dispatch_guard.config import get_settings
from dispatch_guard.exceptions import StorageError
from dispatch_guard.resilience.offline_queue import OfflineActionQueue, PendingAction
from dispatch_guard.storage import SqliteStorage
from dispatch_guard.transport import OperationTable

app = typer.Typer(help="Inspect or clear actions queued while offline.")
console = Console()


def _open_queue(db: Path | None) -> tuple[OfflineActionQueue, SqliteStorage]:
    settings = get_settings()
    storage = SqliteStorage(db or settings.storage.sqlite_path)
    queue = OfflineActionQueue(OperationTable(), storage=storage, config=settings.offline)
    return queue, storage


async def _load(db: Path | None) -> list[PendingAction]:
    queue, storage = _open_queue(db)
    await storage.init()
    try:
        await queue.load()
        return queue.pending_actions
    finally:
        await storage.close()


async def _clear(db: Path | None) -> int:
    queue, storage = _open_queue(db)
    await storage.init()
    try:
        await queue.load()
        return await queue.clear_pending_actions()
    finally:
        await storage.close()


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@app.command("list")
def list_actions(
    db: Path | None = typer.Option(None, "--db", help="SQLite storage file."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON."),
) -> None:
    """List pending offline actions in replay order."""
    try:
        actions = asyncio.run(_load(db))
    except StorageError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)

    if json_output:
        payload = [a.model_dump() for a in actions]
        console.print(Syntax(json.dumps(payload, indent=2, default=str), "json"))
        return

    if not actions:
        console.print("[green]No pending actions.[/green]")
        return

    table = Table(title=f"Pending Actions ({len(actions)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Created (UTC)")
    table.add_column("Attempts")
    table.add_column("Last error", style="red")

    for action in actions:
        table.add_row(
            action.id,
            action.type,
            _format_ts(action.created_at),
            str(action.attempt_count),
            action.last_error or "",
        )
    console.print(table)


@app.command("clear")
def clear_actions(
    db: Path | None = typer.Option(None, "--db", help="SQLite storage file."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Discard every pending offline action."""
    if not yes and not typer.confirm("Discard all pending offline actions?"):
        raise typer.Exit(1)
    try:
        count = asyncio.run(_clear(db))
    except StorageError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Cleared {count} pending action(s).[/green]")
