"""Rich-based display functions for Inbox Moderator."""

from __future__ import annotations

import logging
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .constants import ACTION_COMPLETED, ACTION_FLAGGED, ACTION_HIDDEN
from .models import ActionRecord, ScanStats

console = Console()

_ACTION_COLORS = {
    ACTION_HIDDEN: "red",
    ACTION_FLAGGED: "yellow",
    ACTION_COMPLETED: "cyan",
}


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through a rich handler on the shared console."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def display_scan_summary(stats: ScanStats) -> None:
    """Display counters for the latest scan that processed new rows."""
    lines = [
        f"[bold]Processed:[/bold] {stats.scanned}",
        f"[bold]Flagged:[/bold] [yellow]{stats.flagged}[/yellow]",
        f"[bold]Hidden:[/bold] [red]{stats.hidden}[/red]",
        f"[bold]Completed:[/bold] [cyan]{stats.completed}[/cyan]",
        f"[bold]Skipped:[/bold] {stats.skipped}",
        f"[bold]Status:[/bold] {stats.status}",
    ]
    if stats.last_scan:
        lines.append(f"[dim]Last scan: {stats.last_scan}[/dim]")
    console.print(Panel("\n".join(lines), title="Scan Summary"))


def display_action_records(records: list[ActionRecord], limit: int = 50) -> None:
    """Display the most recent cached outcomes, newest first."""
    rows = sorted(records, key=lambda r: r.recorded_at, reverse=True)[:limit]

    table = Table(title="Recent Actions")
    table.add_column("Message")
    table.add_column("Action")
    table.add_column("Category")
    table.add_column("Confidence", justify="right")
    table.add_column("Recorded")

    for rec in rows:
        color = _ACTION_COLORS.get(rec.action, "white")
        label = f"KW: {rec.keyword}" if rec.keyword else (rec.category or "")
        recorded = datetime.fromtimestamp(rec.recorded_at).strftime("%Y-%m-%d %H:%M") if rec.recorded_at else ""
        table.add_row(
            rec.message_id,
            f"[{color}]{rec.action}[/{color}]",
            label,
            f"{rec.confidence:.0%}" if rec.confidence else "",
            recorded,
        )

    console.print(table)


def display_cache_info(info: dict) -> None:
    """Display local store statistics."""
    console.print(f"[bold]Database size:[/bold] {info['db_file_size'] / 1024:.1f} KB")
    console.print(f"[bold]Config snapshots:[/bold] {info['config_snapshots']}")

    if not info["users"]:
        console.print("[dim]No cached actions.[/dim]")
        return

    table = Table(title="Cached Actions")
    table.add_column("User")
    table.add_column("Actions", justify="right")
    table.add_column("Updated")
    for user in info["users"]:
        updated = user["updated_at"]
        table.add_row(
            user["user_id"],
            str(user["action_count"]),
            datetime.fromtimestamp(updated).strftime("%Y-%m-%d %H:%M") if updated else "",
        )
    console.print(table)
