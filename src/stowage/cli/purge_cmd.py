"""CLI command for purging unattached blobs.

Usage:
    stowage purge-unattached
    stowage purge-unattached --days 30
    stowage purge-unattached --hours 12 --dry-run
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from stowage.config import Settings

app = typer.Typer(help="Delete blobs that no attachment references")


@app.callback(invoke_without_command=True)
def purge_unattached(
    days: int | None = typer.Option(
        None,
        "--days",
        "-d",
        min=0,
        help="Minimum blob age in days (default: STOWAGE_PURGE_UNATTACHED_DAYS)",
    ),
    hours: int | None = typer.Option(
        None,
        "--hours",
        min=0,
        help="Minimum blob age in hours (overrides --days)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Only count the blobs that would be purged",
    ),
) -> None:
    """Purge blobs with no attachments that are older than the given age.

    Each blob's metadata and bytes are deleted; one failing blob does not
    stop the others. Exits with code 1 if any blob could not be purged.
    """
    from pydantic import ValidationError
    from rich.console import Console
    from rich.markup import escape

    from stowage.config import load_settings
    from stowage.observability.logging import configure_logging

    try:
        settings = load_settings()
    except ValidationError as e:
        Console().print(f"[red]Invalid settings:[/red] {escape(str(e))}")
        raise typer.Exit(code=2) from e
    configure_logging(json_format=settings.log_json, level=settings.log_level)

    if hours is not None:
        older_than = timedelta(hours=hours)
    else:
        older_than = timedelta(days=settings.purge_unattached_days if days is None else days)

    failed = asyncio.run(_purge(settings, older_than, dry_run))
    if failed:
        raise typer.Exit(code=1)


async def _purge(settings: Settings, older_than: timedelta, dry_run: bool) -> int:
    """Async implementation of the purge command; returns the failure count."""
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    from stowage.errors import StowageError
    from stowage.runtime import Stowage

    console = Console()

    try:
        stowage = Stowage.from_settings(settings)
    except StowageError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(code=2) from e

    try:
        if dry_run:
            count = await stowage.blobs.count_unattached(older_than)
            console.print(
                f"[blue]Dry run:[/blue] {count} unattached blob(s) older than {older_than}"
            )
            return 0

        console.print(f"[blue]Purging unattached blobs older than {older_than}...[/blue]")
        report = await stowage.blobs.purge_unattached(older_than)
    finally:
        await stowage.close()

    table = Table(title="Purge summary")
    table.add_column("Processed", justify="right")
    table.add_column("Deleted", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(str(report.processed), str(report.deleted), str(report.failed))
    console.print(table)

    for key, message in report.errors.items():
        console.print(f"  [red]✗[/red] {escape(key)}: {escape(message)}")

    return report.failed
